"""Tests for pipeline counters, sinks and the diagnostic alert log."""

import asyncio

import pytest
from loguru import logger

from biolog_router.core.config import Settings
from biolog_router.core.exceptions import DeliveryFailure
from biolog_router.core.logging_setup import configure_logging
from biolog_router.rules.ruleset import DestinationConfig, SinkConfig
from biolog_router.services.metrics import PipelineStats
from biolog_router.services.sinks import HttpSink, JsonlFileSink, MemorySink, create_sink


def test_stats_counters_and_diagnostics():
    stats = PipelineStats(max_diagnostics=2)
    stats.increment("records_routed")
    stats.increment("records_routed", 2)
    for i in range(3):
        stats.record_diagnostic("RoutingGap", record_id=str(i))

    snapshot = stats.snapshot()
    assert snapshot["counters"] == {"records_routed": 3}
    assert [d["record_id"] for d in snapshot["recent_diagnostics"]] == ["1", "2"]
    assert stats.get("missing") == 0


def test_alert_log_receives_only_diagnostics(tmp_path):
    alert_file = tmp_path / "alerts.log"
    configure_logging(level="DEBUG", log_file=str(tmp_path / "app.log"), alert_log_file=str(alert_file))

    logger.warning("ordinary warning")
    logger.bind(diagnostic="RoutingGap").warning("record matched no destination")
    logger.remove()
    configure_logging()

    content = alert_file.read_text()
    assert "RoutingGap | record matched no destination" in content
    assert "ordinary warning" not in content
    assert "ordinary warning" in (tmp_path / "app.log").read_text()


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("BIOLOG_DELIVERY_MAX_TRIES", "7")
    monkeypatch.setenv("BIOLOG_OUTPUT_DIR", "/srv/biolog")
    settings = Settings()
    assert settings.delivery_max_tries == 7
    assert str(settings.output_dir) == "/srv/biolog"


def _destination(**sink):
    return DestinationConfig(name="central", tier="analytics", retention_days=90, sink=SinkConfig(**sink))


def test_create_sink_types(tmp_path):
    assert isinstance(create_sink(_destination(type="memory"), tmp_path), MemorySink)

    file_sink = create_sink(_destination(), tmp_path)
    assert isinstance(file_sink, JsonlFileSink)
    assert file_sink.path == tmp_path / "central.jsonl"

    http_sink = create_sink(_destination(type="http", url="http://collector.local/ingest"), tmp_path)
    assert isinstance(http_sink, HttpSink)

    with pytest.raises(ValueError):
        create_sink(_destination(type="http"), tmp_path)


def test_http_sink_unreachable_raises_delivery_failure(rule_set, router):
    record = router.prepare("ELN", "2025-04-10T14:32:45Z Download Resource:a.docx")
    envelope = router.dispatcher.build_envelope(record, rule_set.destinations["research"])
    sink = HttpSink("research", "http://127.0.0.1:9/ingest", timeout=0.5)

    with pytest.raises(DeliveryFailure):
        asyncio.run(sink.deliver(envelope))
    asyncio.run(sink.close())


def test_file_sink_usable_across_event_loops(rule_set, router, tmp_path):
    record = router.prepare("ELN", "2025-04-10T14:32:45Z Download Resource:a.docx")
    envelope = router.dispatcher.build_envelope(record, rule_set.destinations["research"])
    sink = JsonlFileSink("research", tmp_path / "research.jsonl")

    async def _deliver_concurrently():
        await asyncio.gather(*(sink.deliver(envelope) for _ in range(3)))

    asyncio.run(_deliver_concurrently())
    asyncio.run(_deliver_concurrently())

    assert len(sink.path.read_text().splitlines()) == 6
