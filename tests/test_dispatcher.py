"""Tests for the routing/tiering dispatcher and destination sinks."""

import asyncio
import json
import time

import pytest

from biolog_router.core.exceptions import DeliveryFailure
from biolog_router.core.models import ClassificationTag, LogRecord, SourceSystem
from biolog_router.pipeline.classification import ClassificationEngine
from biolog_router.pipeline.dispatcher import RoutingDispatcher
from biolog_router.pipeline.ingestion import IngestionAdapter
from biolog_router.pipeline.transform import TransformStage
from biolog_router.rules.ruleset import build_rule_set
from biolog_router.services.dead_letter import DeadLetterStore
from biolog_router.services.metrics import PipelineStats
from biolog_router.services.sinks import JsonlFileSink, MemorySink, build_sinks

from .samples import CTMS_SSN, ELN_DOWNLOAD, LIMS_HEARTBEAT


class FlakySink(MemorySink):
    """Fails a fixed number of times before accepting deliveries."""

    def __init__(self, name, failures):
        super().__init__(name)
        self.failures = failures
        self.attempts = 0

    async def deliver(self, envelope):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise DeliveryFailure(self.name, "destination unavailable")
        await super().deliver(envelope)


class SlowSink(MemorySink):
    async def deliver(self, envelope):
        await asyncio.sleep(5)
        await super().deliver(envelope)


class BrokenSink(MemorySink):
    async def deliver(self, envelope):
        raise RuntimeError("connection reset")


def _prepare(rule_set, source, payload):
    record = IngestionAdapter(rule_set).ingest(source, payload)
    record = ClassificationEngine(rule_set).classify(record)
    return TransformStage(rule_set).apply(record)


def _dispatcher(rule_set, sinks, tmp_path, timeout=1.0, max_tries=3):
    return RoutingDispatcher(
        rule_set,
        sinks,
        dead_letters=DeadLetterStore(tmp_path / "dead_letter.jsonl"),
        stats=PipelineStats(),
        timeout=timeout,
        max_tries=max_tries,
        backoff_factor=0.0,
        backoff_max=0.0,
    )


def test_fans_out_to_every_destination(rule_set, memory_sinks, tmp_path):
    dispatcher = _dispatcher(rule_set, memory_sinks, tmp_path)
    record = _prepare(rule_set, "ELN", ELN_DOWNLOAD)

    result = asyncio.run(dispatcher.dispatch(record))

    assert sorted(result.delivered_to) == ["central-security", "research"]
    assert not result.routing_gap
    assert len(memory_sinks["central-security"].envelopes) == 1
    assert len(memory_sinks["research"].envelopes) == 1
    assert memory_sinks["central-auxiliary"].envelopes == []

    envelope = memory_sinks["central-security"].envelopes[0]
    assert envelope.payload == ELN_DOWNLOAD
    assert envelope.retention_days == 2557
    assert envelope.metadata["workspace"] == "sentinel"
    assert envelope.tags == [ClassificationTag.SECURITY_RELEVANT]


def test_masked_payload_reaches_all_destinations(rule_set, memory_sinks, tmp_path):
    dispatcher = _dispatcher(rule_set, memory_sinks, tmp_path)
    record = _prepare(rule_set, "CTMS", CTMS_SSN)

    result = asyncio.run(dispatcher.dispatch(record))

    assert result.masked
    assert sorted(result.delivered_to) == ["central-security", "clinical"]
    for name in ("central-security", "clinical"):
        envelope = memory_sinks[name].envelopes[0]
        assert envelope.masked
        assert "123-45-6789" not in envelope.payload
        assert "SSN: XXX-XX-XXXX" in envelope.payload


def test_verbose_record_goes_to_basic_tier(rule_set, memory_sinks, tmp_path):
    dispatcher = _dispatcher(rule_set, memory_sinks, tmp_path)
    record = _prepare(rule_set, "LIMS", LIMS_HEARTBEAT)

    result = asyncio.run(dispatcher.dispatch(record))

    assert sorted(result.delivered_to) == ["central-auxiliary", "research"]
    assert memory_sinks["central-auxiliary"].envelopes[0].retention_days == 30


def test_unmasked_record_never_reaches_phi_destination(rule_set, tmp_path):
    dispatcher = _dispatcher(rule_set, {}, tmp_path)
    record = ClassificationEngine(rule_set).classify(
        IngestionAdapter(rule_set).ingest("CTMS", CTMS_SSN)
    )

    with pytest.raises(ValueError):
        dispatcher.build_envelope(record, rule_set.destinations["clinical"])


def test_transient_failure_is_retried(rule_set, memory_sinks, tmp_path):
    memory_sinks["research"] = FlakySink("research", failures=2)
    dispatcher = _dispatcher(rule_set, memory_sinks, tmp_path, max_tries=3)
    record = _prepare(rule_set, "ELN", ELN_DOWNLOAD)

    result = asyncio.run(dispatcher.dispatch(record))

    assert sorted(result.delivered_to) == ["central-security", "research"]
    assert memory_sinks["research"].attempts == 3
    assert dispatcher.dead_letters.count() == 0


def test_exhausted_retries_dead_letter_one_destination(rule_set, memory_sinks, tmp_path):
    memory_sinks["research"] = FlakySink("research", failures=10)
    dispatcher = _dispatcher(rule_set, memory_sinks, tmp_path, max_tries=3)
    record = _prepare(rule_set, "ELN", ELN_DOWNLOAD)

    result = asyncio.run(dispatcher.dispatch(record))

    assert result.delivered_to == ["central-security"]
    assert result.dead_lettered_to == ["research"]
    assert memory_sinks["research"].attempts == 3

    entries = dispatcher.dead_letters.load()
    assert len(entries) == 1
    envelope, error = entries[0]
    assert envelope.destination == "research"
    assert envelope.record_id == record.record_id
    assert "destination unavailable" in error
    assert dispatcher.stats.get("dead_lettered") == 1
    assert dispatcher.stats.get("delivery_failures") == 1


def test_unexpected_sink_error_becomes_delivery_failure(rule_set, memory_sinks, tmp_path):
    memory_sinks["research"] = BrokenSink("research")
    dispatcher = _dispatcher(rule_set, memory_sinks, tmp_path, max_tries=2)
    record = _prepare(rule_set, "ELN", ELN_DOWNLOAD)

    result = asyncio.run(dispatcher.dispatch(record))

    outcome = next(o for o in result.outcomes if o.destination == "research")
    assert not outcome.delivered
    assert "connection reset" in outcome.error


def test_slow_destination_does_not_block_others(rule_set, memory_sinks, tmp_path):
    memory_sinks["research"] = SlowSink("research")
    dispatcher = _dispatcher(rule_set, memory_sinks, tmp_path, timeout=0.05, max_tries=2)
    record = _prepare(rule_set, "ELN", ELN_DOWNLOAD)

    started = time.monotonic()
    result = asyncio.run(dispatcher.dispatch(record))

    assert time.monotonic() - started < 2
    assert result.delivered_to == ["central-security"]
    assert result.dead_lettered_to == ["research"]
    outcome = next(o for o in result.outcomes if o.destination == "research")
    assert "timed out" in outcome.error


def test_missing_sink_dead_letters(rule_set, memory_sinks, tmp_path):
    del memory_sinks["research"]
    dispatcher = _dispatcher(rule_set, memory_sinks, tmp_path, max_tries=1)
    record = _prepare(rule_set, "ELN", ELN_DOWNLOAD)

    result = asyncio.run(dispatcher.dispatch(record))

    assert result.dead_lettered_to == ["research"]


def test_routing_gap_uses_fallback(minimal_config, tmp_path):
    rule_set = build_rule_set(minimal_config)
    sinks = {name: MemorySink(name) for name in rule_set.destinations}
    dispatcher = _dispatcher(rule_set, sinks, tmp_path)
    record = _prepare(rule_set, "ELN", "2025-04-10T10:00:00Z INFO index rebuilt")

    result = asyncio.run(dispatcher.dispatch(record))

    assert result.routing_gap
    assert result.delivered_to == ["aux"]
    assert sinks["central"].envelopes == []
    assert dispatcher.stats.get("routing_gaps") == 1

    diagnostics = dispatcher.stats.snapshot()["recent_diagnostics"]
    assert diagnostics[-1]["kind"] == "RoutingGap"
    assert diagnostics[-1]["record_id"] == record.record_id
    assert diagnostics[-1]["fallback_destination"] == "aux"


def test_jsonl_file_sink_writes_envelopes(rule_set, tmp_path):
    record = _prepare(rule_set, "CTMS", CTMS_SSN)

    async def _deliver():
        sinks = build_sinks(rule_set, tmp_path / "out")
        dispatcher = _dispatcher(rule_set, sinks, tmp_path)
        result = await dispatcher.dispatch(record)
        await dispatcher.close()
        return result, sinks

    result, sinks = asyncio.run(_deliver())

    assert isinstance(sinks["clinical"], JsonlFileSink)
    lines = (tmp_path / "out" / "clinical.jsonl").read_text().splitlines()
    assert len(lines) == 1
    document = json.loads(lines[0])
    assert document["record_id"] == result.record_id
    assert document["source_system"] == "CTMS"
    assert document["masked"] is True
    assert "123-45-6789" not in document["payload"]


def test_record_without_masking_is_unmasked_envelope(rule_set, tmp_path):
    dispatcher = _dispatcher(rule_set, {}, tmp_path)
    record = LogRecord(
        source_system=SourceSystem.ELN,
        raw_payload=ELN_DOWNLOAD,
        timestamp="2025-04-10T14:32:45Z",
        classification_tags=frozenset({ClassificationTag.SECURITY_RELEVANT}),
    )

    envelope = dispatcher.build_envelope(record, rule_set.destinations["research"])

    assert not envelope.masked
    assert envelope.payload == ELN_DOWNLOAD
    assert envelope.tier.value == "specialized-domain"
