"""Shared fixtures for the routing pipeline tests."""

import copy

import pytest

from biolog_router.core.config import Settings
from biolog_router.core.router import LogRouter
from biolog_router.rules.ruleset import load_rule_set
from biolog_router.services.dead_letter import DeadLetterStore
from biolog_router.services.sinks import MemorySink

MINIMAL_CONFIG = {
    "fallback_destination": "aux",
    "default_masking": "phi",
    "destinations": {
        "central": {"tier": "analytics", "retention_days": 90, "sink": {"type": "memory"}},
        "aux": {"tier": "basic", "retention_days": 30, "sink": {"type": "memory"}},
        "clinical": {
            "tier": "specialized-domain",
            "retention_days": 2557,
            "phi_sensitive": True,
            "sink": {"type": "memory"},
        },
    },
    "masking_profiles": {
        "phi": [
            {"name": "ssn", "pattern": r"\b\d{3}-\d{2}-\d{4}\b", "replacement": "XXX-XX-XXXX"},
        ],
    },
    "sources": {
        "ELN": {
            "security": {"keywords": ["Download", "Failed"]},
            "verbose": {"keywords": ["INFO", "Debug"], "exclude": ["Error", "Failed"]},
            "extractors": [{"pattern": r"\bUser[:\s]+(?P<UserName>[\w\-\.@]+)"}],
            "routes": [{"destination": "central", "tags": ["security-relevant"]}],
        },
        "CTMS": {
            "security": {"keywords": ["Access"]},
            "verbose": {"keywords": ["INFO"]},
            "masking": "phi",
            "routes": [
                {"destination": "central", "tags": ["security-relevant"]},
                {"destination": "clinical"},
            ],
        },
    },
}


@pytest.fixture
def minimal_config():
    return copy.deepcopy(MINIMAL_CONFIG)


@pytest.fixture(scope="session")
def rule_set():
    return load_rule_set(strict=True)


@pytest.fixture
def memory_sinks(rule_set):
    return {name: MemorySink(name) for name in rule_set.destinations}


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        output_dir=tmp_path / "destinations",
        dead_letter_path=tmp_path / "dead_letter.jsonl",
        delivery_timeout=0.2,
        delivery_max_tries=3,
        delivery_backoff_factor=0.0,
        delivery_backoff_max=0.0,
        max_concurrent_records=4,
    )


@pytest.fixture
def router(rule_set, memory_sinks, test_settings):
    router = LogRouter(
        settings=test_settings,
        rule_set=rule_set,
        sinks=memory_sinks,
        dead_letters=DeadLetterStore(test_settings.dead_letter_path),
    )
    router.initialize()
    return router
