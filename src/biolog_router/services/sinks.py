"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Destination sinks.

A sink accepts one delivery envelope at a time and either returns or raises
DeliveryFailure. Retries and timeouts belong to the dispatcher.
"""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional
import requests
from loguru import logger

from ..core.exceptions import DeliveryFailure
from ..core.models import DeliveryEnvelope
from ..rules.ruleset import DestinationConfig, RuleSet


class DestinationSink:
    """Base class for destination sinks."""

    def __init__(self, name: str):
        self.name = name

    async def deliver(self, envelope: DeliveryEnvelope) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class MemorySink(DestinationSink):
    """Keeps envelopes in memory; used for dry runs and tests."""

    def __init__(self, name: str):
        super().__init__(name)
        self.envelopes: List[DeliveryEnvelope] = []

    async def deliver(self, envelope: DeliveryEnvelope) -> None:
        self.envelopes.append(envelope)


class JsonlFileSink(DestinationSink):
    """Appends one JSON document per envelope to a file."""

    def __init__(self, name: str, path: Path):
        super().__init__(name)
        self.path = Path(path)
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def deliver(self, envelope: DeliveryEnvelope) -> None:
        line = json.dumps(envelope.model_dump(mode="json"), ensure_ascii=False)
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            # asyncio locks belong to one event loop.
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        try:
            async with self._lock:
                await asyncio.to_thread(self._append, line)
        except OSError as e:
            raise DeliveryFailure(self.name, f"write to {self.path} failed: {e}")


class HttpSink(DestinationSink):
    """POSTs each envelope as JSON to an ingestion endpoint."""

    def __init__(self, name: str, url: str, headers: Optional[Dict[str, str]] = None, timeout: float = 10.0):
        super().__init__(name)
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.session = requests.Session()

    def _post(self, body: Dict) -> requests.Response:
        return self.session.post(self.url, json=body, headers=self.headers, timeout=self.timeout)

    async def deliver(self, envelope: DeliveryEnvelope) -> None:
        try:
            response = await asyncio.to_thread(self._post, envelope.model_dump(mode="json"))
        except requests.RequestException as e:
            raise DeliveryFailure(self.name, f"request to {self.url} failed: {e}")

        if response.status_code >= 300:
            raise DeliveryFailure(self.name, f"{self.url} answered HTTP {response.status_code}")

    async def close(self) -> None:
        self.session.close()


def create_sink(destination: DestinationConfig, output_dir: Path, timeout: float = 10.0) -> DestinationSink:
    """Instantiate the sink described by a destination's configuration."""
    sink = destination.sink
    if sink.type == "memory":
        return MemorySink(destination.name)
    if sink.type == "http":
        if not sink.url:
            raise ValueError(f"Destination {destination.name}: http sink requires a url")
        return HttpSink(destination.name, sink.url, headers=sink.headers, timeout=timeout)

    path = Path(sink.path) if sink.path else Path(output_dir) / f"{destination.name}.jsonl"
    return JsonlFileSink(destination.name, path)


def build_sinks(rule_set: RuleSet, output_dir: Path, timeout: float = 10.0) -> Dict[str, DestinationSink]:
    """One sink per configured destination."""
    sinks = {}
    for name, destination in rule_set.destinations.items():
        sinks[name] = create_sink(destination, output_dir, timeout=timeout)
        logger.debug(f"Destination {name} -> {type(sinks[name]).__name__}")
    return sinks
