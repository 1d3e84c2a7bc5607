"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Routing/tiering dispatcher: fans a transformed record out to its destinations.
"""

import asyncio
from typing import Any, Dict, List, Optional
import backoff
from loguru import logger

from ..core.exceptions import DeliveryFailure
from ..core.models import (
    DeliveryEnvelope,
    DeliveryOutcome,
    LogRecord,
    RoutingGap,
    RoutingResult,
)
from ..rules.ruleset import DestinationConfig, RuleSet
from ..services.dead_letter import DeadLetterStore
from ..services.metrics import PipelineStats
from ..services.sinks import DestinationSink


class RoutingDispatcher:
    """Delivers records to every matching destination.

    Each destination is its own failure domain: it gets an independent timeout
    and retry budget, and a failure never cancels the sibling deliveries.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        sinks: Dict[str, DestinationSink],
        dead_letters: Optional[DeadLetterStore] = None,
        stats: Optional[PipelineStats] = None,
        timeout: float = 5.0,
        max_tries: int = 3,
        backoff_factor: float = 0.5,
        backoff_max: float = 30.0
    ):
        self.rule_set = rule_set
        self.sinks = sinks
        self.dead_letters = dead_letters
        self.stats = stats or PipelineStats()
        self.timeout = timeout

        self._deliver_with_retry = backoff.on_exception(
            backoff.expo,
            DeliveryFailure,
            max_tries=max_tries,
            factor=backoff_factor,
            max_value=backoff_max,
            on_backoff=self._log_backoff,
        )(self._attempt)

    @staticmethod
    def _log_backoff(details: Dict[str, Any]) -> None:
        envelope = details["args"][0]
        logger.warning(
            f"Delivery of {envelope.record_id} to {envelope.destination} failed "
            f"(try {details['tries']}), retrying in {details['wait']:.2f}s"
        )

    async def _attempt(self, envelope: DeliveryEnvelope) -> None:
        sink = self.sinks.get(envelope.destination)
        if sink is None:
            raise DeliveryFailure(envelope.destination, "no sink configured")

        try:
            await asyncio.wait_for(sink.deliver(envelope), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise DeliveryFailure(envelope.destination, f"timed out after {self.timeout}s")
        except DeliveryFailure:
            raise
        except Exception as e:
            raise DeliveryFailure(envelope.destination, f"unexpected sink error: {e}") from e

    def build_envelope(self, record: LogRecord, destination: DestinationConfig) -> DeliveryEnvelope:
        """Destination-specific copy of a record.

        Once masking has produced a masked variant, that variant is the only
        payload any destination receives.

        Raises:
            ValueError: If an unmasked payload would reach a PHI-sensitive destination
        """
        masked = record.masked_payload is not None
        if destination.phi_sensitive and not masked:
            raise ValueError(
                f"Refusing to deliver unmasked record {record.record_id} to {destination.name}"
            )

        metadata = dict(record.metadata)
        metadata.update(destination.labels)

        return DeliveryEnvelope(
            record_id=record.record_id,
            source_system=record.source_system,
            destination=destination.name,
            tier=destination.tier,
            retention_days=destination.retention_days,
            payload=record.effective_payload,
            masked=masked,
            extracted_fields=dict(record.extracted_fields),
            tags=sorted(record.classification_tags, key=lambda t: t.value),
            metadata=metadata,
            timestamp=record.timestamp,
        )

    async def deliver(self, envelope: DeliveryEnvelope, dead_letter: bool = True) -> DeliveryOutcome:
        """Deliver one envelope with retries; dead-letter it when retries run out."""
        try:
            await self._deliver_with_retry(envelope)
        except DeliveryFailure as e:
            self.stats.increment("delivery_failures")
            persisted = False
            if dead_letter and self.dead_letters is not None:
                try:
                    await asyncio.to_thread(self.dead_letters.write, envelope, str(e))
                    persisted = True
                    self.stats.increment("dead_lettered")
                except OSError as write_error:
                    logger.error(f"Could not persist dead letter for {envelope.record_id}: {write_error}")

            logger.bind(diagnostic="DeadLetter", destination=envelope.destination).error(
                f"Giving up on {envelope.record_id} -> {envelope.destination}: {e}"
                + (" (dead-lettered)" if persisted else "")
            )
            return DeliveryOutcome(
                destination=envelope.destination,
                delivered=False,
                dead_lettered=persisted,
                error=str(e),
            )

        self.stats.increment("deliveries")
        self.stats.increment(f"delivered.{envelope.destination}")
        return DeliveryOutcome(destination=envelope.destination, delivered=True)

    def _report_gap(self, record: LogRecord) -> None:
        gap = RoutingGap(
            record_id=record.record_id,
            source_system=record.source_system,
            tags=sorted(record.classification_tags, key=lambda t: t.value),
            fallback_destination=self.rule_set.fallback_destination,
        )
        self.stats.increment("routing_gaps")
        self.stats.record_diagnostic("RoutingGap", **gap.model_dump(mode="json"))
        logger.bind(diagnostic="RoutingGap", source_system=record.source_system.value).warning(
            f"Record {record.record_id} from {record.source_system.value} with tags "
            f"{[t.value for t in gap.tags]} matched no destination; "
            f"retaining it in {gap.fallback_destination}"
        )

    async def dispatch(self, record: LogRecord) -> RoutingResult:
        """Fan a transformed record out to all of its destinations.

        Args:
            record: Classified and transformed record

        Returns:
            Routing result with one outcome per destination
        """
        destinations: List[DestinationConfig] = self.rule_set.destinations_for(
            record.source_system, record.classification_tags
        )

        routing_gap = not destinations
        if routing_gap:
            self._report_gap(record)
            destinations = [self.rule_set.fallback]

        envelopes = [self.build_envelope(record, d) for d in destinations]
        outcomes = await asyncio.gather(*(self.deliver(e) for e in envelopes))

        self.stats.increment("records_routed")
        return RoutingResult(
            record_id=record.record_id,
            source_system=record.source_system,
            classification_tags=sorted(record.classification_tags, key=lambda t: t.value),
            extracted_fields=dict(record.extracted_fields),
            masked=record.masked_payload is not None,
            routing_gap=routing_gap,
            outcomes=list(outcomes),
        )

    async def close(self) -> None:
        for sink in self.sinks.values():
            await sink.close()
