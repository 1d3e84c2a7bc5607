"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Main log router class wiring the pipeline stages together.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Any, Optional, Union
from loguru import logger

from .config import Settings, settings as default_settings
from .models import LogRecord, RoutingResult, SourceSystem
from ..pipeline.classification import ClassificationEngine
from ..pipeline.dispatcher import RoutingDispatcher
from ..pipeline.ingestion import IngestionAdapter
from ..pipeline.transform import TransformStage
from ..rules.ruleset import RuleSet, load_rule_set
from ..services.dead_letter import DeadLetterStore
from ..services.metrics import PipelineStats
from ..services.sinks import DestinationSink, build_sinks


class LogRouter:
    """Ingestion -> classification -> transform -> routing, one record at a time."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        rule_set: Optional[RuleSet] = None,
        sinks: Optional[Dict[str, DestinationSink]] = None,
        dead_letters: Optional[DeadLetterStore] = None
    ):
        """Initialize the router.

        Anything not given is built from settings on initialize().
        """
        self.settings = settings or default_settings
        self.rule_set = rule_set
        self._sinks = sinks
        self._dead_letters = dead_letters
        self.stats = PipelineStats()
        self._initialized = False

    def initialize(self) -> None:
        """Load the rule set once and build every stage around it."""
        if self._initialized:
            return

        try:
            logger.info("Initializing log router")

            if self.rule_set is None:
                self.rule_set = load_rule_set(self.settings.rules_path, strict=self.settings.strict_rules)
            if self._sinks is None:
                self._sinks = build_sinks(
                    self.rule_set, self.settings.output_dir, timeout=self.settings.delivery_timeout
                )
            if self._dead_letters is None:
                self._dead_letters = DeadLetterStore(self.settings.dead_letter_path)

            self.ingestion = IngestionAdapter(self.rule_set)
            self.classifier = ClassificationEngine(self.rule_set)
            self.transform = TransformStage(self.rule_set, stats=self.stats)
            self.dispatcher = RoutingDispatcher(
                self.rule_set,
                self._sinks,
                dead_letters=self._dead_letters,
                stats=self.stats,
                timeout=self.settings.delivery_timeout,
                max_tries=self.settings.delivery_max_tries,
                backoff_factor=self.settings.delivery_backoff_factor,
                backoff_max=self.settings.delivery_backoff_max,
            )

            self._initialized = True
            logger.info(f"Log router initialized with sources: {', '.join(s.value for s in self.rule_set.sources)}")
        except Exception as e:
            logger.error(f"Failed to initialize log router: {e}")
            raise

    @property
    def sinks(self) -> Dict[str, DestinationSink]:
        return self._sinks or {}

    @property
    def dead_letters(self) -> Optional[DeadLetterStore]:
        return self._dead_letters

    def prepare(
        self,
        source_system: Union[str, SourceSystem],
        raw_payload: str,
        timestamp: Optional[Union[str, datetime]] = None
    ) -> LogRecord:
        """Run the pure stages (ingest, classify, transform) without delivering.

        Raises:
            ConfigurationError: If the source system is unknown or rejected
            IngestionError: If the timestamp is invalid
        """
        self.initialize()

        record = self.ingestion.ingest(source_system, raw_payload, timestamp)
        self.stats.increment("records_ingested")

        record = self.classifier.classify(record)
        self.stats.increment("records_classified")
        for tag in record.classification_tags:
            self.stats.increment(f"classified.{tag.value}")

        return self.transform.apply(record)

    async def process(
        self,
        source_system: Union[str, SourceSystem],
        raw_payload: str,
        timestamp: Optional[Union[str, datetime]] = None
    ) -> RoutingResult:
        """Route one raw event end to end.

        Args:
            source_system: Originating system
            raw_payload: Original log line
            timestamp: ISO-8601 creation time, optional

        Returns:
            Routing result
        """
        record = self.prepare(source_system, raw_payload, timestamp)
        return await self.dispatcher.dispatch(record)

    async def process_batch(
        self,
        events: List[Dict[str, Any]],
        max_concurrent: Optional[int] = None
    ) -> List[Union[RoutingResult, Exception]]:
        """Route many events concurrently.

        Args:
            events: Dictionaries with 'source_system', 'raw_payload' and optional 'timestamp'
            max_concurrent: Maximum records in flight

        Returns:
            One routing result per event, or the exception that rejected it
        """
        self.initialize()
        limit = max_concurrent or self.settings.max_concurrent_records
        logger.info(f"Routing batch of {len(events)} records (max {limit} concurrent)")

        # Create semaphore to limit records in flight
        semaphore = asyncio.Semaphore(limit)

        async def route_single(event: Dict[str, Any]) -> RoutingResult:
            async with semaphore:
                return await self.process(
                    event["source_system"],
                    event["raw_payload"],
                    event.get("timestamp"),
                )

        tasks = [route_single(event) for event in events]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        rejected = sum(1 for r in results if isinstance(r, Exception))
        if rejected:
            self.stats.increment("records_rejected", rejected)
            logger.warning(f"{rejected} of {len(events)} records were rejected")
        return list(results)

    async def replay_dead_letters(self) -> Dict[str, int]:
        """Re-deliver dead-lettered envelopes; those still failing stay in the file.

        Returns:
            Counts of replayed, delivered and remaining envelopes
        """
        self.initialize()
        entries = self._dead_letters.claim()
        if not entries:
            self._dead_letters.release([])
            return {"replayed": 0, "delivered": 0, "remaining": 0}

        logger.info(f"Replaying {len(entries)} dead-lettered deliveries")
        outcomes = await asyncio.gather(
            *(self.dispatcher.deliver(envelope, dead_letter=False) for envelope, _ in entries)
        )

        remaining = [
            (envelope, outcome.error or error)
            for (envelope, error), outcome in zip(entries, outcomes)
            if not outcome.delivered
        ]
        self._dead_letters.release(remaining)

        return {
            "replayed": len(entries),
            "delivered": len(entries) - len(remaining),
            "remaining": len(remaining),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Pipeline counters plus configuration status."""
        snapshot = self.stats.snapshot()
        snapshot["initialized"] = self._initialized
        if self.rule_set is not None:
            snapshot["sources"] = [s.value for s in self.rule_set.sources]
            snapshot["rejected_sources"] = dict(self.rule_set.rejected)
        return snapshot

    def describe_sources(self) -> List[Dict[str, Any]]:
        """Routing table per configured source system."""
        self.initialize()
        table = []
        for source, rules in self.rule_set.sources.items():
            table.append({
                "source_system": source.value,
                "description": rules.description,
                "masking": rules.masking,
                "routes": [
                    {
                        "destination": route.destination,
                        "tier": self.rule_set.destinations[route.destination].tier.value,
                        "retention_days": self.rule_set.destinations[route.destination].retention_days,
                        "tags": [t.value for t in route.tags] if route.tags else ["*"],
                    }
                    for route in rules.routes
                ],
            })
        return table

    async def close(self) -> None:
        if self._initialized:
            await self.dispatcher.close()


# Global router instance
log_router = LogRouter()
