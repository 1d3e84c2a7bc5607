"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Ingestion adapter: turns raw events into LogRecords.
"""

import re
from datetime import datetime, timezone
from typing import Optional, Union

from ..core.exceptions import IngestionError
from ..core.models import LogRecord, SourceSystem
from ..rules.ruleset import RuleSet

# Leading ISO-8601 timestamp, as written by the collectors (recordStartTimestampFormat).
ISO_TIMESTAMP_PREFIX = re.compile(
    r"^\s*(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?)"
)
_COMPACT_OFFSET = re.compile(r"(\d{2}:\d{2}:\d{2}(?:\.\d+)?)([+-]\d{2})(\d{2})$")
_FRACTION = re.compile(r"(?<=:\d{2})\.(\d+)")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Raises:
        ValueError: If the value is not ISO-8601
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes +HH:MM offsets and 3 or 6 fraction digits.
    text = _COMPACT_OFFSET.sub(r"\1\2:\3", text)
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def leading_timestamp(payload: str) -> Optional[datetime]:
    """Timestamp at the start of a payload, or None."""
    match = ISO_TIMESTAMP_PREFIX.match(payload)
    if not match:
        return None
    try:
        return parse_timestamp(match.group(1))
    except ValueError:
        return None


class IngestionAdapter:
    """Accepts (source system, payload, timestamp) tuples."""

    def __init__(self, rule_set: RuleSet):
        self.rule_set = rule_set

    def ingest(
        self,
        source_system: Union[str, SourceSystem],
        raw_payload: str,
        timestamp: Optional[Union[str, datetime]] = None
    ) -> LogRecord:
        """Create a LogRecord for one raw event.

        Args:
            source_system: Originating system name
            raw_payload: Original log line
            timestamp: Creation time; read from the payload when omitted

        Returns:
            Record with only source, payload and timestamp populated

        Raises:
            ConfigurationError: If the source system is unknown or not configured
            IngestionError: If an explicit timestamp is not ISO-8601
        """
        # Fail fast: no record is created for a source without rules.
        rules = self.rule_set.rules_for(source_system)

        if isinstance(timestamp, datetime):
            resolved = timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=timezone.utc)
        elif timestamp:
            try:
                resolved = parse_timestamp(timestamp)
            except ValueError:
                raise IngestionError(f"Invalid ISO-8601 timestamp: {timestamp!r}")
        else:
            resolved = leading_timestamp(raw_payload) or datetime.now(timezone.utc)

        return LogRecord(
            source_system=rules.source_system,
            raw_payload=raw_payload,
            timestamp=resolved,
        )
