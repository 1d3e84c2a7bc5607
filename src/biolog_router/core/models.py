"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Core data models for the biolog-router pipeline.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Any
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError


class SourceSystem(str, Enum):
    """Originating bio-pharma systems."""
    ELN = "ELN"
    LIMS = "LIMS"
    CTMS = "CTMS"
    MES = "MES"
    PV = "PV"
    INSTRUMENTS = "Instruments"
    COLDCHAIN = "ColdChain"
    INSTRUMENT_QUALIFICATION = "InstrumentQualification"

    @classmethod
    def parse(cls, value: Any) -> "SourceSystem":
        """Resolve a source system name case-insensitively.

        Raises:
            ConfigurationError: If the name is not a known source system
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text or member.name.lower() == text:
                return member
        raise ConfigurationError(f"Unknown source system: {value!r}", source_system=str(value))


class ClassificationTag(str, Enum):
    """Tags assigned by the classification engine."""
    SECURITY_RELEVANT = "security-relevant"
    VERBOSE = "verbose"
    COMPLIANCE_RECORD = "compliance-record"
    UNCATEGORIZED = "uncategorized"


class DestinationTier(str, Enum):
    """Retention/cost tier of a destination."""
    ANALYTICS = "analytics"
    BASIC = "basic"
    SPECIALIZED = "specialized-domain"


class LogRecord(BaseModel):
    """The atomic unit flowing through the pipeline.

    Records are frozen: every stage returns an updated copy.
    """
    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_system: SourceSystem
    raw_payload: str
    timestamp: datetime
    extracted_fields: Dict[str, str] = Field(default_factory=dict)
    classification_tags: FrozenSet[ClassificationTag] = Field(default_factory=frozenset)
    masked_payload: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_classified(self) -> bool:
        return bool(self.classification_tags)

    @property
    def effective_payload(self) -> str:
        """Payload variant that leaves the pipeline."""
        return self.masked_payload if self.masked_payload is not None else self.raw_payload


class DeliveryEnvelope(BaseModel):
    """One copy of a record addressed to a single destination."""
    record_id: str
    source_system: SourceSystem
    destination: str
    tier: DestinationTier
    retention_days: int
    payload: str
    masked: bool = False
    extracted_fields: Dict[str, str] = Field(default_factory=dict)
    tags: List[ClassificationTag] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime


class RoutingGap(BaseModel):
    """Diagnostic emitted when a record matched no destination."""
    record_id: str
    source_system: SourceSystem
    tags: List[ClassificationTag] = Field(default_factory=list)
    fallback_destination: str
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeliveryOutcome(BaseModel):
    """Result of delivering one envelope."""
    destination: str
    delivered: bool
    dead_lettered: bool = False
    error: Optional[str] = None


class RoutingResult(BaseModel):
    """Response model for a routed record."""
    record_id: str
    source_system: SourceSystem
    classification_tags: List[ClassificationTag] = Field(default_factory=list)
    extracted_fields: Dict[str, str] = Field(default_factory=dict)
    masked: bool = False
    routing_gap: bool = False
    outcomes: List[DeliveryOutcome] = Field(default_factory=list)

    @property
    def delivered_to(self) -> List[str]:
        return [o.destination for o in self.outcomes if o.delivered]

    @property
    def dead_lettered_to(self) -> List[str]:
        return [o.destination for o in self.outcomes if o.dead_lettered]


class IngestRequest(BaseModel):
    """Request model for HTTP push ingestion."""
    source_system: str = Field(..., description="Originating source system")
    raw_payload: str = Field(..., description="Original log line")
    timestamp: Optional[str] = Field(default=None, description="ISO-8601 creation time")


class IngestBatchRequest(BaseModel):
    """Request model for batch ingestion."""
    records: List[IngestRequest] = Field(default_factory=list)
    max_concurrent: Optional[int] = Field(default=None, ge=1)
