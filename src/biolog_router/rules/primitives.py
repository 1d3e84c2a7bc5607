"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Typed rule objects evaluated by the pipeline stages.

Patterns are compiled when the model is validated, so a malformed rule set
fails while loading and never while a record is being processed.
"""

import hashlib
import re
from functools import cached_property
from typing import Annotated, Any, Dict, List, Literal, Optional, Pattern, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.models import ClassificationTag, LogRecord

# Characters that separate terms, mirroring `has`/`has_any` term semantics.
_TERM_CHARS = "A-Za-z0-9"


def _keyword_regex(keywords: Tuple[str, ...]) -> Optional[Pattern[str]]:
    """Build one case-insensitive alternation matching whole terms."""
    alternatives = []
    for keyword in keywords:
        words = keyword.split()
        alternatives.append(f"[^{_TERM_CHARS}]+".join(re.escape(w) for w in words))
    if not alternatives:
        return None
    return re.compile(
        rf"(?<![{_TERM_CHARS}])(?:{'|'.join(alternatives)})(?![{_TERM_CHARS}])",
        re.IGNORECASE,
    )


class KeywordPredicate(BaseModel):
    """Matches when any keyword is present and no exclusion keyword is."""
    model_config = ConfigDict(frozen=True)

    keywords: Tuple[str, ...] = Field(..., min_length=1)
    exclude: Tuple[str, ...] = ()

    @field_validator("keywords", "exclude", mode="before")
    @classmethod
    def _flatten_keyword_groups(cls, value: Any) -> Any:
        # Shared keyword sets are spliced in as nested lists (YAML aliases).
        if isinstance(value, (list, tuple)):
            flat = []
            for item in value:
                if isinstance(item, (list, tuple)):
                    flat.extend(item)
                else:
                    flat.append(item)
            return flat
        return value

    @field_validator("keywords", "exclude")
    @classmethod
    def _no_blank_keywords(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        cleaned = tuple(k.strip() for k in value)
        if any(not k for k in cleaned):
            raise ValueError("keywords must be non-empty strings")
        return cleaned

    @cached_property
    def include_pattern(self) -> Optional[Pattern[str]]:
        return _keyword_regex(self.keywords)

    @cached_property
    def exclude_pattern(self) -> Optional[Pattern[str]]:
        return _keyword_regex(self.exclude)

    def mentions_any(self, text: str) -> bool:
        """True if any of the include keywords occurs, ignoring exclusions."""
        return bool(self.include_pattern and self.include_pattern.search(text))

    def matches(self, text: str) -> bool:
        if not self.mentions_any(text):
            return False
        return not (self.exclude_pattern and self.exclude_pattern.search(text))


class RegexExtractor(BaseModel):
    """Populates extracted fields from the named groups of one pattern."""
    model_config = ConfigDict(frozen=True)

    pattern: Pattern[str]

    @field_validator("pattern")
    @classmethod
    def _requires_named_groups(cls, value: Pattern[str]) -> Pattern[str]:
        if not value.groupindex:
            raise ValueError(f"extractor pattern has no named capture group: {value.pattern!r}")
        return value

    @property
    def fields(self) -> List[str]:
        return list(self.pattern.groupindex)

    def extract(self, text: str) -> Dict[str, str]:
        match = self.pattern.search(text)
        if not match:
            return {}
        return {name: value for name, value in match.groupdict().items() if value}


class MaskRule(BaseModel):
    """Replaces every match of a PHI/PII pattern with literal text."""
    model_config = ConfigDict(frozen=True)

    name: str
    pattern: Pattern[str]
    replacement: str

    def apply(self, text: str) -> str:
        return self.pattern.sub(lambda _: self.replacement, text)


class _EnrichmentBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    when_tag: Optional[ClassificationTag] = None

    def applies_to(self, record: LogRecord) -> bool:
        return self.when_tag is None or self.when_tag in record.classification_tags


class StaticEnrichment(_EnrichmentBase):
    """Attaches a fixed key/value pair."""
    kind: Literal["static"] = "static"
    key: str
    value: str

    def compute(self, record: LogRecord) -> Dict[str, str]:
        return {self.key: self.value}


class IntegrityHash(_EnrichmentBase):
    """Hash of the payload variant that will be delivered."""
    kind: Literal["hash"] = "hash"
    key: str = "RecordIntegrityHash"
    algorithm: str = "sha256"

    @field_validator("algorithm")
    @classmethod
    def _known_algorithm(cls, value: str) -> str:
        if value not in hashlib.algorithms_guaranteed:
            raise ValueError(f"unsupported hash algorithm: {value}")
        return value

    def compute(self, record: LogRecord) -> Dict[str, str]:
        digest = hashlib.new(self.algorithm, record.effective_payload.encode("utf-8"))
        return {self.key: digest.hexdigest()}


class KeywordCategory(_EnrichmentBase):
    """First category whose keyword occurs in the payload, else the default."""
    kind: Literal["keyword_category"] = "keyword_category"
    key: str
    categories: Tuple[str, ...] = Field(..., min_length=1)
    default: str = "Unknown"

    @cached_property
    def category_predicates(self) -> List[Tuple[str, KeywordPredicate]]:
        return [(c, KeywordPredicate(keywords=(c,))) for c in self.categories]

    def compute(self, record: LogRecord) -> Dict[str, str]:
        text = record.effective_payload
        for category, predicate in self.category_predicates:
            if predicate.matches(text):
                return {self.key: category}
        return {self.key: self.default}


EnrichmentRule = Annotated[
    Union[StaticEnrichment, IntegrityHash, KeywordCategory],
    Field(discriminator="kind"),
]
