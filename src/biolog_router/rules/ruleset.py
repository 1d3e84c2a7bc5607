"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Rule-set schema and loader.

A rule set is loaded once, validated eagerly and then shared read-only by
every worker. Each source system is validated on its own: a broken source is
rejected without affecting the others, unless the load is strict.
"""

from pathlib import Path
from typing import Dict, List, Optional, Any, Iterable, Set, Tuple, Union
import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.exceptions import ConfigurationError
from ..core.models import ClassificationTag, DestinationTier, SourceSystem
from .primitives import EnrichmentRule, KeywordPredicate, MaskRule, RegexExtractor

DEFAULT_RULES_PATH = Path(__file__).parent / "default_rules.yaml"


class SinkConfig(BaseModel):
    """Where a destination physically writes."""
    model_config = ConfigDict(frozen=True)

    type: str = "file"  # file, http, memory
    path: Optional[str] = None
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        if value not in ("file", "http", "memory"):
            raise ValueError(f"unknown sink type: {value}")
        return value


class DestinationConfig(BaseModel):
    """A named sink with its retention tier."""
    model_config = ConfigDict(frozen=True)

    name: str
    tier: DestinationTier
    retention_days: int = Field(..., gt=0)
    phi_sensitive: bool = False
    description: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    sink: SinkConfig = Field(default_factory=SinkConfig)


class RouteRule(BaseModel):
    """Sends records carrying any of `tags` to `destination`; no tags means all records."""
    model_config = ConfigDict(frozen=True)

    destination: str
    tags: Optional[Tuple[ClassificationTag, ...]] = None

    @property
    def is_catch_all(self) -> bool:
        return not self.tags

    def accepts(self, tags: Iterable[ClassificationTag]) -> bool:
        if self.is_catch_all:
            return True
        return bool(set(self.tags) & set(tags))


class SourceRules(BaseModel):
    """Everything the pipeline needs to know about one source system."""
    model_config = ConfigDict(frozen=True)

    source_system: SourceSystem
    description: Optional[str] = None
    security: KeywordPredicate
    verbose: KeywordPredicate
    compliance: Optional[KeywordPredicate] = None
    extractors: Tuple[RegexExtractor, ...] = ()
    masking: Optional[str] = None
    mask_rules: Tuple[MaskRule, ...] = ()
    enrichment: Tuple[EnrichmentRule, ...] = ()
    labels: Dict[str, str] = Field(default_factory=dict)
    routes: Tuple[RouteRule, ...] = Field(..., min_length=1)

    @property
    def mask_phi(self) -> bool:
        return bool(self.mask_rules)

    def routes_for(self, tags: Iterable[ClassificationTag]) -> List[RouteRule]:
        tags = list(tags)
        return [route for route in self.routes if route.accepts(tags)]


class RuleSet(BaseModel):
    """Immutable, validated routing configuration."""
    model_config = ConfigDict(frozen=True)

    fallback_destination: str
    destinations: Dict[str, DestinationConfig]
    sources: Dict[SourceSystem, SourceRules]
    default_mask_rules: Tuple[MaskRule, ...] = ()
    rejected: Dict[str, str] = Field(default_factory=dict)
    origin: Optional[str] = None

    def rules_for(self, source_system: Union[str, SourceSystem]) -> SourceRules:
        """Look up the rules of a source.

        Raises:
            ConfigurationError: If the source is unknown or was rejected at load
        """
        source = SourceSystem.parse(source_system)
        if source.value in self.rejected:
            raise ConfigurationError(
                f"Source system {source.value} was rejected at load: {self.rejected[source.value]}",
                source_system=source.value,
            )
        if source not in self.sources:
            raise ConfigurationError(
                f"Source system {source.value} is not configured",
                source_system=source.value,
            )
        return self.sources[source]

    def destinations_for(
        self,
        source_system: SourceSystem,
        tags: Iterable[ClassificationTag]
    ) -> List[DestinationConfig]:
        """Resolve the destinations a classified record flows to, in route order."""
        rules = self.rules_for(source_system)
        seen: Set[str] = set()
        resolved = []
        for route in rules.routes_for(tags):
            if route.destination not in seen:
                seen.add(route.destination)
                resolved.append(self.destinations[route.destination])
        return resolved

    def mask_rules_for(
        self,
        source_system: SourceSystem,
        tags: Iterable[ClassificationTag]
    ) -> Tuple[MaskRule, ...]:
        """Masking rules to apply to a classified record, or () when it stays raw.

        PHI-bearing sources always mask. Any other record is masked with the
        default profile when one of its destinations is PHI-sensitive.
        """
        rules = self.rules_for(source_system)
        if rules.mask_phi:
            return rules.mask_rules
        if any(d.phi_sensitive for d in self.destinations_for(source_system, tags)):
            return self.default_mask_rules
        return ()

    @property
    def fallback(self) -> DestinationConfig:
        return self.destinations[self.fallback_destination]

    def uncovered_tags(self, source_system: SourceSystem) -> List[ClassificationTag]:
        """Tags with no route for this source (they would raise a RoutingGap)."""
        rules = self.sources[source_system]
        return [tag for tag in ClassificationTag if not rules.routes_for([tag])]


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else item.get("msg", ""))
    return "; ".join(parts)


def _build_destinations(raw: Any) -> Dict[str, DestinationConfig]:
    if not isinstance(raw, dict) or not raw:
        raise ConfigurationError("Rule set must define at least one destination")

    destinations = {}
    for name, data in raw.items():
        try:
            destinations[name] = DestinationConfig(name=name, **(data or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Destination {name}: {_format_validation_error(e)}")
        except TypeError as e:
            raise ConfigurationError(f"Destination {name}: {e}")
    return destinations


def _build_masking_profiles(raw: Any) -> Dict[str, Tuple[MaskRule, ...]]:
    profiles: Dict[str, Tuple[MaskRule, ...]] = {}
    for name, rules in (raw or {}).items():
        try:
            profile = tuple(MaskRule(**rule) for rule in (rules or []))
        except ValidationError as e:
            raise ConfigurationError(f"Masking profile {name}: {_format_validation_error(e)}")
        except TypeError as e:
            raise ConfigurationError(f"Masking profile {name}: {e}")

        if not profile:
            raise ConfigurationError(f"Masking profile {name} has no rules")

        # A replacement that some pattern of the profile would re-match breaks
        # idempotence of masking.
        for rule in profile:
            for other in profile:
                if other.pattern.search(rule.replacement):
                    raise ConfigurationError(
                        f"Masking profile {name}: replacement of '{rule.name}' "
                        f"is matched by pattern '{other.name}'"
                    )
        profiles[name] = profile
    return profiles


def _build_source(
    name: str,
    data: Any,
    destinations: Dict[str, DestinationConfig],
    profiles: Dict[str, Tuple[MaskRule, ...]],
    has_default_masking: bool = False
) -> SourceRules:
    source = SourceSystem.parse(name)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Source {source.value}: rules must be a mapping", source.value)

    data = dict(data)
    profile_name = data.get("masking")
    if profile_name:
        if profile_name not in profiles:
            raise ConfigurationError(
                f"Source {source.value}: unknown masking profile '{profile_name}'", source.value
            )
        data["mask_rules"] = profiles[profile_name]

    try:
        rules = SourceRules(source_system=source, **data)
    except ValidationError as e:
        raise ConfigurationError(f"Source {source.value}: {_format_validation_error(e)}", source.value)
    except TypeError as e:
        raise ConfigurationError(f"Source {source.value}: {e}", source.value)

    for route in rules.routes:
        if route.destination not in destinations:
            raise ConfigurationError(
                f"Source {source.value}: route to unknown destination '{route.destination}'",
                source.value,
            )

    if not rules.mask_phi and not has_default_masking:
        for route in rules.routes:
            if destinations[route.destination].phi_sensitive:
                raise ConfigurationError(
                    f"Source {source.value}: routes to PHI-sensitive destination "
                    f"'{route.destination}' without a masking profile",
                    source.value,
                )

    # Central visibility: at least one classification must reach an analytics tier.
    if not any(destinations[r.destination].tier == DestinationTier.ANALYTICS for r in rules.routes):
        raise ConfigurationError(
            f"Source {source.value}: no route to an analytics-tier destination",
            source.value,
        )

    return rules


def build_rule_set(raw: Dict[str, Any], strict: bool = False, origin: Optional[str] = None) -> RuleSet:
    """Validate a parsed rule-set document.

    Args:
        raw: Parsed YAML/JSON document
        strict: Raise on the first invalid source instead of rejecting it
        origin: Where the document came from, for diagnostics

    Returns:
        Validated RuleSet

    Raises:
        ConfigurationError: If the document is invalid as a whole, or any
            source is invalid and strict is set
    """
    if not isinstance(raw, dict):
        raise ConfigurationError("Rule set must be a mapping")

    destinations = _build_destinations(raw.get("destinations"))
    profiles = _build_masking_profiles(raw.get("masking_profiles"))

    fallback = raw.get("fallback_destination")
    if not fallback:
        raise ConfigurationError("Rule set must name a fallback_destination")
    if fallback not in destinations:
        raise ConfigurationError(f"Unknown fallback_destination '{fallback}'")
    if destinations[fallback].phi_sensitive:
        raise ConfigurationError("fallback_destination must not be PHI-sensitive")

    default_masking = raw.get("default_masking")
    if default_masking and default_masking not in profiles:
        raise ConfigurationError(f"Unknown default_masking profile '{default_masking}'")
    default_mask_rules = profiles[default_masking] if default_masking else ()

    raw_sources = raw.get("sources")
    if not isinstance(raw_sources, dict) or not raw_sources:
        raise ConfigurationError("Rule set must define at least one source")

    sources: Dict[SourceSystem, SourceRules] = {}
    rejected: Dict[str, str] = {}
    for name, data in raw_sources.items():
        try:
            rules = _build_source(
                str(name), data, destinations, profiles,
                has_default_masking=bool(default_mask_rules)
            )
        except ConfigurationError as e:
            if strict:
                raise
            key = e.source_system or str(name)
            rejected[key] = str(e)
            logger.bind(diagnostic="ConfigurationError", source_system=key).error(
                f"Rejected rule set for source {key}: {e}"
            )
            continue
        sources[rules.source_system] = rules

    rule_set = RuleSet(
        fallback_destination=fallback,
        destinations=destinations,
        sources=sources,
        default_mask_rules=default_mask_rules,
        rejected=rejected,
        origin=origin,
    )

    for source in rule_set.sources:
        uncovered = rule_set.uncovered_tags(source)
        if uncovered:
            logger.warning(
                f"Source {source.value} has no route for tags "
                f"{', '.join(t.value for t in uncovered)}; they will use {fallback}"
            )

    logger.info(
        f"Loaded rule set with {len(sources)} sources and {len(destinations)} destinations"
        + (f" ({len(rejected)} rejected)" if rejected else "")
    )
    return rule_set


def load_rule_set(path: Optional[Union[str, Path]] = None, strict: bool = False) -> RuleSet:
    """Load and validate a rule set from YAML.

    Args:
        path: Rule-set file; the bundled defaults when omitted
        strict: Reject the whole file when any source is invalid

    Returns:
        Validated RuleSet
    """
    path = Path(path) if path else DEFAULT_RULES_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read rule set {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in rule set {path}: {e}")

    return build_rule_set(raw, strict=strict, origin=str(path))
