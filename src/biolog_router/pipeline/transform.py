"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Transform & masking stage.

The stage is a left-fold of pure steps over a classified record, always in
the order extract -> mask -> enrich. Masking has to finish before anything
reads the payload variant that leaves the pipeline.
"""

from functools import partial, reduce
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..core.models import LogRecord
from ..rules.primitives import MaskRule
from ..rules.ruleset import RuleSet, SourceRules
from ..services.metrics import PipelineStats

TransformStep = Callable[[LogRecord], LogRecord]


def apply_mask_rules(text: str, mask_rules: Iterable[MaskRule]) -> str:
    """Apply masking rules cumulatively, each on the previous rule's output."""
    return reduce(lambda working, rule: rule.apply(working), mask_rules, text)


def extract_fields(record: LogRecord, rules: SourceRules) -> LogRecord:
    """Best-effort field extraction from the raw payload; misses are simply absent."""
    fields: Dict[str, str] = dict(record.extracted_fields)
    for extractor in rules.extractors:
        for name, value in extractor.extract(record.raw_payload).items():
            fields.setdefault(name, value)
    return record.model_copy(update={"extracted_fields": fields})


def mask_payload(record: LogRecord, mask_rules: Tuple[MaskRule, ...]) -> LogRecord:
    """Produce the masked payload variant when masking applies to this record.

    Extracted values were captured from the raw payload, so they are masked
    with the same rules.
    """
    if not mask_rules:
        return record
    fields = {
        name: apply_mask_rules(value, mask_rules)
        for name, value in record.extracted_fields.items()
    }
    return record.model_copy(update={
        "masked_payload": apply_mask_rules(record.raw_payload, mask_rules),
        "extracted_fields": fields,
    })


def enrich_metadata(record: LogRecord, rules: SourceRules) -> LogRecord:
    """Attach standard metadata, source labels and enrichment rule output."""
    metadata: Dict[str, str] = {
        "SourceSystem": record.source_system.value,
        "TimeGenerated": record.timestamp.isoformat(),
    }
    metadata.update(rules.labels)
    for rule in rules.enrichment:
        if rule.applies_to(record):
            metadata.update(rule.compute(record))
    return record.model_copy(update={"metadata": metadata})


class TransformStage:
    """Runs the ordered transform steps for each record."""

    def __init__(self, rule_set: RuleSet, stats: Optional[PipelineStats] = None):
        self.rule_set = rule_set
        self.stats = stats

    def steps_for(self, record: LogRecord) -> List[TransformStep]:
        """Ordered, bound transform steps for a classified record."""
        rules = self.rule_set.rules_for(record.source_system)
        mask_rules = self.rule_set.mask_rules_for(record.source_system, record.classification_tags)
        return [
            partial(extract_fields, rules=rules),
            partial(mask_payload, mask_rules=mask_rules),
            partial(enrich_metadata, rules=rules),
        ]

    def apply(self, record: LogRecord) -> LogRecord:
        """Transform a classified record.

        Args:
            record: Record carrying classification tags

        Returns:
            Record with extracted fields, optional masked payload and metadata
        """
        transformed = reduce(lambda current, step: step(current), self.steps_for(record), record)

        if self.stats is not None:
            rules = self.rule_set.rules_for(record.source_system)
            declared = {name for extractor in rules.extractors for name in extractor.fields}
            misses = len(declared - set(transformed.extracted_fields))
            if misses:
                self.stats.increment("extraction_misses", misses)
            if transformed.masked_payload is not None:
                self.stats.increment("records_masked")

        return transformed
