"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Classification engine: assigns routing tags to ingested records.
"""

from typing import FrozenSet, Set

from ..core.exceptions import ClassificationError
from ..core.models import ClassificationTag, LogRecord
from ..rules.ruleset import RuleSet, SourceRules


def classify_payload(rules: SourceRules, payload: str) -> FrozenSet[ClassificationTag]:
    """Two-tier classification of one payload.

    security-relevant requires the security predicate and none of the verbose
    keywords, so it can never co-occur with verbose. Records that are neither
    stay uncategorized and still reach their domain destination.
    """
    tags: Set[ClassificationTag] = set()

    is_noise = rules.verbose.mentions_any(payload)
    if rules.security.matches(payload) and not is_noise:
        tags.add(ClassificationTag.SECURITY_RELEVANT)
    elif rules.verbose.matches(payload):
        tags.add(ClassificationTag.VERBOSE)
    else:
        tags.add(ClassificationTag.UNCATEGORIZED)

    if rules.compliance is not None and rules.compliance.matches(payload):
        tags.add(ClassificationTag.COMPLIANCE_RECORD)

    return frozenset(tags)


class ClassificationEngine:
    """Evaluates the per-source predicates of a shared rule set."""

    def __init__(self, rule_set: RuleSet):
        self.rule_set = rule_set

    def classify(self, record: LogRecord) -> LogRecord:
        """Return a copy of the record carrying its classification tags.

        Raises:
            ClassificationError: If the record was already classified
        """
        if record.is_classified:
            raise ClassificationError(f"Record {record.record_id} is already classified")

        rules = self.rule_set.rules_for(record.source_system)
        tags = classify_payload(rules, record.raw_payload)
        return record.model_copy(update={"classification_tags": tags})
