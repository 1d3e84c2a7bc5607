"""
biolog-router - Bio-Pharma Log Classification and Routing

Classifies security-relevant, verbose and compliance records from lab,
clinical and manufacturing systems, masks PHI/PII, and routes each record
to tiered destinations with per-destination retries and dead-lettering.
"""

__version__ = "0.1.0"
__author__ = "DIER Team"
__email__ = "team@dier.org"

from .core.router import LogRouter, log_router
from .core.models import LogRecord, RoutingResult, SourceSystem, ClassificationTag
from .rules.ruleset import RuleSet, load_rule_set

__all__ = [
    "LogRouter",
    "log_router",
    "LogRecord",
    "RoutingResult",
    "SourceSystem",
    "ClassificationTag",
    "RuleSet",
    "load_rule_set",
]
