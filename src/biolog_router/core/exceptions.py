"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Error taxonomy for the routing pipeline.
"""

from typing import Optional


class BiologRouterError(Exception):
    """Base class for all router errors."""


class ConfigurationError(BiologRouterError):
    """Malformed rule set, or a source system that is unknown or was rejected at load."""

    def __init__(self, message: str, source_system: Optional[str] = None):
        super().__init__(message)
        self.source_system = source_system


class IngestionError(BiologRouterError):
    """A raw event could not be turned into a LogRecord."""


class ClassificationError(BiologRouterError):
    """Raised when a record that already carries tags is classified again."""


class DeliveryFailure(BiologRouterError):
    """A destination sink rejected or timed out on a delivery."""

    def __init__(self, destination: str, message: str):
        super().__init__(f"{destination}: {message}")
        self.destination = destination
