"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Loguru sink configuration.

Operator diagnostics (RoutingGap, ConfigurationError, DeadLetter) are
regular log records bound with a `diagnostic` extra; the alert sink only
receives those.
"""

import sys
from typing import Optional
from loguru import logger


def is_diagnostic(record) -> bool:
    return "diagnostic" in record["extra"]


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    alert_log_file: Optional[str] = None
) -> None:
    """Replace the default loguru sink with the configured ones."""
    logger.remove()

    if log_file:
        logger.add(log_file, level=level, rotation="50 MB", retention=10)
    else:
        logger.add(sys.stderr, level=level)

    if alert_log_file:
        logger.add(
            alert_log_file,
            level="WARNING",
            filter=is_diagnostic,
            format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {extra[diagnostic]} | {message}",
        )
