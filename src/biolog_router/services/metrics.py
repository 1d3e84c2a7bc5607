"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Operational counters for the routing pipeline.
"""

import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict


class PipelineStats:
    """Aggregate counters and recent operator diagnostics."""

    def __init__(self, max_diagnostics: int = 100):
        self._counters: Dict[str, int] = {}
        self._diagnostics: Deque[Dict[str, Any]] = deque(maxlen=max_diagnostics)
        self._lock = threading.Lock()
        self._start_time = time.time()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def record_diagnostic(self, kind: str, **details: Any) -> None:
        entry = {"kind": kind, "at": datetime.now(timezone.utc).isoformat()}
        entry.update(details)
        with self._lock:
            self._diagnostics.append(entry)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "recent_diagnostics": list(self._diagnostics),
                "uptime_seconds": round(time.time() - self._start_time, 1),
                "last_updated": datetime.now(timezone.utc).isoformat(),
            }
