"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Dead-letter persistence for deliveries that exhausted their retries.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple
from loguru import logger
from pydantic import ValidationError

from ..core.models import DeliveryEnvelope


class DeadLetterStore:
    """Append-only JSONL file of failed envelopes, kept for manual reprocessing.

    A replay never rewrites the live file: it moves the file aside first, so
    failures written while the replay runs land in a fresh file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    @property
    def replay_path(self) -> Path:
        return self.path.with_name(self.path.name + ".replaying")

    def write(self, envelope: DeliveryEnvelope, error: str) -> None:
        entry = {
            "failed_at": datetime.now(timezone.utc).isoformat(),
            "error": error,
            "envelope": envelope.model_dump(mode="json"),
        }
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def _read(self, path: Path) -> List[Tuple[DeliveryEnvelope, str]]:
        if not path.exists():
            return []

        entries = []
        with open(path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                    entries.append((DeliveryEnvelope(**data["envelope"]), data.get("error", "")))
                except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
                    logger.warning(f"Skipping unreadable dead-letter entry {path}:{line_number}: {e}")
        return entries

    def load(self) -> List[Tuple[DeliveryEnvelope, str]]:
        """Read back every dead-lettered envelope with its last error."""
        return self._read(self.path)

    def claim(self) -> List[Tuple[DeliveryEnvelope, str]]:
        """Move the pending entries aside for replay and return them.

        Entries left behind by an interrupted replay are claimed as well.
        """
        with self._lock:
            if self.path.exists():
                if self.replay_path.exists():
                    staged = self.path.with_name(self.path.name + ".staged")
                    self.path.replace(staged)
                    with open(staged, "r", encoding="utf-8") as src, \
                            open(self.replay_path, "a", encoding="utf-8") as dst:
                        dst.write(src.read())
                    staged.unlink()
                else:
                    self.path.replace(self.replay_path)
        return self._read(self.replay_path)

    def release(self, failures: List[Tuple[DeliveryEnvelope, str]]) -> None:
        """Append the claimed entries that still fail to the live file and drop the claim."""
        for envelope, error in failures:
            self.write(envelope, error)
        with self._lock:
            if self.replay_path.exists():
                self.replay_path.unlink()

    def count(self) -> int:
        return len(self.load())
