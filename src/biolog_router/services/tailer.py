"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
File-based ingestion: record assembly and incremental file tailing.
"""

import asyncio
import os
from pathlib import Path
from typing import AsyncIterator, Iterable, Iterator, List, Optional
from loguru import logger

from ..pipeline.ingestion import ISO_TIMESTAMP_PREFIX


def assemble_records(lines: Iterable[str]) -> Iterator[str]:
    """Group raw lines into records.

    A record starts with an ISO-8601 timestamp; lines that do not are
    continuations of the previous record (stack traces, wrapped payloads).
    """
    current: List[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if not line.strip():
            continue
        if ISO_TIMESTAMP_PREFIX.match(line) or not current:
            if current:
                yield "\n".join(current)
            current = [line]
        else:
            current.append(line)
    if current:
        yield "\n".join(current)


class FileTailer:
    """Reads lines appended to a file since the last poll."""

    def __init__(self, path: Path, from_start: bool = False):
        self.path = Path(path)
        self.offset = 0
        self.inode: Optional[int] = None
        self._pending = b""
        if not from_start and self.path.exists():
            stat = self.path.stat()
            self.offset = stat.st_size
            self.inode = stat.st_ino

    def poll_once(self) -> List[str]:
        """Return complete lines written since the previous poll."""
        if not self.path.exists():
            return []

        stat = os.stat(self.path)
        if self.inode is not None and (stat.st_ino != self.inode or stat.st_size < self.offset):
            logger.info(f"{self.path} was rotated or truncated; reading from the start")
            self.offset = 0
            self._pending = b""
        self.inode = stat.st_ino

        if stat.st_size <= self.offset:
            return []

        with open(self.path, "rb") as f:
            f.seek(self.offset)
            chunk = f.read()
            self.offset = f.tell()

        parts = (self._pending + chunk).split(b"\n")
        # The last element is an incomplete line until a newline arrives.
        self._pending = parts.pop()
        lines = [p.decode("utf-8", errors="replace") for p in parts]
        return [line for line in lines if line.strip()]

    async def follow(self, poll_interval: float = 1.0) -> AsyncIterator[str]:
        """Yield assembled records as they are appended, forever."""
        pending: List[str] = []
        while True:
            lines = self.poll_once()
            if lines:
                pending.extend(lines)
                records = list(assemble_records(pending))
                # Keep the newest record open: continuation lines may follow.
                pending = records.pop().split("\n")
                for record in records:
                    yield record
            elif pending:
                yield "\n".join(pending)
                pending = []
            await asyncio.sleep(poll_interval)
