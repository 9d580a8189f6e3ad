"""Domain models for streaming sessions."""

from __future__ import annotations

import datetime as dt
import re
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from dateutil.tz import tzutc

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class LogBuffer:
    """Fixed-capacity buffer of process output lines, oldest evicted first."""

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._lines: deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        lines = [line for line in _LINE_BREAK.split(text) if line.strip()]
        with self._lock:
            self._lines.extend(lines)

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


@dataclass(frozen=True)
class StreamLabels:
    title: str = ""
    channel: str = ""
    emoji: str = ""


@dataclass
class StreamSession:
    key: str
    source_file: str
    loop: bool
    labels: StreamLabels
    process: Any
    logs: LogBuffer
    started_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(tzutc()))
    stop_requested: bool = False
    # (secret, replacement) pairs applied to every line before it is logged
    redactions: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    def status(self) -> Dict[str, Any]:
        return {
            "streamKey": self.key,
            "fileName": self.source_file,
            "title": self.labels.title,
            "channel": self.labels.channel,
            "emoji": self.labels.emoji,
            "startTime": self.started_at.isoformat(),
            "loop": self.loop,
            "isStreaming": True,
        }
