"""Registry of live streaming sessions."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .errors import AlreadyStreamingError, ResourceInUseError
from .models import StreamSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Single source of truth for which sessions are currently live.

    A key can be reserved while its process is being spawned so that two
    concurrent starts for the same key cannot both pass the occupancy check.
    Reservations never show up in :meth:`list`, but their source file counts
    as in use.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, StreamSession] = {}
        self._reserved: Dict[str, str] = {}

    def reserve(self, key: str, source_file: str = "") -> None:
        with self._lock:
            if key in self._sessions or key in self._reserved:
                raise AlreadyStreamingError("Already streaming to this channel")
            self._reserved[key] = source_file

    def release(self, key: str) -> None:
        with self._lock:
            self._reserved.pop(key, None)

    def insert(self, key: str, session: StreamSession) -> None:
        with self._lock:
            if key in self._sessions:
                raise AlreadyStreamingError("Already streaming to this channel")
            self._reserved.pop(key, None)
            self._sessions[key] = session

    def get(self, key: str) -> Optional[StreamSession]:
        with self._lock:
            return self._sessions.get(key)

    def remove(self, key: str, session: Optional[StreamSession] = None) -> Optional[StreamSession]:
        """Remove ``key``; with ``session`` given, only if it is still the stored record."""
        with self._lock:
            current = self._sessions.get(key)
            if current is None:
                return None
            if session is not None and current is not session:
                logger.debug("Skipping removal of replaced session %s", current.labels.channel)
                return None
            return self._sessions.pop(key)

    def list(self) -> List[StreamSession]:
        with self._lock:
            return list(self._sessions.values())

    def is_file_in_use(self, file_name: str) -> bool:
        with self._lock:
            return self._file_in_use(file_name)

    @contextmanager
    def unused_file(self, file_name: str) -> Iterator[None]:
        """Hold the registry lock while an idle file is removed.

        Raises :class:`ResourceInUseError` if a live or starting session streams
        ``file_name``. No session can claim the file until the block exits.
        """
        with self._lock:
            if self._file_in_use(file_name):
                raise ResourceInUseError(f"File {file_name} is currently being streamed")
            yield

    def _file_in_use(self, file_name: str) -> bool:
        if file_name in self._reserved.values():
            return True
        return any(session.source_file == file_name for session in self._sessions.values())

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
