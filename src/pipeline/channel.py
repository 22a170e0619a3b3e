"""Single-slot, last-write-wins conduit for local paths."""

from __future__ import annotations

import threading
from typing import Optional, Tuple

from .interfaces import LocalPath


class PathChannel:
    """
    Carry the most recently accepted local path from planning to control.

    Writers overwrite the slot and never block on readers; readers see only the
    newest snapshot. Every publish bumps ``version`` so a consumer can tell a
    fresh snapshot from one it already took.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._path: Optional[LocalPath] = None
        self._version = 0

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def publish(self, path: LocalPath) -> int:
        with self._lock:
            self._path = path
            self._version += 1
            return self._version

    def latest(self) -> Optional[LocalPath]:
        with self._lock:
            return self._path

    def poll(self, since: int) -> Optional[Tuple[int, LocalPath]]:
        """Return ``(version, path)`` if something newer than ``since`` is held."""

        with self._lock:
            if self._path is None or self._version <= since:
                return None
            return self._version, self._path

    def clear(self) -> None:
        with self._lock:
            self._path = None
