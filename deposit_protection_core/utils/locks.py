"""
Keyed in-process locks.

Serializes read-decide-write sequences per tenancy (registrations) and per
owner (default credential swaps) within one process. Cross-process exclusion
comes from the database: row locks and the partial unique index on in-flight
registrations.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Generator


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLock:
    """A lock per key, created on first use and dropped when nobody holds or waits on it."""

    def __init__(self, name: str = "keyed"):
        self.name = name
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Generator[None, None, None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.holders += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
