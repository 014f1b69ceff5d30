from __future__ import annotations

from collections import deque
from typing import Iterable, Iterator

from compilegate.core.contract import MAX_LOGGED_ENTRIES
from compilegate.core.entry import LogEntry


class BoundedHistory:
    """
    Oldest-first window over the most recent log entries.

    Appending past capacity silently drops the oldest entry.
    """

    def __init__(self, capacity: int = MAX_LOGGED_ENTRIES, entries: Iterable[LogEntry] = ()):
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self._entries: deque[LogEntry] = deque(entries, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: LogEntry) -> None:
        self._entries.append(entry)

    def count(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, index: int) -> LogEntry | None:
        if index < 0 or index >= len(self._entries):
            return None
        return self._entries[index]

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)

    def newest_first(self) -> Iterator[LogEntry]:
        return reversed(self._entries)
