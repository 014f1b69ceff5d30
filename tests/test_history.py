import pytest

from compilegate.core.contract import MAX_LOGGED_ENTRIES
from compilegate.core.entry import LogEntry
from compilegate.core.history import BoundedHistory


def _entries(n: int) -> list[LogEntry]:
    return [LogEntry(i, i + 1, i + 2, i + 3) for i in range(n)]


def test_eviction_keeps_most_recent_window():
    history = BoundedHistory()
    entries = _entries(MAX_LOGGED_ENTRIES + 3)

    for i, e in enumerate(entries):
        history.append(e)
        assert history.count() == min(i + 1, MAX_LOGGED_ENTRIES)

        for j in range(history.count()):
            expected = entries[i + 1 - history.count() + j]
            assert history.peek(j) == expected


def test_peek_out_of_range_returns_none():
    history = BoundedHistory(capacity=2)
    history.append(LogEntry(1, 1, 1, 1))

    assert history.peek(1) is None
    assert history.peek(5) is None
    assert history.peek(-1) is None


def test_newest_first_order():
    history = BoundedHistory(capacity=3, entries=_entries(5))

    assert [e.subject_version for e in history] == [2, 3, 4]
    assert [e.subject_version for e in history.newest_first()] == [4, 3, 2]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        BoundedHistory(capacity=0)
