from __future__ import annotations

import enum
import logging
import re
from collections import deque
from dataclasses import dataclass
from io import StringIO
from typing import Iterator, TextIO

import numpy as np

logger = logging.getLogger(__name__)

_INT64 = np.iinfo(np.int64)
_INT32 = np.iinfo(np.int32)
_DECIMAL = re.compile(r"[+-]?[0-9]+")

# (field, lowest, highest) in on-disk order
FIELDS = [
    ("subject_version", int(_INT64.min), int(_INT64.max)),
    ("trigger", int(_INT32.min), int(_INT32.max)),
    ("when", int(_INT64.min), int(_INT64.max)),
    ("outcome", int(_INT32.min), int(_INT32.max)),
]


class Trigger(enum.IntEnum):
    """Why a recompilation was considered."""

    UNKNOWN = 0
    APEX_VERSION_MISMATCH = 1
    DEX_FILES_CHANGED = 2
    MISSING_ARTIFACTS = 3


class Outcome(enum.IntEnum):
    """Result of a compilation attempt. Only COMPILATION_SUCCESS counts as success."""

    OKAY = 0
    COMPILATION_REQUIRED = 1
    COMPILATION_SUCCESS = 2
    COMPILATION_FAILED = 3
    CLEANUP_FAILED = 4


class EntryDecodeError(ValueError):
    """Raised when a log entry cannot be decoded from a stream."""


class TruncatedEntryError(EntryDecodeError):
    """Raised when the stream ran out before four tokens were read."""


class MalformedEntryError(EntryDecodeError):
    """Raised when a token is not a decimal integer in its field's range."""


class EntryRangeError(ValueError):
    """Raised when a field value does not fit the width the log file stores."""


@dataclass(frozen=True)
class LogEntry:
    subject_version: int
    trigger: int
    when: int
    outcome: int

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.COMPILATION_SUCCESS


def encode_entry(entry: LogEntry) -> str:
    """
    One line per entry: version, trigger, when, outcome as decimal tokens.
    """
    return (
        f"{int(entry.subject_version)} {int(entry.trigger)} "
        f"{int(entry.when)} {int(entry.outcome)}\n"
    )


def check_entry(entry: LogEntry) -> LogEntry:
    for field, lo, hi in FIELDS:
        value = getattr(entry, field)
        if value < lo or value > hi:
            raise EntryRangeError(f"{field}: {value} outside [{lo}, {hi}]")
    return entry


def _parse_token(token: str, field: str, lo: int, hi: int) -> int:
    if not _DECIMAL.fullmatch(token):
        raise MalformedEntryError(f"{field}: not a decimal integer: {token!r}")
    value = int(token, 10)
    if value < lo or value > hi:
        raise MalformedEntryError(f"{field}: {value} outside [{lo}, {hi}]")
    return value


class EntryReader:
    """
    Pulls whitespace-separated tokens from a text stream, four per entry.

    The stream is consumed line by line; tokens left over on a line stay
    buffered so the next read() continues right after the fourth token of
    the previous entry.
    """

    def __init__(self, stream: TextIO):
        self._stream = stream
        self._pending: deque[str] = deque()
        self.failed = False

    def _next_token(self) -> str | None:
        while not self._pending:
            line = self._stream.readline()
            if not line:
                return None
            self._pending.extend(line.split())
        return self._pending.popleft()

    def read(self) -> LogEntry:
        values: list[int] = []
        for field, lo, hi in FIELDS:
            token = self._next_token()
            if token is None:
                self.failed = True
                if values:
                    raise TruncatedEntryError(
                        f"stream ended after {len(values)} of {len(FIELDS)} tokens"
                    )
                raise TruncatedEntryError("no more entries")
            try:
                values.append(_parse_token(token, field, lo, hi))
            except MalformedEntryError:
                self.failed = True
                raise
        return LogEntry(*values)

    def __iter__(self) -> Iterator[LogEntry]:
        while True:
            try:
                yield self.read()
            except TruncatedEntryError as e:
                logger.debug("Stopped reading entries: %s", e)
                return
            except MalformedEntryError as e:
                logger.warning("Stopped reading entries at malformed data: %s", e)
                return


def decode_entry(text: str) -> LogEntry:
    return EntryReader(StringIO(text)).read()
