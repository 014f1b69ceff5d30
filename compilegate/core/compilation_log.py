from __future__ import annotations

import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable

import pandas as pd

from compilegate.core.contract import (
    FAILURE_BACKOFF_BASE_SECONDS,
    MAX_LOGGED_ENTRIES,
    SUCCESS_BACKOFF_SECONDS,
)
from compilegate.core.entry import EntryReader, LogEntry, Outcome, Trigger, check_entry, encode_entry
from compilegate.core.history import BoundedHistory

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = ["subject_version", "trigger", "when", "outcome"]


class CompilationLogIOError(OSError):
    """Raised when a path-bound compilation log cannot be read or written."""


@dataclass(frozen=True)
class BackoffPolicy:
    success_seconds: int = SUCCESS_BACKOFF_SECONDS
    failure_base_seconds: int = FAILURE_BACKOFF_BASE_SECONDS

    def after_failures(self, k: int) -> int:
        """Backoff after a run of k >= 1 consecutive failures: base * 2**(k-1)."""
        return self.failure_base_seconds * (2 ** (max(k, 1) - 1))


def _matches(entry: LogEntry, subject_version: int, trigger: int) -> bool:
    if entry.subject_version != subject_version:
        return False
    # UNKNOWN defers to whatever backoff is already active for the subject.
    return trigger == Trigger.UNKNOWN or entry.trigger == trigger


class CompilationLog:
    """
    Bounded history of compilation attempts plus the backoff scheduler built on it.

    With path=None the log lives purely in memory and never touches disk.
    With a path the history is loaded on construction and the whole window is
    rewritten after every log() call.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        capacity: int = MAX_LOGGED_ENTRIES,
        policy: BackoffPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path) if path is not None else None
        self.policy = policy or BackoffPolicy()
        self._clock = clock
        self._history = BoundedHistory(capacity)
        if self.path is not None:
            self._load(self.path)

    # ----------------------------
    # Persistence
    # ----------------------------

    def _load(self, path: Path) -> None:
        try:
            if not path.exists():
                path.touch()
            # Undecodable bytes become malformed tokens, which end loading.
            with path.open("r", encoding="utf-8", errors="replace") as handle:
                reader = EntryReader(handle)
                for entry in reader:
                    self._history.append(entry)
        except OSError as e:
            raise CompilationLogIOError(f"Cannot read compilation log {path}: {e}") from e

        logger.debug("Loaded %d entries from %s", len(self._history), path)

    def _save(self, path: Path) -> None:
        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                delete=False,
            ) as handle:
                tmp_path = Path(handle.name)
                for entry in self._history:
                    handle.write(encode_entry(entry))
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            raise CompilationLogIOError(f"Cannot write compilation log {path}: {e}") from e

    # ----------------------------
    # History access
    # ----------------------------

    @property
    def capacity(self) -> int:
        return self._history.capacity

    def number_of_entries(self) -> int:
        return self._history.count()

    def peek(self, index: int) -> LogEntry | None:
        return self._history.peek(index)

    def entries(self) -> list[LogEntry]:
        return list(self._history)

    def to_frame(self) -> pd.DataFrame:
        """
        Oldest-first history table with readable trigger/outcome labels.
        """
        if not len(self._history):
            return pd.DataFrame(columns=[*HISTORY_COLUMNS, "trigger_name", "outcome_name"])

        df = pd.DataFrame([asdict(e) for e in self._history], columns=HISTORY_COLUMNS)
        df["trigger_name"] = df["trigger"].map(_enum_label(Trigger))
        df["outcome_name"] = df["outcome"].map(_enum_label(Outcome))
        return df

    # ----------------------------
    # Mutation
    # ----------------------------

    def log(
        self,
        subject_version: int,
        trigger: int,
        when: int | None,
        outcome: int,
    ) -> LogEntry:
        """
        Record one attempt; when=None stamps it with the clock.

        Values the log file cannot hold raise EntryRangeError before the
        history or the file changes.
        """
        if when is None:
            when = int(self._clock())
        entry = LogEntry(
            subject_version=int(subject_version),
            trigger=int(trigger),
            when=int(when),
            outcome=int(outcome),
        )
        check_entry(entry)
        self._history.append(entry)
        if self.path is not None:
            self._save(self.path)
        logger.debug("Logged %s", entry)
        return entry

    # ----------------------------
    # Backoff decision
    # ----------------------------

    def last_matching(self, subject_version: int, trigger: int) -> LogEntry | None:
        for entry in self._history.newest_first():
            if _matches(entry, subject_version, trigger):
                return entry
        return None

    def backoff_seconds(self, subject_version: int, trigger: int) -> int | None:
        """
        Backoff in force for this subject/trigger, or None when nothing matches.
        """
        last = self.last_matching(subject_version, trigger)
        if last is None:
            return None
        if last.succeeded:
            return self.policy.success_seconds

        failures = 0
        for entry in self._history.newest_first():
            if not _matches(entry, subject_version, trigger):
                continue
            if entry.succeeded:
                break
            failures += 1
        return self.policy.after_failures(failures)

    def should_attempt_compile(
        self,
        subject_version: int,
        trigger: int,
        now: int | None = None,
    ) -> bool:
        last = self.last_matching(subject_version, trigger)
        if last is None:
            logger.debug("No history for version=%s trigger=%s", subject_version, trigger)
            return True

        backoff = self.backoff_seconds(subject_version, trigger) or 0
        if now is None:
            now = int(self._clock())

        elapsed = int(now) - last.when
        verdict = elapsed >= backoff
        logger.debug(
            "version=%s trigger=%s elapsed=%ss backoff=%ss -> %s",
            subject_version,
            trigger,
            elapsed,
            backoff,
            "attempt" if verdict else "back off",
        )
        return verdict


def _enum_label(enum_cls: type) -> Callable[[int], str]:
    def label(value: int) -> str:
        try:
            return enum_cls(value).name
        except ValueError:
            return str(value)

    return label
