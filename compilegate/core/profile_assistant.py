from __future__ import annotations

import enum
import logging
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Sequence

from compilegate.core.contract import (
    MIN_NEW_CLASSES_PERCENT_CHANGE,
    MIN_NEW_METHODS_PERCENT_CHANGE,
)
from compilegate.core.locking import FileLocker, FlockLocker, LockAcquisitionError
from compilegate.core.profiles import (
    BadProfileError,
    CsvProfileDiffer,
    ProfileDiffer,
    ProfileVersionMismatch,
)

logger = logging.getLogger(__name__)


class ProcessingResult(enum.IntEnum):
    """Outcome of a profile merge. These double as process exit codes."""

    SUCCESS = 0  # generic success for runs that do not analyse profiles
    COMPILE = 1
    SKIP_COMPILATION = 2
    ERROR_BAD_PROFILES = 3
    ERROR_IO = 4
    ERROR_CANNOT_LOCK = 5
    ERROR_DIFFERENT_VERSIONS = 6


@dataclass(frozen=True)
class ProfileOptions:
    # Skip the significance test and always merge into the reference.
    force_merge: bool = False
    # Boot image profiles tolerate version differences instead of aborting.
    boot_image_merge: bool = False
    min_new_methods_percent_change: int = MIN_NEW_METHODS_PERCENT_CHANGE
    min_new_classes_percent_change: int = MIN_NEW_CLASSES_PERCENT_CHANGE


def _overwrite(handle: BinaryIO, data: bytes) -> None:
    handle.seek(0)
    handle.truncate()
    handle.write(data)
    handle.flush()


def _rewrite_in_place(path: Path, data: bytes, original: bytes) -> None:
    # The reference stays locked through its open handle, so it is truncated
    # and rewritten rather than replaced. A failed write puts original back.
    with path.open("r+b") as handle:
        try:
            _overwrite(handle, data)
        except OSError:
            _overwrite(handle, original)
            raise


def _merge_locked(
    inputs: Sequence[Path],
    reference: Path,
    options: ProfileOptions,
    differ: ProfileDiffer,
) -> ProcessingResult:
    try:
        input_blobs = [p.read_bytes() for p in inputs]
        reference_blob = reference.read_bytes()
    except OSError as e:
        logger.warning("Cannot read profiles: %s", e)
        return ProcessingResult.ERROR_IO

    try:
        result = differ.diff(input_blobs, reference_blob, options)
    except ProfileVersionMismatch as e:
        logger.warning("Profile versions differ: %s", e)
        return ProcessingResult.ERROR_DIFFERENT_VERSIONS
    except BadProfileError as e:
        logger.warning("Bad profile data: %s", e)
        return ProcessingResult.ERROR_BAD_PROFILES

    if not (options.force_merge or result.significant):
        logger.info("Profile change insignificant; skipping compilation")
        return ProcessingResult.SKIP_COMPILATION

    try:
        _rewrite_in_place(reference, result.merged, reference_blob)
    except OSError as e:
        logger.warning("Cannot write reference profile %s: %s", reference, e)
        return ProcessingResult.ERROR_IO

    logger.info("Reference profile %s updated; compilation recommended", reference)
    return ProcessingResult.COMPILE


def process_profiles(
    profile_files: Sequence[str | Path],
    reference_profile: str | Path,
    options: ProfileOptions | None = None,
    *,
    differ: ProfileDiffer | None = None,
    locker: FileLocker | None = None,
) -> ProcessingResult:
    """
    Decide whether the profiles in profile_files add enough over
    reference_profile to justify recompiling.

    COMPILE: the difference is significant (or the merge is forced); the
    reference now holds the merged profile.
    SKIP_COMPILATION: the difference is insignificant; no file is modified.
    Every error result leaves all files untouched. A missing reference is
    only left behind on COMPILE.
    """
    options = options or ProfileOptions()
    differ = differ or CsvProfileDiffer()
    locker = locker or FlockLocker()

    inputs = [Path(p) for p in profile_files]
    reference = Path(reference_profile)

    with ExitStack() as stack:
        try:
            for path in inputs:
                stack.enter_context(locker.lock(path, create=False))
            created = not reference.exists()
            stack.enter_context(locker.lock(reference, create=True))
        except LockAcquisitionError as e:
            logger.warning("Cannot lock profiles: %s", e)
            return ProcessingResult.ERROR_CANNOT_LOCK

        result = _merge_locked(inputs, reference, options, differ)
        if created and result != ProcessingResult.COMPILE:
            # Drop the file the reference lock created before releasing it.
            reference.unlink(missing_ok=True)
        return result
