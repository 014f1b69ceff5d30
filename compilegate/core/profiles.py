from __future__ import annotations

import logging
from dataclasses import dataclass
from io import StringIO
from typing import TYPE_CHECKING, Callable, Protocol, Sequence

import pandas as pd

if TYPE_CHECKING:
    from compilegate.core.profile_assistant import ProfileOptions

logger = logging.getLogger(__name__)

PROFILE_HEADER_PREFIX = "#compilegate-profile"
PROFILE_COLUMNS = ["dex", "kind", "name"]
PROFILE_KINDS = ("method", "class")


class BadProfileError(ValueError):
    """Raised when profile bytes cannot be parsed."""


class ProfileVersionMismatch(ValueError):
    """Raised when profiles being merged carry different format versions."""


@dataclass(frozen=True)
class Profile:
    version: str | None
    rows: pd.DataFrame

    @property
    def empty(self) -> bool:
        return self.rows.empty

    def count(self, kind: str) -> int:
        if self.rows.empty:
            return 0
        return int((self.rows["kind"] == kind).sum())


@dataclass(frozen=True)
class DiffResult:
    significant: bool
    merged: bytes
    new_methods_percent: float = 0.0
    new_classes_percent: float = 0.0


class ProfileDiffer(Protocol):
    def diff(
        self,
        inputs: Sequence[bytes],
        reference: bytes,
        options: ProfileOptions,
    ) -> DiffResult: ...


def _empty_rows() -> pd.DataFrame:
    return pd.DataFrame(columns=PROFILE_COLUMNS, dtype=str)


def parse_profile(data: bytes, keep_dex: Callable[[str], bool] | None = None) -> Profile:
    """
    Parse a text profile:

        #compilegate-profile version=<token>
        dex,kind,name
        base.apk,method,Lcom/example/Foo;->bar()V

    Empty bytes are an empty, unversioned profile.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise BadProfileError(f"Profile is not UTF-8 text: {e}") from e

    if not text.strip():
        return Profile(version=None, rows=_empty_rows())

    header, _, body = text.partition("\n")
    header = header.strip()
    if not header.startswith(PROFILE_HEADER_PREFIX):
        raise BadProfileError(f"Missing profile header, got: {header[:60]!r}")

    version = None
    for token in header[len(PROFILE_HEADER_PREFIX):].split():
        key, sep, value = token.partition("=")
        if sep and key == "version" and value:
            version = value
    if version is None:
        raise BadProfileError("Profile header has no version")

    if not body.strip():
        return Profile(version=version, rows=_empty_rows())

    try:
        df = pd.read_csv(StringIO(body), dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise BadProfileError(f"Unreadable profile body: {e}") from e

    missing = [c for c in PROFILE_COLUMNS if c not in df.columns]
    if missing:
        raise BadProfileError(f"Missing required columns: {missing}")

    df = df[PROFILE_COLUMNS].copy()
    for col in PROFILE_COLUMNS:
        df[col] = df[col].astype(str).str.strip()

    bad_kinds = sorted(set(df["kind"]) - set(PROFILE_KINDS))
    if bad_kinds:
        raise BadProfileError(f"Unknown profile entry kinds: {bad_kinds}")
    if (df["name"] == "").any() or (df["dex"] == "").any():
        raise BadProfileError("Profile rows must name both dex and entry")

    if keep_dex is not None:
        df = df[df["dex"].map(keep_dex).astype(bool)]

    df = df.drop_duplicates().reset_index(drop=True)
    return Profile(version=version, rows=df)


def render_profile(profile: Profile) -> bytes:
    version = profile.version or "1"
    rows = profile.rows
    if not rows.empty:
        rows = rows.sort_values(PROFILE_COLUMNS).reset_index(drop=True)
    body = rows.to_csv(index=False, columns=PROFILE_COLUMNS)
    return f"{PROFILE_HEADER_PREFIX} version={version}\n{body}".encode("utf-8")


def percent_growth(before: int, after: int) -> float:
    if after <= before:
        return 0.0
    if before == 0:
        return 100.0
    return (after - before) * 100.0 / before


class CsvProfileDiffer:
    """
    Merges text profiles with pandas and measures how much the merge adds
    over the reference.
    """

    def __init__(self, keep_dex: Callable[[str], bool] | None = None):
        self.keep_dex = keep_dex

    def merge(self, inputs: Sequence[Profile], reference: Profile, *, ignore_versions: bool) -> Profile:
        versions = {p.version for p in (reference, *inputs) if p.version is not None}
        if len(versions) > 1 and not ignore_versions:
            raise ProfileVersionMismatch(f"Profiles carry different versions: {sorted(versions)}")

        version = reference.version
        if version is None:
            version = next((p.version for p in inputs if p.version is not None), None)

        frames = [p.rows for p in (reference, *inputs) if not p.rows.empty]
        if not frames:
            return Profile(version=version, rows=_empty_rows())
        rows = pd.concat(frames, ignore_index=True).drop_duplicates().reset_index(drop=True)
        return Profile(version=version, rows=rows)

    def diff(self, inputs: Sequence[bytes], reference: bytes, options: ProfileOptions) -> DiffResult:
        ref = parse_profile(reference, self.keep_dex)
        parsed = [parse_profile(blob, self.keep_dex) for blob in inputs]
        merged = self.merge(parsed, ref, ignore_versions=options.boot_image_merge)

        methods_pct = percent_growth(ref.count("method"), merged.count("method"))
        classes_pct = percent_growth(ref.count("class"), merged.count("class"))

        significant = not merged.empty and (
            (methods_pct > 0 and methods_pct >= options.min_new_methods_percent_change)
            or (classes_pct > 0 and classes_pct >= options.min_new_classes_percent_change)
        )
        logger.debug(
            "Profile diff: methods +%.1f%% classes +%.1f%% -> %s",
            methods_pct,
            classes_pct,
            "significant" if significant else "insignificant",
        )
        return DiffResult(
            significant=significant,
            merged=render_profile(merged),
            new_methods_percent=methods_pct,
            new_classes_percent=classes_pct,
        )
