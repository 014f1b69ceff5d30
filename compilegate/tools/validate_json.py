from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import importlib.resources as resources

import jsonschema

from compilegate.core.entry import FIELDS, Outcome
from compilegate.core.profile_assistant import ProcessingResult
from compilegate.schema_constants import (
    SCHEMA_VERSION,
    SCHEMA_RESOURCE_PACKAGE,
    SCHEMA_RESOURCE_NAME,
)

EXPECTED_SCHEMA_VERSION = SCHEMA_VERSION


class StrictJsonError(ValueError):
    """Raised when JSON is invalid or contains NaN/Infinity."""


class SchemaVersionMismatch(ValueError):
    """Raised when meta.schema_version does not match EXPECTED_SCHEMA_VERSION."""


class ReportContentError(ValueError):
    """Raised when a schema-valid report contradicts itself or the log format."""


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    schema_version: str
    command: str | None = None
    history_entries: int = 0


def _reject_nonfinite_constants(value: str) -> Any:
    raise StrictJsonError(f"Forbidden JSON constant encountered: {value}")


def _load_schema_text() -> str:
    return resources.files(SCHEMA_RESOURCE_PACKAGE).joinpath(SCHEMA_RESOURCE_NAME).read_text(
        encoding="utf-8"
    )


def _parse_strict_json(text: str) -> dict[str, Any]:
    try:
        data = json.loads(text, parse_constant=_reject_nonfinite_constants)
    except json.JSONDecodeError as e:
        raise StrictJsonError(f"Invalid JSON: {e.msg} (line {e.lineno}, col {e.colno})") from e

    if not isinstance(data, dict):
        raise StrictJsonError("Top-level JSON must be an object.")
    return data


def _schema_version(data: dict[str, Any]) -> str:
    meta = data.get("meta")
    if not isinstance(meta, dict):
        raise SchemaVersionMismatch("Missing or invalid 'meta' object.")
    v = meta.get("schema_version")
    if not isinstance(v, str) or not v.strip():
        raise SchemaVersionMismatch("Missing or invalid 'meta.schema_version' (must be a non-empty string).")
    return v.strip()


def _check_history(history: list[dict[str, Any]]) -> None:
    # JSON integers are unbounded; the log file is not.
    for i, row in enumerate(history):
        for field, lo, hi in FIELDS:
            value = row.get(field)
            if isinstance(value, int) and not lo <= value <= hi:
                raise ReportContentError(f"history[{i}].{field}: {value} outside [{lo}, {hi}]")


def _check_decision(command: str | None, decision: dict[str, Any]) -> None:
    if command == "check":
        missing = [k for k in ("should_attempt", "backoff_seconds") if k not in decision]
        if missing:
            raise ReportContentError(f"check decision is missing {missing}")
        backoff = decision["backoff_seconds"]
        if backoff is None and decision["should_attempt"] is not True:
            raise ReportContentError("check decision backs off without a backoff in force")

    elif command == "record":
        result = decision.get("result")
        known = {o.name for o in Outcome}
        if not isinstance(result, str) or not (result in known or result.lstrip("-").isdigit()):
            raise ReportContentError(f"record decision has unknown outcome {result!r}")

    elif command == "merge-profiles":
        code = decision.get("code")
        try:
            expected = ProcessingResult(code).name
        except ValueError:
            raise ReportContentError(f"merge-profiles decision has unknown code {code!r}") from None
        if decision.get("result") != expected:
            raise ReportContentError(
                f"merge-profiles decision code {code} is {expected}, not {decision.get('result')!r}"
            )


def validate_json(path: str | Path, *, expected_schema_version: str = EXPECTED_SCHEMA_VERSION) -> ValidationResult:
    """
    Validate a CompileGate report JSON file.

    The schema version is locked before the bundled schema runs, so a report
    from another release fails with SchemaVersionMismatch rather than a
    schema error. Schema-valid reports are then checked for history values
    the log file could not hold and for decisions that contradict their
    command.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(p))

    data = _parse_strict_json(p.read_text(encoding="utf-8"))

    actual = _schema_version(data)
    if actual != expected_schema_version:
        raise SchemaVersionMismatch(
            f"Schema version mismatch: expected '{expected_schema_version}', got '{actual}'."
        )

    schema = _parse_strict_json(_load_schema_text())
    jsonschema.validate(instance=data, schema=schema)

    command = data["meta"].get("command")
    history = data.get("history") or []
    _check_history(history)
    _check_decision(command, data.get("decision") or {})

    return ValidationResult(ok=True, schema_version=actual, command=command, history_entries=len(history))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate a CompileGate JSON report.")
    parser.add_argument("path", help="Path to JSON report file")
    args = parser.parse_args(argv)

    try:
        result = validate_json(args.path)
    except (OSError, ValueError, jsonschema.ValidationError) as e:
        print(f"ERROR: {e}")
        return 1

    print(
        f"OK: {result.command or 'report'} JSON valid "
        f"(schema {result.schema_version}, {result.history_entries} history entries)."
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
