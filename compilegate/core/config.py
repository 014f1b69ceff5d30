from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import tomllib  # py3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore

from compilegate.core.contract import (
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    FAILURE_BACKOFF_BASE_SECONDS,
    MAX_LOGGED_ENTRIES,
    MIN_NEW_CLASSES_PERCENT_CHANGE,
    MIN_NEW_METHODS_PERCENT_CHANGE,
    SUCCESS_BACKOFF_SECONDS,
)


# ----------------------------
# Primary config object
# ----------------------------

@dataclass(frozen=True)
class CompileGateConfig:
    """
    Single, flattened config object used by the CLI/runtime.

    TOML layout:
      [compilegate]
      log, json_out, max_logged_entries, success_backoff_seconds,
      failure_backoff_seconds, lock_timeout

      [profiles]
      force_merge, boot_image_merge, min_new_methods_percent, min_new_classes_percent
    """
    # IO
    log: str | None = None
    json_out: str | None = None

    # compilation log knobs
    max_logged_entries: int = MAX_LOGGED_ENTRIES
    success_backoff_seconds: int = SUCCESS_BACKOFF_SECONDS
    failure_backoff_seconds: int = FAILURE_BACKOFF_BASE_SECONDS

    # profile merge knobs
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    force_merge: bool = False
    boot_image_merge: bool = False
    min_new_methods_percent: int = MIN_NEW_METHODS_PERCENT_CHANGE
    min_new_classes_percent: int = MIN_NEW_CLASSES_PERCENT_CHANGE


# ----------------------------
# Helpers
# ----------------------------

def _as_dict(x: Any) -> dict[str, Any]:
    return x if isinstance(x, dict) else {}


def _coerce_float(x: Any, default: float) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default


def _coerce_positive_int(x: Any, default: int) -> int:
    try:
        v = int(x)
    except (TypeError, ValueError):
        return default
    return v if v > 0 else default


def _coerce_non_negative_int(x: Any, default: int) -> int:
    try:
        v = int(x)
    except (TypeError, ValueError):
        return default
    return v if v >= 0 else default


def _coerce_bool(x: Any, default: bool) -> bool:
    if isinstance(x, bool):
        return x
    if isinstance(x, str):
        s = x.strip().lower()
        if s in {"1", "true", "yes", "on"}:
            return True
        if s in {"0", "false", "no", "off"}:
            return False
    return default


def _coerce_opt_str(x: Any) -> str | None:
    if x is None:
        return None
    s = str(x).strip()
    return s or None


# ----------------------------
# Load + merge
# ----------------------------

def load_config(path: str | Path | None) -> CompileGateConfig:
    """
    Load TOML config. If missing/None, returns safe defaults.
    Never raises for missing file (config is optional).
    """
    if not path:
        return CompileGateConfig()

    p = Path(path)
    if not p.exists():
        return CompileGateConfig()

    data = tomllib.loads(p.read_text(encoding="utf-8"))

    gate = _as_dict(data.get("compilegate", {}))
    prof = _as_dict(data.get("profiles", {}))
    d = CompileGateConfig()

    return CompileGateConfig(
        log=_coerce_opt_str(gate.get("log")),
        json_out=_coerce_opt_str(gate.get("json_out")),
        max_logged_entries=_coerce_positive_int(gate.get("max_logged_entries"), d.max_logged_entries),
        success_backoff_seconds=_coerce_non_negative_int(
            gate.get("success_backoff_seconds"), d.success_backoff_seconds
        ),
        failure_backoff_seconds=_coerce_non_negative_int(
            gate.get("failure_backoff_seconds"), d.failure_backoff_seconds
        ),
        lock_timeout=_coerce_float(gate.get("lock_timeout", d.lock_timeout), d.lock_timeout),
        force_merge=_coerce_bool(prof.get("force_merge"), d.force_merge),
        boot_image_merge=_coerce_bool(prof.get("boot_image_merge"), d.boot_image_merge),
        min_new_methods_percent=_coerce_non_negative_int(
            prof.get("min_new_methods_percent"), d.min_new_methods_percent
        ),
        min_new_classes_percent=_coerce_non_negative_int(
            prof.get("min_new_classes_percent"), d.min_new_classes_percent
        ),
    )


def merge_config(cfg: CompileGateConfig, explicit: dict[str, Any]) -> CompileGateConfig:
    """
    Merge explicit CLI values over file config.
    Only applies keys that are present AND not None.
    """
    def pick_opt_str(name: str, cur: str | None) -> str | None:
        v = explicit.get(name)
        return _coerce_opt_str(v) or cur

    def pick_int(name: str, cur: int) -> int:
        v = explicit.get(name)
        return cur if v is None else _coerce_non_negative_int(v, cur)

    def pick_float(name: str, cur: float) -> float:
        v = explicit.get(name)
        return cur if v is None else _coerce_float(v, cur)

    def pick_bool(name: str, cur: bool) -> bool:
        v = explicit.get(name)
        return cur if v is None else _coerce_bool(v, cur)

    return CompileGateConfig(
        log=pick_opt_str("log", cfg.log),
        json_out=pick_opt_str("json_out", cfg.json_out),
        max_logged_entries=cfg.max_logged_entries,
        success_backoff_seconds=cfg.success_backoff_seconds,
        failure_backoff_seconds=cfg.failure_backoff_seconds,
        lock_timeout=pick_float("lock_timeout", cfg.lock_timeout),
        force_merge=pick_bool("force_merge", cfg.force_merge),
        boot_image_merge=pick_bool("boot_image_merge", cfg.boot_image_merge),
        min_new_methods_percent=pick_int("min_new_methods_percent", cfg.min_new_methods_percent),
        min_new_classes_percent=pick_int("min_new_classes_percent", cfg.min_new_classes_percent),
    )
