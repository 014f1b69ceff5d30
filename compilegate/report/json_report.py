from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

import pandas as pd


def _json_safe(x: Any) -> Any:
    """
    Convert values into strict JSON-safe Python types.

    Guarantees:
    - No NaN / Infinity (converted to None)
    - pandas/numpy NA -> None
    - numpy scalars -> python primitives
    - Recurses through dict/list/tuple
    """
    if isinstance(x, dict):
        return {str(k): _json_safe(v) for k, v in x.items()}

    if isinstance(x, (list, tuple)):
        return [_json_safe(v) for v in x]

    # IntEnum members are ints; report them as plain ints
    if isinstance(x, bool) or x is None:
        return x
    if isinstance(x, int):
        return int(x)

    if isinstance(x, float):
        if math.isnan(x) or math.isinf(x):
            return None
        return x

    if isinstance(x, str):
        return x

    try:
        if pd.isna(x):
            return None
    except (TypeError, ValueError):
        pass

    # Numpy scalars (float/int) -> python primitives
    if hasattr(x, "item") and callable(x.item):
        return _json_safe(x.item())

    return str(x)


def _df_to_records(df: pd.DataFrame | None) -> list[dict[str, Any]]:
    if df is None or df.empty:
        return []
    return [_json_safe(r) for r in df.to_dict(orient="records")]


def write_json_report(
    out_path: str | Path,
    *,
    generated_at: str | None,
    command: str,
    decision: dict[str, Any],
    history_df: pd.DataFrame | None,
    notes: list[str] | None,
    run_config: dict[str, str] | None,
) -> Path:
    """
    Writes the canonical CompileGate JSON report.

    IMPORTANT:
    - `meta` must remain schema-stable and NOT include extra keys.
    """
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)

    decision_version = run_config.get("version") if run_config else None
    schema_version = run_config.get("schema") if run_config else None

    payload: dict[str, Any] = {
        "meta": {
            "generated_at": generated_at,
            "command": command,
            "decision_version": decision_version,
            "schema_version": schema_version,
        },
        "decision": decision,
        "history": _df_to_records(history_df),
        "notes": [str(n) for n in (notes or [])],
    }

    payload = _json_safe(payload)

    # STRICT JSON: no NaN allowed
    p.write_text(
        json.dumps(payload, indent=2, sort_keys=False, allow_nan=False),
        encoding="utf-8",
    )
    return p
