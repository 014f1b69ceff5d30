from __future__ import annotations

import argparse
import enum
import logging
import time
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

from compilegate.core.compilation_log import BackoffPolicy, CompilationLog
from compilegate.core.config import CompileGateConfig, load_config, merge_config
from compilegate.core.contract import (
    COMPILEGATE_DECISION_VERSION,
    EXIT_COMPILATION_REQUIRED,
    EXIT_IO_ERROR,
    EXIT_OKAY,
    EXIT_USAGE,
)
from compilegate.core.entry import EntryRangeError, Outcome, Trigger
from compilegate.core.locking import FlockLocker
from compilegate.core.profile_assistant import ProcessingResult, ProfileOptions, process_profiles
from compilegate.report.json_report import write_json_report
from compilegate.schema_constants import SCHEMA_VERSION

try:
    COMPILEGATE_PACKAGE_VERSION = version("compilegate")
except PackageNotFoundError:
    COMPILEGATE_PACKAGE_VERSION = "dev"

logger = logging.getLogger(__name__)


def _enum_arg(enum_cls: type[enum.IntEnum]):
    """
    argparse type: accept a member name (any case, '-' or '_') or a raw integer.
    """
    def parse(text: str) -> int:
        s = str(text).strip()
        try:
            return int(s, 10)
        except ValueError:
            pass
        key = s.upper().replace("-", "_")
        try:
            return enum_cls[key]
        except KeyError:
            names = ", ".join(m.name.lower().replace("_", "-") for m in enum_cls)
            raise argparse.ArgumentTypeError(f"invalid {enum_cls.__name__.lower()} {text!r} (choose from {names})")

    parse.__name__ = enum_cls.__name__.lower()
    return parse


def _label(enum_cls: type[enum.IntEnum], value: int) -> str:
    try:
        return enum_cls(value).name
    except ValueError:
        return str(value)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None, help="Path to config TOML (optional)")
    p.add_argument("--json-out", "--json", dest="json_out", default=None,
                   help="Optional JSON report output path")
    p.add_argument("-v", "--verbose", action="store_true", help="Log decisions at DEBUG level")


def _add_log(p: argparse.ArgumentParser) -> None:
    p.add_argument("--log", default=None, help="Compilation log path (defaults from config)")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="compilegate",
        description="CompileGate: recompilation backoff and profile significance decisions",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {COMPILEGATE_PACKAGE_VERSION}")
    sub = p.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Decide whether a compilation attempt should run now")
    _add_log(check)
    check.add_argument("--subject-version", type=int, required=True, help="Version compiled against")
    check.add_argument("--trigger", type=_enum_arg(Trigger), default=Trigger.UNKNOWN,
                       help="Reason for the attempt (default: unknown)")
    check.add_argument("--now", type=int, default=None, help="Decision time, epoch seconds (default: now)")
    _add_common(check)

    record = sub.add_parser("record", help="Record the outcome of a compilation attempt")
    _add_log(record)
    record.add_argument("--subject-version", type=int, required=True, help="Version compiled against")
    record.add_argument("--trigger", type=_enum_arg(Trigger), default=Trigger.UNKNOWN,
                        help="Reason for the attempt (default: unknown)")
    record.add_argument("--outcome", type=_enum_arg(Outcome), required=True,
                        help="Attempt result, e.g. compilation-success or compilation-failed")
    record.add_argument("--when", type=int, default=None, help="Attempt time, epoch seconds (default: now)")
    _add_common(record)

    history = sub.add_parser("history", help="Show the retained compilation attempts")
    _add_log(history)
    history.add_argument("--csv", default=None, help="Also export the history table to CSV")
    _add_common(history)

    merge = sub.add_parser("merge-profiles", help="Merge profiles into a reference if the change is significant")
    merge.add_argument("--profile", dest="profiles", action="append", required=True,
                       help="Input profile (repeatable)")
    merge.add_argument("--reference", required=True, help="Reference profile, updated on COMPILE")
    merge.add_argument("--force-merge", action="store_true", default=None,
                       help="Merge without checking significance")
    merge.add_argument("--boot-image-merge", action="store_true", default=None,
                       help="Tolerate profile version differences")
    merge.add_argument("--min-new-methods-percent", type=int, default=None,
                       help="Percent growth in methods that makes the change significant")
    merge.add_argument("--min-new-classes-percent", type=int, default=None,
                       help="Percent growth in classes that makes the change significant")
    merge.add_argument("--lock-timeout", type=float, default=None, help="Seconds to wait for each file lock")
    _add_common(merge)

    return p


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _resolve_config(args: argparse.Namespace) -> CompileGateConfig:
    explicit: dict[str, Any] = {}
    for name in (
        "log",
        "json_out",
        "force_merge",
        "boot_image_merge",
        "min_new_methods_percent",
        "min_new_classes_percent",
        "lock_timeout",
    ):
        v = getattr(args, name, None)
        if v is not None:
            explicit[name] = v
    return merge_config(load_config(args.config), explicit)


def _open_log(cfg: CompileGateConfig, log_path: str) -> CompilationLog:
    Path(log_path).parent.mkdir(parents=True, exist_ok=True)
    return CompilationLog(
        log_path,
        capacity=cfg.max_logged_entries,
        policy=BackoffPolicy(
            success_seconds=cfg.success_backoff_seconds,
            failure_base_seconds=cfg.failure_backoff_seconds,
        ),
    )


def _write_report(
    cfg: CompileGateConfig,
    args: argparse.Namespace,
    decision: dict[str, Any],
    log: CompilationLog | None,
    notes: list[str],
) -> None:
    if not cfg.json_out:
        return
    out = write_json_report(
        cfg.json_out,
        generated_at=datetime.now().strftime("%Y-%m-%d %H:%M"),
        command=args.command,
        decision=decision,
        history_df=log.to_frame() if log is not None else None,
        notes=notes,
        run_config={"version": COMPILEGATE_DECISION_VERSION, "schema": SCHEMA_VERSION},
    )
    print(f"JSON saved:      {out.resolve()}")


def _cmd_check(cfg: CompileGateConfig, args: argparse.Namespace, log: CompilationLog) -> int:
    now = args.now if args.now is not None else int(time.time())
    verdict = log.should_attempt_compile(args.subject_version, args.trigger, now)
    backoff = log.backoff_seconds(args.subject_version, args.trigger)

    print(f"Subject version: {args.subject_version} | Trigger: {_label(Trigger, args.trigger)}")
    print(f"History:         {log.number_of_entries()} of {log.capacity} entries")
    if backoff is None:
        print("Backoff:         none (no matching attempt)")
    else:
        print(f"Backoff:         {backoff}s")
    print(f"Verdict:         {'ATTEMPT' if verdict else 'BACK OFF'}")

    _write_report(
        cfg,
        args,
        {
            "subject_version": args.subject_version,
            "trigger": _label(Trigger, args.trigger),
            "now": now,
            "should_attempt": verdict,
            "backoff_seconds": backoff,
        },
        log,
        [],
    )
    return EXIT_COMPILATION_REQUIRED if verdict else EXIT_OKAY


def _cmd_record(cfg: CompileGateConfig, args: argparse.Namespace, log: CompilationLog) -> int:
    try:
        entry = log.log(args.subject_version, args.trigger, args.when, args.outcome)
    except EntryRangeError as e:
        print(f"ERROR: cannot record attempt: {e}")
        return EXIT_USAGE
    print(
        f"Logged:          version={entry.subject_version} trigger={_label(Trigger, entry.trigger)} "
        f"when={entry.when} outcome={_label(Outcome, entry.outcome)}"
    )
    _write_report(
        cfg,
        args,
        {
            "subject_version": entry.subject_version,
            "trigger": _label(Trigger, entry.trigger),
            "now": entry.when,
            "result": _label(Outcome, entry.outcome),
            "code": EXIT_OKAY,
        },
        log,
        [],
    )
    return EXIT_OKAY


def _cmd_history(cfg: CompileGateConfig, args: argparse.Namespace, log: CompilationLog) -> int:
    df = log.to_frame()
    if df.empty:
        print("No compilation attempts logged.")
    else:
        print(df.to_string(index=False))

    if args.csv:
        csv_path = Path(args.csv)
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(csv_path, index=False)
        print(f"CSV saved:       {csv_path.resolve()}")

    _write_report(cfg, args, {}, log, [])
    return EXIT_OKAY


def _cmd_merge(cfg: CompileGateConfig, args: argparse.Namespace) -> int:
    options = ProfileOptions(
        force_merge=cfg.force_merge,
        boot_image_merge=cfg.boot_image_merge,
        min_new_methods_percent_change=cfg.min_new_methods_percent,
        min_new_classes_percent_change=cfg.min_new_classes_percent,
    )
    result = process_profiles(
        args.profiles,
        args.reference,
        options,
        locker=FlockLocker(timeout_seconds=cfg.lock_timeout),
    )
    print(f"Profiles:        {len(args.profiles)} -> {args.reference}")
    print(f"Result:          {result.name} ({int(result)})")

    _write_report(
        cfg,
        args,
        {"result": result.name, "code": int(result)},
        None,
        [],
    )
    return int(result)


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    _configure_logging(args.verbose)

    cfg = _resolve_config(args)
    logger.debug("Resolved config: %s", cfg)
    if cfg.json_out:
        Path(cfg.json_out).parent.mkdir(parents=True, exist_ok=True)

    if args.command == "merge-profiles":
        return _cmd_merge(cfg, args)

    # ---- Fail fast: every log command needs a log path ----
    if not cfg.log:
        print("ERROR: no compilation log path (use --log or [compilegate] log in config)")
        return EXIT_USAGE

    try:
        log = _open_log(cfg, cfg.log)
        if args.command == "check":
            return _cmd_check(cfg, args, log)
        if args.command == "record":
            return _cmd_record(cfg, args, log)
        return _cmd_history(cfg, args, log)
    except OSError as e:
        print(f"ERROR: {e}")
        return EXIT_IO_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
