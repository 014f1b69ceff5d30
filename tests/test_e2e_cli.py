from __future__ import annotations

import json
from pathlib import Path

import pytest

from compilegate.cli import main as cli_main
from compilegate.core.contract import EXIT_COMPILATION_REQUIRED, EXIT_IO_ERROR, EXIT_OKAY, EXIT_USAGE
from compilegate.core.profile_assistant import ProcessingResult
from compilegate.tools.generate_profiles import generate_profile
from compilegate.tools.validate_json import validate_json

DAY = 86_400


def _record(log: Path, outcome: str, when: int, trigger: str = "apex-version-mismatch") -> int:
    return cli_main(
        [
            "record",
            "--log", str(log),
            "--subject-version", "1",
            "--trigger", trigger,
            "--outcome", outcome,
            "--when", str(when),
        ]
    )


def _check(log: Path, now: int, trigger: str = "apex-version-mismatch", *extra: str) -> int:
    return cli_main(
        ["check", "--log", str(log), "--subject-version", "1", "--trigger", trigger, "--now", str(now), *extra]
    )


def test_cli_backoff_cycle(tmp_path: Path) -> None:
    log = tmp_path / "log.txt"
    t = 1_700_000_000

    assert _check(log, t) == EXIT_COMPILATION_REQUIRED

    assert _record(log, "compilation-failed", t) == 0
    assert _check(log, t + DAY - 1) == EXIT_OKAY
    assert _check(log, t + DAY) == EXIT_COMPILATION_REQUIRED
    assert _check(log, t, "unknown") == EXIT_OKAY
    assert _check(log, t, "missing-artifacts") == EXIT_COMPILATION_REQUIRED

    assert _record(log, "compilation-failed", t) == 0
    assert _check(log, t + 2 * DAY - 1) == EXIT_OKAY
    assert _check(log, t + 2 * DAY) == EXIT_COMPILATION_REQUIRED

    assert _record(log, "compilation-success", t) == 0
    assert _check(log, t + DAY // 2 - 1) == EXIT_OKAY
    assert _check(log, t + DAY // 2) == EXIT_COMPILATION_REQUIRED


def test_cli_check_writes_valid_report(tmp_path: Path) -> None:
    log = tmp_path / "log.txt"
    out_json = tmp_path / "outputs" / "check.json"
    _record(log, "compilation-failed", 100)

    rc = _check(log, 100, "apex-version-mismatch", "--json-out", str(out_json))

    assert rc == EXIT_OKAY
    validate_json(out_json)
    obj = json.loads(out_json.read_text(encoding="utf-8"))
    assert obj["meta"]["command"] == "check"
    assert obj["decision"]["trigger"] == "APEX_VERSION_MISMATCH"
    assert obj["history"][0]["outcome_name"] == "COMPILATION_FAILED"


def test_cli_history_exports_csv(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    log = tmp_path / "log.txt"
    for i in range(6):
        _record(log, "compilation-failed", 100 + i)
    capsys.readouterr()

    out_csv = tmp_path / "history.csv"
    rc = cli_main(["history", "--log", str(log), "--csv", str(out_csv)])

    assert rc == 0
    lines = out_csv.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("subject_version,trigger,when,outcome")
    assert len(lines) == 1 + 4
    assert "COMPILATION_FAILED" in capsys.readouterr().out


def test_cli_config_supplies_log_and_capacity(tmp_path: Path) -> None:
    log = tmp_path / "cfg-log.txt"
    cfg = tmp_path / "compilegate.toml"
    cfg.write_text(f'[compilegate]\nlog = "{log.as_posix()}"\nmax_logged_entries = 2\n', encoding="utf-8")

    for i in range(5):
        assert cli_main(
            [
                "record", "--config", str(cfg),
                "--subject-version", "1", "--outcome", "compilation-failed", "--when", str(i),
            ]
        ) == 0

    assert log.read_text(encoding="utf-8").splitlines() == ["1 0 3 3", "1 0 4 3"]


def test_cli_requires_log_path(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rc = cli_main(["check", "--subject-version", "1"])

    assert rc == EXIT_USAGE
    assert "ERROR" in capsys.readouterr().out


def test_cli_log_io_error(tmp_path: Path) -> None:
    # The log path is a directory.
    assert _check(tmp_path, 0) == EXIT_IO_ERROR


def test_cli_rejects_unknown_trigger_name(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc:
        _check(tmp_path / "log.txt", 0, "cosmic-rays")
    assert exc.value.code == 2


def test_cli_merge_profiles(tmp_path: Path) -> None:
    ref = generate_profile(tmp_path / "ref.prof", methods=100, classes=10)
    cur = generate_profile(tmp_path / "cur.prof", methods=150, classes=10)
    out_json = tmp_path / "merge.json"

    rc = cli_main(
        ["merge-profiles", "--profile", str(cur), "--reference", str(ref), "--json-out", str(out_json)]
    )

    assert rc == ProcessingResult.COMPILE
    validate_json(out_json)
    obj = json.loads(out_json.read_text(encoding="utf-8"))
    assert obj["decision"] == {"result": "COMPILE", "code": 1}

    rc = cli_main(["merge-profiles", "--profile", str(cur), "--reference", str(ref)])
    assert rc == ProcessingResult.SKIP_COMPILATION


def test_cli_merge_profiles_thresholds_and_force(tmp_path: Path) -> None:
    ref = generate_profile(tmp_path / "ref.prof", methods=100, classes=10)
    cur = generate_profile(tmp_path / "cur.prof", methods=105, classes=10)

    base = ["merge-profiles", "--profile", str(cur), "--reference", str(ref)]
    assert cli_main(base) == ProcessingResult.SKIP_COMPILATION
    assert cli_main([*base, "--min-new-methods-percent", "5"]) == ProcessingResult.COMPILE

    assert cli_main([*base, "--force-merge"]) == ProcessingResult.COMPILE


def test_cli_merge_profiles_version_mismatch(tmp_path: Path) -> None:
    ref = generate_profile(tmp_path / "ref.prof", methods=10, classes=1, version="1")
    cur = generate_profile(tmp_path / "cur.prof", methods=50, classes=1, version="2")

    base = ["merge-profiles", "--profile", str(cur), "--reference", str(ref)]
    assert cli_main(base) == ProcessingResult.ERROR_DIFFERENT_VERSIONS
    assert cli_main([*base, "--boot-image-merge"]) == ProcessingResult.COMPILE


def test_cli_record_rejects_out_of_range_version(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    log = tmp_path / "log.txt"
    assert _record(log, "compilation-failed", 100) == 0

    rc = cli_main(
        [
            "record",
            "--log", str(log),
            "--subject-version", str(2**64),
            "--outcome", "compilation-failed",
            "--when", "200",
        ]
    )

    assert rc == EXIT_USAGE
    assert "ERROR" in capsys.readouterr().out
    assert log.read_text(encoding="utf-8").splitlines() == ["1 1 100 3"]
