from __future__ import annotations

import pytest

from compilegate.core.profile_assistant import ProfileOptions
from compilegate.core.profiles import (
    BadProfileError,
    CsvProfileDiffer,
    ProfileVersionMismatch,
    parse_profile,
    percent_growth,
    render_profile,
)

HEADER = "#compilegate-profile version=1\n"


def _blob(rows: list[tuple[str, str, str]], header: str = HEADER) -> bytes:
    body = "dex,kind,name\n" + "".join(f"{d},{k},{n}\n" for d, k, n in rows)
    return (header + body).encode("utf-8")


def _methods(n: int, start: int = 0, dex: str = "base.apk") -> list[tuple[str, str, str]]:
    return [(dex, "method", f"LFoo;->m{i}()V") for i in range(start, start + n)]


def test_parse_profile_counts_and_dedupes():
    rows = _methods(3) + _methods(1) + [("base.apk", "class", "LFoo;")]
    profile = parse_profile(_blob(rows))

    assert profile.version == "1"
    assert profile.count("method") == 3
    assert profile.count("class") == 1


def test_empty_bytes_are_empty_profile():
    profile = parse_profile(b"")
    assert profile.empty
    assert profile.version is None


@pytest.mark.parametrize(
    "data",
    [
        b"dex,kind,name\nbase.apk,method,LFoo;->a()V\n",
        b"#compilegate-profile\ndex,kind,name\n",
        _blob([("base.apk", "field", "LFoo;->x")]),
        (HEADER + "dex,name\nbase.apk,LFoo;\n").encode("utf-8"),
        b"\xff\xfe\xfa",
    ],
)
def test_bad_profiles_are_rejected(data: bytes):
    with pytest.raises(BadProfileError):
        parse_profile(data)


def test_render_round_trips_through_parse():
    profile = parse_profile(_blob(_methods(4) + [("b.dex", "class", "LBar;")]))
    again = parse_profile(render_profile(profile))

    assert again.version == profile.version
    assert again.count("method") == 4
    assert again.count("class") == 1


def test_keep_dex_filters_rows():
    rows = _methods(2, dex="base.apk") + _methods(3, start=10, dex="split.apk")
    profile = parse_profile(_blob(rows), keep_dex=lambda dex: dex == "split.apk")

    assert profile.count("method") == 3


def test_percent_growth():
    assert percent_growth(100, 100) == 0.0
    assert percent_growth(100, 90) == 0.0
    assert percent_growth(0, 5) == 100.0
    assert percent_growth(100, 120) == 20.0


def test_diff_significant_when_methods_grow_enough():
    differ = CsvProfileDiffer()
    reference = _blob(_methods(100))
    inputs = [_blob(_methods(20, start=100))]

    result = differ.diff(inputs, reference, ProfileOptions())

    assert result.significant
    assert result.new_methods_percent == 20.0
    assert parse_profile(result.merged).count("method") == 120


def test_diff_insignificant_below_threshold():
    differ = CsvProfileDiffer()
    reference = _blob(_methods(100))
    inputs = [_blob(_methods(19, start=100)), _blob(_methods(50))]

    result = differ.diff(inputs, reference, ProfileOptions())

    assert not result.significant
    assert result.new_methods_percent == 19.0


def test_diff_class_growth_alone_is_enough():
    differ = CsvProfileDiffer()
    reference = _blob(_methods(100) + [("base.apk", "class", f"LC{i};") for i in range(5)])
    inputs = [_blob([("base.apk", "class", "LNew;")])]

    result = differ.diff(inputs, reference, ProfileOptions())

    assert result.new_methods_percent == 0.0
    assert result.new_classes_percent == 20.0
    assert result.significant


def test_diff_of_empty_profiles_is_insignificant():
    result = CsvProfileDiffer().diff([b""], b"", ProfileOptions(min_new_methods_percent_change=0))
    assert not result.significant


def test_diff_version_mismatch():
    differ = CsvProfileDiffer()
    reference = _blob(_methods(10))
    inputs = [_blob(_methods(10, start=10), header="#compilegate-profile version=2\n")]

    with pytest.raises(ProfileVersionMismatch):
        differ.diff(inputs, reference, ProfileOptions())

    result = differ.diff(inputs, reference, ProfileOptions(boot_image_merge=True))
    assert result.significant
    assert parse_profile(result.merged).version == "1"


def test_diff_into_empty_reference_takes_input_version():
    inputs = [_blob(_methods(3), header="#compilegate-profile version=7\n")]

    result = CsvProfileDiffer().diff(inputs, b"", ProfileOptions())

    assert result.significant
    assert parse_profile(result.merged).version == "7"
