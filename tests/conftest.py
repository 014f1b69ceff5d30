import time
from pathlib import Path
from typing import Callable

import pytest

from compilegate.core.contract import SECONDS_PER_DAY
from compilegate.tools.generate_profiles import generate_profile


@pytest.fixture
def start_time() -> int:
    """Wall-clock start, in whole seconds, like the log itself stores."""
    return int(time.time())


@pytest.fixture
def day() -> int:
    return SECONDS_PER_DAY


@pytest.fixture
def make_profile(tmp_path: Path) -> Callable[..., Path]:
    """
    Write a synthetic profile under tmp_path.

    make_profile("ref.prof", methods=100, classes=20) -> Path
    """
    def _make(name: str, **kwargs) -> Path:
        return generate_profile(tmp_path / name, **kwargs)

    return _make
