"""Pytest configuration and fixtures for buildsafe tests."""

from collections.abc import Callable
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep BUILDSAFE_* settings from the developer's shell out of tests."""
    for name in (
        "BUILDSAFE_STRICT_DIR_SYNC",
        "BUILDSAFE_JOURNAL_DIR",
        "BUILDSAFE_ENCODING",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """An existing build output directory with a previously published page."""
    out = tmp_path / "site"
    out.mkdir()
    (out / "index.html").write_text("<h1>Old menu</h1>")
    return out


@pytest.fixture
def journal_dir(tmp_path: Path) -> Path:
    return tmp_path / "journals"


def _leftovers(directory: Path) -> list[str]:
    return sorted(
        entry.name
        for entry in directory.iterdir()
        if ".backup-" in entry.name
        or ".staging-" in entry.name
        or entry.name.startswith(".tmp-")
    )


@pytest.fixture
def leftovers() -> Callable[[Path], list[str]]:
    """Names of backup/staging/temp artifacts directly inside a directory."""
    return _leftovers
