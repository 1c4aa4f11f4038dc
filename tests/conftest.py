"""Shared fixtures for relayci tests."""

from pathlib import Path

import pytest

from relayci.model import TriggerContext
from relayci.runner import run_pipeline
from relayci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def plain_console():
    """Fresh, colourless console for every test."""
    console = Console(debug=False, color=False)
    set_console(console)
    yield console
    set_console(Console(color=False))


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """A small non-git project tree used as the checkout source."""
    src = tmp_path / "project"
    src.mkdir()
    (src / "deps.lock").write_text("serde = 1.0\n")
    (src / "README.md").write_text("# project\n")
    return src


@pytest.fixture
def run_dirs(tmp_path: Path) -> dict:
    return {
        "home": tmp_path / "state",
        "cache_root": tmp_path / "cache",
        "publish_dir": tmp_path / "pages",
    }


@pytest.fixture
def run(source_dir, run_dirs):
    """Run a pipeline against the fixture project with isolated state dirs."""

    def _run(pipeline, context=None, **kwargs):
        context = context or TriggerContext.push("main", sha="abc123")
        options = dict(run_dirs)
        options.update(kwargs)
        return run_pipeline(pipeline, context, source=source_dir, **options)

    return _run
