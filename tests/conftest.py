import os
from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"

RUNNER_FILE_VARS = ("GITHUB_OUTPUT", "GITHUB_PATH", "GITHUB_STEP_SUMMARY")


@pytest.fixture(autouse=True)
def clean_runner_env(monkeypatch, tmp_path):
    """Isolate tests from inputs and runner files of the surrounding environment."""
    for name in list(os.environ):
        if name.startswith("INPUT_") or name in RUNNER_FILE_VARS:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RUNNER_TEMP", str(tmp_path / "runner-temp"))
    monkeypatch.setenv("RUNNER_TOOL_CACHE", str(tmp_path / "tool-cache"))


def read_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text()
