import sys
from pathlib import Path

import pytest

from bltool import executil

_TESTS_DIR = Path(__file__).absolute().parent
FAKE_DISKPART = _TESTS_DIR / "fake_diskpart.py"


@pytest.fixture(autouse=True)
def _isolated_trace_log(tmp_path, monkeypatch):
    """Keep every test's JSONL trace inside its own tmp directory."""

    monkeypatch.setattr(executil, "LOG_DIRS", [str(tmp_path / "logs")])
    monkeypatch.setattr(executil, "LOG_PATH", None)
    monkeypatch.setattr(executil, "ECHO", False)
    monkeypatch.setattr(executil, "LOG_LEVEL", "TRACE")
    return tmp_path / "logs" / executil.LOG_NAME


@pytest.fixture
def fake_diskpart(tmp_path):
    """Build an argv that runs the scripted diskpart with the given flags."""

    record = tmp_path / "commands.txt"

    def _cmd(*flags):
        return [sys.executable, str(FAKE_DISKPART), "--record", str(record), *flags]

    _cmd.record = record
    return _cmd
