from __future__ import annotations

import ntpath
import os
from pathlib import Path

_DEFAULT_BASE = "~/.bltool"
_DEFAULT_SYSTEM_ROOT = "C:\\Windows"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def blt_base_path() -> str:
    """Return the base directory for bltool logs.

    ``BLT_BASE_PATH`` overrides the default ``~/.bltool`` location.
    """

    override = os.environ.get("BLT_BASE_PATH")
    if override:
        return _expand(override)
    return _expand(_DEFAULT_BASE)


def blt_logs_dir() -> str:
    return str(Path(blt_base_path()) / "logs")


def system_root() -> str:
    for var in ("SystemRoot", "WINDIR"):
        value = os.environ.get(var)
        if value:
            return value
    return _DEFAULT_SYSTEM_ROOT


def system32_executable(name: str) -> str:
    """Absolute path of ``name`` inside ``%SystemRoot%\\System32``.

    Always joined with Windows separators so the result is stable when the
    helper paths are computed on another platform (tests, dry inspection).
    """

    return ntpath.join(system_root(), "System32", name)


def diskpart_path() -> str:
    return system32_executable("diskpart.exe")


def bdeunlock_path() -> str:
    return system32_executable("bdeunlock.exe")


def managebde_path() -> str:
    return system32_executable("manage-bde.exe")
