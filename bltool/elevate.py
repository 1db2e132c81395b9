"""Elevated helper launch and COM scope via the Windows shell (ctypes)."""
from __future__ import annotations

import contextlib
import ctypes
import sys
from ctypes import wintypes
from typing import Iterator, Optional

from .errors import ElevationError
from .executil import trace, warn
from .model import HelperResult

SEE_MASK_NOCLOSEPROCESS = 0x00000040
SEE_MASK_UNICODE = 0x00004000
SW_HIDE = 0
SW_SHOWDEFAULT = 10
INFINITE = 0xFFFFFFFF
WAIT_OBJECT_0 = 0x00000000
WAIT_TIMEOUT = 0x00000102
COINIT_MULTITHREADED = 0x0
S_OK = 0
S_FALSE = 1


class SHELLEXECUTEINFOW(ctypes.Structure):
    _fields_ = [
        ("cbSize", wintypes.DWORD),
        ("fMask", ctypes.c_ulong),
        ("hwnd", wintypes.HWND),
        ("lpVerb", wintypes.LPCWSTR),
        ("lpFile", wintypes.LPCWSTR),
        ("lpParameters", wintypes.LPCWSTR),
        ("lpDirectory", wintypes.LPCWSTR),
        ("nShow", ctypes.c_int),
        ("hInstApp", wintypes.HINSTANCE),
        ("lpIDList", ctypes.c_void_p),
        ("lpClass", wintypes.LPCWSTR),
        ("hkeyClass", wintypes.HKEY),
        ("dwHotKey", wintypes.DWORD),
        ("hIconOrMonitor", wintypes.HANDLE),
        ("hProcess", wintypes.HANDLE),
    ]


def _require_windows() -> None:
    if sys.platform != "win32":
        raise ElevationError(f"elevated launch requires Windows, running on {sys.platform}")


def _win32():
    shell32 = ctypes.WinDLL("shell32", use_last_error=True)
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    shell32.ShellExecuteExW.argtypes = [ctypes.POINTER(SHELLEXECUTEINFOW)]
    shell32.ShellExecuteExW.restype = wintypes.BOOL
    kernel32.WaitForSingleObject.argtypes = [wintypes.HANDLE, wintypes.DWORD]
    kernel32.WaitForSingleObject.restype = wintypes.DWORD
    kernel32.GetExitCodeProcess.argtypes = [wintypes.HANDLE, ctypes.POINTER(wintypes.DWORD)]
    kernel32.GetExitCodeProcess.restype = wintypes.BOOL
    kernel32.CloseHandle.argtypes = [wintypes.HANDLE]
    kernel32.CloseHandle.restype = wintypes.BOOL
    return shell32, kernel32


def _last_error() -> int:
    return ctypes.get_last_error()


def _ole32():
    return ctypes.windll.ole32


def _timeout_ms(timeout: Optional[float]) -> int:
    if timeout is None:
        return INFINITE
    return max(0, int(timeout * 1000))


def run_elevated(path: str, params: str, timeout: Optional[float] = None, show: bool = True) -> HelperResult:
    """Run ``path params`` with the ``runas`` verb and wait for it.

    Blocks until the helper exits or ``timeout`` seconds pass. On timeout the
    helper is left running and ``timed_out`` is set; the exit code is None.
    """

    _require_windows()
    shell32, kernel32 = _win32()

    info = SHELLEXECUTEINFOW()
    info.cbSize = ctypes.sizeof(SHELLEXECUTEINFOW)
    info.fMask = SEE_MASK_NOCLOSEPROCESS | SEE_MASK_UNICODE
    info.hwnd = None
    info.lpVerb = "runas"
    info.lpFile = path
    info.lpParameters = params
    info.lpDirectory = None
    info.nShow = SW_SHOWDEFAULT if show else SW_HIDE

    trace("elevate.launch", path=path, params=params, timeout=timeout)
    if not shell32.ShellExecuteExW(ctypes.byref(info)):
        err = _last_error()
        raise ElevationError(f"ShellExecuteExW failed for {path} (error {err})")

    if not info.hProcess:
        # The shell may hand the request to an existing process; nothing to wait on.
        trace("elevate.no_process", path=path)
        return HelperResult(path=path, params=params, rc=None)

    try:
        waited = kernel32.WaitForSingleObject(info.hProcess, _timeout_ms(timeout))
        if waited == WAIT_TIMEOUT:
            warn("elevate.timeout", path=path, timeout=timeout)
            return HelperResult(path=path, params=params, rc=None, timed_out=True)
        if waited != WAIT_OBJECT_0:
            raise ElevationError(f"waiting for {path} failed (status {waited:#x})")
        code = wintypes.DWORD()
        if not kernel32.GetExitCodeProcess(info.hProcess, ctypes.byref(code)):
            raise ElevationError(f"could not read exit code of {path}")
        trace("elevate.exit", path=path, rc=code.value)
        return HelperResult(path=path, params=params, rc=code.value)
    finally:
        kernel32.CloseHandle(info.hProcess)


@contextlib.contextmanager
def shell_session() -> Iterator[None]:
    """Initialise COM for the calling thread for the duration of the block.

    ShellExecuteEx may delegate to COM-based shell extensions, so the CLI
    wraps a whole run in this scope. Outside Windows it is a plain scope.
    """

    if sys.platform != "win32":
        yield
        return
    ole32 = _ole32()
    hr = ole32.CoInitializeEx(None, COINIT_MULTITHREADED)
    if hr not in (S_OK, S_FALSE):
        raise ElevationError(f"CoInitializeEx failed (hr {hr & 0xFFFFFFFF:#010x})")
    trace("elevate.com_init", hr=hr)
    try:
        yield
    finally:
        ole32.CoUninitialize()
        trace("elevate.com_uninit")
