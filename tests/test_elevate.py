import sys
from types import SimpleNamespace

import pytest

from bltool import elevate
from bltool.errors import BltError, ElevationError


def test_timeout_ms():
    assert elevate._timeout_ms(None) == elevate.INFINITE
    assert elevate._timeout_ms(1.5) == 1500
    assert elevate._timeout_ms(-1) == 0


def test_run_elevated_refuses_off_windows(monkeypatch):
    monkeypatch.setattr(elevate.sys, "platform", "linux")
    with pytest.raises(ElevationError) as exc:
        elevate.run_elevated("C:\\Windows\\System32\\bdeunlock.exe", "X:")
    assert isinstance(exc.value, OSError)
    assert isinstance(exc.value, BltError)


def test_shell_session_is_plain_scope_off_windows(monkeypatch):
    monkeypatch.setattr(elevate.sys, "platform", "linux")
    entered = []
    with elevate.shell_session():
        entered.append(True)
    assert entered == [True]


def test_shell_session_propagates_errors(monkeypatch):
    monkeypatch.setattr(elevate.sys, "platform", "linux")
    with pytest.raises(RuntimeError):
        with elevate.shell_session():
            raise RuntimeError("inside")


@pytest.mark.skipif(sys.platform != "win32", reason="requires the Windows shell")
def test_structure_size_matches_platform():
    import ctypes

    expected = 112 if ctypes.sizeof(ctypes.c_void_p) == 8 else 60
    assert ctypes.sizeof(elevate.SHELLEXECUTEINFOW) == expected


HANDLE = 0x1F4


class FakeShell32:
    def __init__(self, ok=True, process=HANDLE):
        self.ok = ok
        self.process = process
        self.launches = []

    def ShellExecuteExW(self, ref):
        info = ref._obj
        self.launches.append(
            {
                "verb": info.lpVerb,
                "file": info.lpFile,
                "params": info.lpParameters,
                "show": info.nShow,
                "mask": info.fMask,
            }
        )
        if self.ok:
            info.hProcess = self.process
        return self.ok


class FakeKernel32:
    def __init__(self, wait=elevate.WAIT_OBJECT_0, rc=0, exit_ok=True):
        self.wait = wait
        self.rc = rc
        self.exit_ok = exit_ok
        self.waits = []
        self.closed = []

    def WaitForSingleObject(self, handle, ms):
        self.waits.append((handle, ms))
        return self.wait

    def GetExitCodeProcess(self, handle, ref):
        if not self.exit_ok:
            return False
        ref._obj.value = self.rc
        return True

    def CloseHandle(self, handle):
        self.closed.append(handle)
        return True


class FakeOle32:
    def __init__(self, hr=elevate.S_OK):
        self.hr = hr
        self.calls = []

    def CoInitializeEx(self, reserved, flags):
        self.calls.append(("init", flags))
        return self.hr

    def CoUninitialize(self):
        self.calls.append(("uninit",))


@pytest.fixture
def on_windows(monkeypatch):
    monkeypatch.setattr(elevate, "sys", SimpleNamespace(platform="win32"))
    monkeypatch.setattr(elevate, "_last_error", lambda: 1223)

    def install(shell32=None, kernel32=None):
        shell32 = shell32 or FakeShell32()
        kernel32 = kernel32 or FakeKernel32()
        monkeypatch.setattr(elevate, "_win32", lambda: (shell32, kernel32))
        return shell32, kernel32

    return install


def test_run_elevated_returns_exit_code(on_windows):
    shell32, kernel32 = on_windows(kernel32=FakeKernel32(rc=7))
    result = elevate.run_elevated("C:\\Windows\\System32\\bdeunlock.exe", "X:", timeout=300)

    assert result.rc == 7
    assert not result.timed_out
    assert result.params == "X:"
    assert shell32.launches == [
        {
            "verb": "runas",
            "file": "C:\\Windows\\System32\\bdeunlock.exe",
            "params": "X:",
            "show": elevate.SW_SHOWDEFAULT,
            "mask": elevate.SEE_MASK_NOCLOSEPROCESS | elevate.SEE_MASK_UNICODE,
        }
    ]
    assert kernel32.waits == [(HANDLE, 300000)]
    assert kernel32.closed == [HANDLE]


def test_run_elevated_hidden_and_unbounded(on_windows):
    shell32, kernel32 = on_windows()
    elevate.run_elevated("manage-bde.exe", "-lock -ForceDismount X:", timeout=None, show=False)
    assert shell32.launches[0]["show"] == elevate.SW_HIDE
    assert kernel32.waits == [(HANDLE, elevate.INFINITE)]


def test_run_elevated_wait_timeout(on_windows):
    _shell32, kernel32 = on_windows(kernel32=FakeKernel32(wait=elevate.WAIT_TIMEOUT))
    result = elevate.run_elevated("bdeunlock.exe", "X:", timeout=0.5)
    assert result.timed_out
    assert result.rc is None
    assert kernel32.waits == [(HANDLE, 500)]
    assert kernel32.closed == [HANDLE]


def test_run_elevated_wait_failure_raises(on_windows):
    _shell32, kernel32 = on_windows(kernel32=FakeKernel32(wait=0xFFFFFFFF))
    with pytest.raises(ElevationError):
        elevate.run_elevated("bdeunlock.exe", "X:", timeout=1)
    assert kernel32.closed == [HANDLE]


def test_run_elevated_exit_code_unreadable(on_windows):
    _shell32, kernel32 = on_windows(kernel32=FakeKernel32(exit_ok=False))
    with pytest.raises(ElevationError):
        elevate.run_elevated("bdeunlock.exe", "X:", timeout=1)
    assert kernel32.closed == [HANDLE]


def test_run_elevated_launch_failure(on_windows):
    _shell32, kernel32 = on_windows(shell32=FakeShell32(ok=False))
    with pytest.raises(ElevationError) as exc:
        elevate.run_elevated("bdeunlock.exe", "X:")
    assert "1223" in str(exc.value)
    assert kernel32.waits == []
    assert kernel32.closed == []


def test_run_elevated_without_process_handle(on_windows):
    _shell32, kernel32 = on_windows(shell32=FakeShell32(process=None))
    result = elevate.run_elevated("bdeunlock.exe", "X:", timeout=1)
    assert result.rc is None
    assert not result.timed_out
    assert kernel32.waits == []
    assert kernel32.closed == []


@pytest.mark.parametrize("hr", [elevate.S_OK, elevate.S_FALSE])
def test_shell_session_initialises_com(on_windows, monkeypatch, hr):
    ole32 = FakeOle32(hr)
    monkeypatch.setattr(elevate, "_ole32", lambda: ole32)
    with elevate.shell_session():
        assert ole32.calls == [("init", elevate.COINIT_MULTITHREADED)]
    assert ole32.calls[-1] == ("uninit",)


def test_shell_session_uninitialises_after_error(on_windows, monkeypatch):
    ole32 = FakeOle32()
    monkeypatch.setattr(elevate, "_ole32", lambda: ole32)
    with pytest.raises(RuntimeError):
        with elevate.shell_session():
            raise RuntimeError("inside")
    assert ole32.calls[-1] == ("uninit",)


def test_shell_session_init_failure(on_windows, monkeypatch):
    ole32 = FakeOle32(hr=-2147417850)
    monkeypatch.setattr(elevate, "_ole32", lambda: ole32)
    with pytest.raises(ElevationError):
        with elevate.shell_session():
            pytest.fail("body must not run")
    assert ole32.calls == [("init", elevate.COINIT_MULTITHREADED)]
