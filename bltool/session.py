"""End-to-end mount/unmount sessions around a diskpart child process.

A session races three tasks: the child's exit, the protocol machine and a
wall-clock timer. Whichever settles first decides the outcome; the others are
cancelled, the pipe is closed and the child is killed if still alive.
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Callable, Optional

from .errors import ElevationError, SessionOutcome, StepError
from .executil import error, info, trace, warn
from .elevate import run_elevated
from .machine import DiskpartMachine
from .model import Action, HelperResult, SessionConfig, SessionResult, VolumeSelector
from .steps import DiskpartPipe

Launcher = Callable[..., HelperResult]


def unlock_params(letter: str) -> str:
    return f"{letter}:"


def lock_params(letter: str) -> str:
    return f"-lock -ForceDismount {letter}:"


def _launch(
    launcher: Launcher, path: str, params: str, timeout: Optional[float], show: bool
) -> tuple[Optional[HelperResult], bool]:
    try:
        result = launcher(path, params, timeout=timeout, show=show)
    except ElevationError as exc:
        error("session.helper.launch_failed", path=path, params=params, error=str(exc))
        return None, False
    if result.timed_out:
        error("session.helper.timeout", path=path, timeout=timeout)
        return result, False
    if result.rc not in (None, 0):
        warn("session.helper.exit", path=path, rc=result.rc)
    else:
        info("session.helper.exit", path=path, rc=result.rc)
    return result, True


def _stdout_transport(proc: asyncio.subprocess.Process) -> Optional[asyncio.BaseTransport]:
    # asyncio exposes the per-pipe transports only through the process transport.
    transport = getattr(proc, "_transport", None)
    if transport is None:
        return None
    return transport.get_pipe_transport(1)


async def _teardown(tasks: set, pipe: DiskpartPipe, proc: asyncio.subprocess.Process) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()
    pipe.close()
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        trace("session.child.killed", pid=proc.pid)
    await asyncio.gather(*tasks, return_exceptions=True)
    await proc.wait()
    trace("session.child.reaped", pid=proc.pid, rc=proc.returncode)


def _interpret(
    action: Action,
    done: set,
    exit_task: asyncio.Task,
    machine_task: asyncio.Task,
    machine: DiskpartMachine,
) -> SessionResult:
    # The machine wins ties: a child exiting right after ``exit`` is expected.
    if machine_task in done:
        step = machine_task.result()
        exit_code = exit_task.result() if exit_task in done else None
        if step == StepError.SUCCESS:
            info("session.protocol.done", action=action.value)
            return SessionResult(action, SessionOutcome.COMPLETED, step=step, exit_code=exit_code)
        error("session.protocol.failed", action=action.value, state=machine.state.value, step=step.name)
        return SessionResult(action, SessionOutcome.PROTOCOL_FAILED, step=step, exit_code=exit_code)
    if exit_task in done:
        rc = exit_task.result()
        if rc == 0:
            info("session.child.exited", rc=rc, state=machine.state.value)
        else:
            warn("session.child.anomaly", rc=rc, state=machine.state.value)
        return SessionResult(action, SessionOutcome.PROCESS_EXITED, exit_code=rc)
    error("session.timeout", action=action.value, state=machine.state.value)
    return SessionResult(action, SessionOutcome.TIMEOUT)


async def negotiate(action: Action, selector: VolumeSelector, config: SessionConfig) -> SessionResult:
    """Spawn diskpart and drive one program over its pipes."""

    cmd = list(config.diskpart_cmd)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        error("session.spawn_failed", cmd=cmd, error=str(exc))
        return SessionResult(action, SessionOutcome.SPAWN_FAILED)
    trace("session.child.spawned", cmd=cmd, pid=proc.pid, timeout=config.timeout)

    pipe = DiskpartPipe(proc.stdout, proc.stdin, _stdout_transport(proc))
    machine = DiskpartMachine(pipe, action, selector, config.expected_computer)
    exit_task = asyncio.ensure_future(proc.wait())
    machine_task = asyncio.ensure_future(machine.run())
    timer_task = asyncio.ensure_future(asyncio.sleep(config.timeout))
    tasks = {exit_task, machine_task, timer_task}
    try:
        done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        return _interpret(action, done, exit_task, machine_task, machine)
    finally:
        await _teardown(tasks, pipe, proc)


async def run_session(
    action: Action,
    selector: VolumeSelector,
    config: SessionConfig | None = None,
    launcher: Launcher = run_elevated,
) -> SessionResult:
    """Run one mount or unmount.

    Mount negotiates the letter first and only then starts the unlock helper.
    Unmount locks the volume first and then removes the letter, whatever the
    lock helper reported, unless the helper could not be started at all.
    """

    config = config or SessionConfig()
    letter = selector.letter
    trace("session.start", action=action.value, letter=letter, disk=selector.disk.number,
          partition=selector.partition.number)

    if action is Action.UNMOUNT:
        lock, ok = _launch(launcher, config.managebde, lock_params(letter), config.helper_timeout, show=False)
        if not ok:
            return SessionResult(action, SessionOutcome.HELPER_FAILED, helper=lock)
        result = await negotiate(action, selector, config)
        result.helper = lock
        return result

    result = await negotiate(action, selector, config)
    if result.outcome is SessionOutcome.COMPLETED:
        unlock, ok = _launch(launcher, config.bdeunlock, unlock_params(letter), config.helper_timeout, show=True)
        result.helper = unlock
        if not ok:
            result.outcome = SessionOutcome.HELPER_FAILED
    return result


async def mount(selector: VolumeSelector, config: SessionConfig | None = None, **kwargs) -> SessionResult:
    return await run_session(Action.MOUNT, selector, config, **kwargs)


async def unmount(selector: VolumeSelector, config: SessionConfig | None = None, **kwargs) -> SessionResult:
    return await run_session(Action.UNMOUNT, selector, config, **kwargs)


def run(action: Action, selector: VolumeSelector, config: SessionConfig | None = None,
        launcher: Launcher = run_elevated) -> SessionResult:
    return asyncio.run(run_session(action, selector, config, launcher))
