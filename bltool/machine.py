"""Linear diskpart programs for attaching and detaching a drive letter."""
from __future__ import annotations

import enum
from typing import Awaitable, Callable, Dict

from . import steps
from .errors import StepError
from .executil import trace, warn
from .model import Action, VolumeSelector
from .steps import DiskpartPipe


class ProtocolState(enum.Enum):
    STARTUP = "StartUp"
    LIST_DISK = "ListDisk"
    READ_LIST_DISK = "ReadListDisk"
    SELECT_DISK = "SelectDisk"
    READ_SELECT_DISK = "ReadSelectDisk"
    LIST_PARTITION = "ListPartition"
    READ_LIST_PARTITION = "ReadListPartition"
    SELECT_PARTITION = "SelectPartition"
    READ_SELECT_PARTITION = "ReadSelectPartition"
    ASSIGN_LETTER = "AssignLetter"
    READ_ASSIGN_LETTER = "ReadAssignLetter"
    REMOVE_LETTER = "RemoveLetter"
    READ_REMOVE_LETTER = "ReadRemoveLetter"
    EXIT = "Exit"


_SELECTION = (
    ProtocolState.STARTUP,
    ProtocolState.LIST_DISK,
    ProtocolState.READ_LIST_DISK,
    ProtocolState.SELECT_DISK,
    ProtocolState.READ_SELECT_DISK,
    ProtocolState.LIST_PARTITION,
    ProtocolState.READ_LIST_PARTITION,
    ProtocolState.SELECT_PARTITION,
    ProtocolState.READ_SELECT_PARTITION,
)

MOUNT_PROGRAM = _SELECTION + (
    ProtocolState.ASSIGN_LETTER,
    ProtocolState.READ_ASSIGN_LETTER,
    ProtocolState.EXIT,
)

UNMOUNT_PROGRAM = _SELECTION + (
    ProtocolState.REMOVE_LETTER,
    ProtocolState.READ_REMOVE_LETTER,
    ProtocolState.EXIT,
)

PROGRAMS = {
    Action.MOUNT: MOUNT_PROGRAM,
    Action.UNMOUNT: UNMOUNT_PROGRAM,
}


class DiskpartMachine:
    """Walk one program over a pipe, stopping at the first failed step.

    The transcript buffer is cleared on entry to every state. On failure both
    pipe halves are closed before the error is returned, so nothing further is
    written to or read from the child.
    """

    def __init__(
        self,
        pipe: DiskpartPipe,
        action: Action,
        selector: VolumeSelector,
        expected_computer: str | None = None,
    ) -> None:
        self.pipe = pipe
        self.action = action
        self.selector = selector
        self.expected_computer = expected_computer
        self.program = PROGRAMS[action]
        self.state = self.program[0]
        self.buffer = bytearray()

    def _handlers(self) -> Dict[ProtocolState, Callable[[], Awaitable[StepError]]]:
        sel = self.selector
        buf = self.buffer
        pipe = self.pipe
        return {
            ProtocolState.STARTUP: lambda: steps.read_computer_name(buf, pipe, self.expected_computer),
            ProtocolState.LIST_DISK: lambda: steps.list_disk(pipe),
            ProtocolState.READ_LIST_DISK: lambda: steps.read_list_disk(
                buf, pipe, sel.disk.number, sel.disk.capacity
            ),
            ProtocolState.SELECT_DISK: lambda: steps.select_disk(pipe, sel.disk.number),
            ProtocolState.READ_SELECT_DISK: lambda: steps.read_select_disk(buf, pipe, sel.disk.number),
            ProtocolState.LIST_PARTITION: lambda: steps.list_partition(pipe),
            ProtocolState.READ_LIST_PARTITION: lambda: steps.read_list_partition(
                buf, pipe, sel.partition.number, sel.partition.capacity
            ),
            ProtocolState.SELECT_PARTITION: lambda: steps.select_partition(pipe, sel.partition.number),
            ProtocolState.READ_SELECT_PARTITION: lambda: steps.read_select_partition(
                buf, pipe, sel.partition.number
            ),
            ProtocolState.ASSIGN_LETTER: lambda: steps.assign_letter(pipe, sel.letter),
            ProtocolState.READ_ASSIGN_LETTER: lambda: steps.read_assign_letter(buf, pipe),
            ProtocolState.REMOVE_LETTER: lambda: steps.remove_letter(pipe, sel.letter),
            ProtocolState.READ_REMOVE_LETTER: lambda: steps.read_remove_letter(buf, pipe),
            ProtocolState.EXIT: lambda: steps.exit_(pipe),
        }

    async def run(self) -> StepError:
        handlers = self._handlers()
        trace("machine.start", action=self.action.value, program=[s.value for s in self.program])
        for state in self.program:
            self.state = state
            self.buffer.clear()
            trace("machine.state", state=state.value)
            error = await handlers[state]()
            if error != StepError.SUCCESS:
                warn("machine.failed", state=state.value, error=error.name)
                self.pipe.close()
                return error
        trace("machine.done", action=self.action.value)
        return StepError.SUCCESS


async def run_program(
    pipe: DiskpartPipe,
    action: Action,
    selector: VolumeSelector,
    expected_computer: str | None = None,
) -> StepError:
    return await DiskpartMachine(pipe, action, selector, expected_computer).run()
