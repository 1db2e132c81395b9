import asyncio

from bltool import machine, steps
from bltool.capacity import Capacity, Unit
from bltool.errors import StepError
from bltool.machine import DiskpartMachine, ProtocolState
from bltool.model import Action, DiskId, PartitionId, VolumeSelector

import diskpart_samples as samples
from diskpart_samples import FakeWriter

SELECTOR = VolumeSelector(
    disk=DiskId(0, Capacity.gib(1863).to(Unit.BYTES)),
    partition=PartitionId(6, Capacity.gib(362).to(Unit.BYTES)),
    letter="X",
)

REPLIES = {
    "list disk": samples.LIST_DISK,
    "select disk 0": samples.selected_disk(0),
    "list partition": samples.LIST_PARTITION,
    "select partition 6": samples.selected_partition(6),
    "assign letter=X": samples.ASSIGNED,
    "remove letter=X": samples.REMOVED,
    "exit": samples.LEAVING,
}


class ScriptedWriter(FakeWriter):
    """Answers each command by feeding the paired reader a canned reply."""

    def __init__(self, reader, replies):
        super().__init__()
        self.reader = reader
        self.replies = replies

    def write(self, data):
        super().write(data)
        reply = self.replies.get(data.decode("utf-8").strip())
        if reply is not None:
            self.reader.feed_data(reply.encode("utf-8"))


def _run(action, selector=SELECTOR, replies=None, expected_computer=None):
    async def _exercise():
        reader = asyncio.StreamReader()
        reader.feed_data(samples.BANNER.encode("utf-8"))
        writer = ScriptedWriter(reader, dict(REPLIES, **(replies or {})))
        pipe = steps.DiskpartPipe(reader, writer)
        m = DiskpartMachine(pipe, action, selector, expected_computer)
        result = await m.run()
        return result, m, writer

    return asyncio.run(_exercise())


def test_programs_share_selection_prefix():
    prefix = machine.MOUNT_PROGRAM[:9]
    assert machine.UNMOUNT_PROGRAM[:9] == prefix
    assert prefix[0] is ProtocolState.STARTUP
    assert machine.MOUNT_PROGRAM[-1] is ProtocolState.EXIT
    assert machine.UNMOUNT_PROGRAM[-1] is ProtocolState.EXIT
    assert ProtocolState.REMOVE_LETTER not in machine.MOUNT_PROGRAM
    assert ProtocolState.ASSIGN_LETTER not in machine.UNMOUNT_PROGRAM


def test_mount_program_succeeds_and_sends_commands_in_order():
    result, m, writer = _run(Action.MOUNT)
    assert result == StepError.SUCCESS
    assert m.state is ProtocolState.EXIT
    assert writer.lines == [
        "list disk",
        "select disk 0",
        "list partition",
        "select partition 6",
        "assign letter=X",
        "exit",
    ]
    assert not writer.closed


def test_unmount_program_removes_letter():
    result, _m, writer = _run(Action.UNMOUNT)
    assert result == StepError.SUCCESS
    assert "remove letter=X" in writer.lines
    assert "assign letter=X" not in writer.lines


def test_every_state_is_visited_once(monkeypatch):
    visited = []

    def fake_trace(event, **fields):
        if event == "machine.state":
            visited.append(fields["state"])

    monkeypatch.setattr(machine, "trace", fake_trace)
    result, _m, _writer = _run(Action.MOUNT)
    assert result == StepError.SUCCESS
    assert visited == [state.value for state in machine.MOUNT_PROGRAM]


def test_disk_mismatch_stops_before_next_command():
    selector = VolumeSelector(
        disk=DiskId(0, Capacity.gib(500).to(Unit.BYTES)),
        partition=SELECTOR.partition,
        letter="X",
    )
    result, m, writer = _run(Action.MOUNT, selector=selector)
    assert result == StepError.MISMATCH_DISK
    assert m.state is ProtocolState.READ_LIST_DISK
    assert writer.lines == ["list disk"]
    assert m.pipe.closed and writer.closed


def test_assign_failure_closes_pipe_and_skips_exit():
    result, m, writer = _run(Action.MOUNT, replies={"assign letter=X": samples.ASSIGN_REFUSED})
    assert result == StepError.ASSIGN_LETTER_FAILED
    assert m.state is ProtocolState.READ_ASSIGN_LETTER
    assert "exit" not in writer.lines
    assert writer.closed


def test_buffer_only_holds_current_state_output():
    result, m, _writer = _run(Action.MOUNT, replies={"assign letter=X": samples.ASSIGN_REFUSED})
    assert result == StepError.ASSIGN_LETTER_FAILED
    assert b"Virtual Disk Service error" in m.buffer
    assert b"Partition 6 is now the selected partition" not in m.buffer


def test_computer_mismatch_sends_nothing():
    result, m, writer = _run(Action.MOUNT, expected_computer="ELSEWHERE")
    assert result == StepError.MISMATCH_COMPUTER
    assert m.state is ProtocolState.STARTUP
    assert writer.lines == []


def test_failed_step_handler_is_looked_up_at_run_time(monkeypatch):
    async def refuse(buffer, pipe, number, capacity):
        return StepError.PARSE_FAILED

    monkeypatch.setattr(steps, "read_list_partition", refuse)
    result, m, writer = _run(Action.UNMOUNT)
    assert result == StepError.PARSE_FAILED
    assert m.state is ProtocolState.READ_LIST_PARTITION
    assert writer.lines == ["list disk", "select disk 0", "list partition"]


def test_run_program_wrapper():
    async def _exercise():
        reader = asyncio.StreamReader()
        reader.feed_data(samples.BANNER.encode("utf-8"))
        writer = ScriptedWriter(reader, REPLIES)
        return await machine.run_program(steps.DiskpartPipe(reader, writer), Action.MOUNT, SELECTOR)

    assert asyncio.run(_exercise()) == StepError.SUCCESS
