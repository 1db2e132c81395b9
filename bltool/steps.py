"""One coroutine per diskpart protocol action.

Write steps send a single command line. Read steps accumulate output into the
caller's transcript buffer until the ``DISKPART>`` prompt, then interpret it.
Every step returns a :class:`StepError`; none of them raise for protocol or
pipe failures.
"""
from __future__ import annotations

import asyncio

from .capacity import Capacity, Unit, capacity_cast, tool_unit
from .errors import StepError
from .executil import trace, warn
from .transcript import (
    ASSIGN_BANNER,
    PROMPT,
    REMOVE_BANNER,
    decode,
    iter_disk_rows,
    iter_partition_rows,
    match_computer_name,
    match_selected_disk,
    match_selected_partition,
    match_success_banner,
)

# Per-step ceilings on buffered output, in bytes.
COMPUTER_NAME_LIMIT = 1024
LIST_DISK_LIMIT = 1024
SELECT_DISK_LIMIT = 1024
LIST_PARTITION_LIMIT = 1024 * 2
SELECT_PARTITION_LIMIT = 1024 * 5
LETTER_LIMIT = 1024 * 5


class DiskpartPipe:
    """The two halves of the duplex pipe bound to a diskpart child.

    ``read_transport`` is the transport feeding ``reader``. Closing it makes
    the reader see EOF, which releases a read that is already waiting.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_transport: asyncio.BaseTransport | None = None,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.read_transport = read_transport
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for half in (self.writer, self.read_transport):
            if half is None:
                continue
            try:
                half.close()
            except (OSError, RuntimeError) as exc:
                trace("steps.pipe.close_error", error=str(exc))
        trace("steps.pipe.closed")


async def _send(pipe: DiskpartPipe, command: str) -> StepError:
    if pipe.closed or pipe.writer.is_closing():
        trace("steps.write.closed", command=command)
        return StepError.IO
    try:
        pipe.writer.write(f"{command}\n".encode("utf-8"))
        await pipe.writer.drain()
    except (OSError, RuntimeError) as exc:
        warn("steps.write.error", command=command, error=str(exc))
        return StepError.IO
    trace("steps.write", command=command)
    return StepError.SUCCESS


async def _read_prompt(buffer: bytearray, pipe: DiskpartPipe, limit: int) -> bool:
    if pipe.closed:
        trace("steps.read.closed")
        return False
    try:
        while PROMPT not in buffer:
            if len(buffer) >= limit:
                warn("steps.read.overrun", limit=limit, size=len(buffer))
                return False
            chunk = await pipe.reader.read(limit - len(buffer))
            if not chunk:
                warn("steps.read.eof", size=len(buffer))
                return False
            buffer.extend(chunk)
    except (OSError, RuntimeError) as exc:
        warn("steps.read.error", error=str(exc))
        return False
    return True


def _row_capacity(magnitude: int, label: str) -> Capacity:
    # ValueError for an unknown label or a byte count beyond 64 bits.
    return capacity_cast(Capacity(magnitude, tool_unit(label)), Unit.BYTES)


# --- write steps ---

async def list_disk(pipe: DiskpartPipe) -> StepError:
    return await _send(pipe, "list disk")


async def select_disk(pipe: DiskpartPipe, disk_number: int) -> StepError:
    return await _send(pipe, f"select disk {disk_number}")


async def list_partition(pipe: DiskpartPipe) -> StepError:
    return await _send(pipe, "list partition")


async def select_partition(pipe: DiskpartPipe, partition_number: int) -> StepError:
    return await _send(pipe, f"select partition {partition_number}")


async def assign_letter(pipe: DiskpartPipe, letter: str) -> StepError:
    return await _send(pipe, f"assign letter={letter}")


async def remove_letter(pipe: DiskpartPipe, letter: str) -> StepError:
    return await _send(pipe, f"remove letter={letter}")


async def exit_(pipe: DiskpartPipe) -> StepError:
    return await _send(pipe, "exit")


# --- read steps ---

async def read_computer_name(
    buffer: bytearray, pipe: DiskpartPipe, expected: str | None = None
) -> StepError:
    """Consume the start-up banner.

    The host name is only logged unless ``expected`` is given, in which case
    a missing or different name is a :attr:`StepError.MISMATCH_COMPUTER`.
    """

    if not await _read_prompt(buffer, pipe, COMPUTER_NAME_LIMIT):
        return StepError.IO
    name = match_computer_name(decode(buffer))
    trace("steps.computer", name=name, expected=expected)
    if expected is not None and (name is None or name.casefold() != expected.casefold()):
        warn("steps.computer.mismatch", name=name, expected=expected)
        return StepError.MISMATCH_COMPUTER
    return StepError.SUCCESS


async def read_list_disk(
    buffer: bytearray, pipe: DiskpartPipe, disk_number: int, disk_capacity: Capacity
) -> StepError:
    if not await _read_prompt(buffer, pipe, LIST_DISK_LIMIT):
        return StepError.IO
    found = False
    try:
        for row in iter_disk_rows(decode(buffer)):
            capacity = _row_capacity(row.magnitude, row.unit)
            if row.number == disk_number and capacity == disk_capacity:
                trace("steps.disk.found", disk=row.number, capacity=str(capacity))
                found = True
    except ValueError as exc:
        warn("steps.disk.parse_failed", error=str(exc))
        return StepError.PARSE_FAILED
    if not found:
        warn("steps.disk.mismatch", disk=disk_number, capacity=str(disk_capacity))
        return StepError.MISMATCH_DISK
    return StepError.SUCCESS


async def read_select_disk(buffer: bytearray, pipe: DiskpartPipe, disk_number: int) -> StepError:
    if not await _read_prompt(buffer, pipe, SELECT_DISK_LIMIT):
        return StepError.IO
    selected = match_selected_disk(decode(buffer))
    if selected != disk_number:
        # A missing or different confirmation is PARSE_FAILED here, unlike the
        # partition step. SELECT_DISK_FAILED is never returned.
        warn("steps.disk.select_mismatch", selected=selected, wanted=disk_number)
        return StepError.PARSE_FAILED
    trace("steps.disk.selected", disk=selected)
    return StepError.SUCCESS


async def read_list_partition(
    buffer: bytearray, pipe: DiskpartPipe, partition_number: int, partition_capacity: Capacity
) -> StepError:
    if not await _read_prompt(buffer, pipe, LIST_PARTITION_LIMIT):
        return StepError.IO
    found = False
    try:
        for row in iter_partition_rows(decode(buffer)):
            capacity = _row_capacity(row.magnitude, row.unit)
            if row.number == partition_number and capacity == partition_capacity:
                trace("steps.partition.found", partition=row.number, capacity=str(capacity))
                found = True
    except ValueError as exc:
        warn("steps.partition.parse_failed", error=str(exc))
        return StepError.PARSE_FAILED
    if not found:
        warn("steps.partition.mismatch", partition=partition_number, capacity=str(partition_capacity))
        return StepError.MISMATCH_PARTITION
    return StepError.SUCCESS


async def read_select_partition(buffer: bytearray, pipe: DiskpartPipe, partition_number: int) -> StepError:
    if not await _read_prompt(buffer, pipe, SELECT_PARTITION_LIMIT):
        return StepError.IO
    selected = match_selected_partition(decode(buffer))
    if selected is None:
        warn("steps.partition.select_unparsed")
        return StepError.PARSE_FAILED
    if selected != partition_number:
        warn("steps.partition.select_mismatch", selected=selected, wanted=partition_number)
        return StepError.SELECT_PARTITION_FAILED
    trace("steps.partition.selected", partition=selected)
    return StepError.SUCCESS


async def read_assign_letter(buffer: bytearray, pipe: DiskpartPipe) -> StepError:
    if not await _read_prompt(buffer, pipe, LETTER_LIMIT):
        return StepError.IO
    text = decode(buffer)
    if not match_success_banner(text, ASSIGN_BANNER):
        warn("steps.letter.assign_failed", transcript=text)
        return StepError.ASSIGN_LETTER_FAILED
    trace("steps.letter.assigned")
    return StepError.SUCCESS


async def read_remove_letter(buffer: bytearray, pipe: DiskpartPipe) -> StepError:
    if not await _read_prompt(buffer, pipe, LETTER_LIMIT):
        return StepError.IO
    text = decode(buffer)
    if not match_success_banner(text, REMOVE_BANNER):
        warn("steps.letter.remove_failed", transcript=text)
        return StepError.REMOVE_LETTER_FAILED
    trace("steps.letter.removed")
    return StepError.SUCCESS
