"""Pattern matching over diskpart transcripts.

diskpart pads its listing columns to variable widths, so the row patterns
only anchor on the leading ``Disk N``/``Partition N`` token and the first
``<digits> <label>`` pair that follows it, which is always the Size column.
"""
from __future__ import annotations

import re
from typing import Iterator, NamedTuple

from .errors import TranscriptParseError

PROMPT = b"DISKPART>"

ASSIGN_BANNER = "DiskPart successfully assigned the drive letter or mount point."
REMOVE_BANNER = "DiskPart successfully removed the drive letter or mount point."

_ORDINAL_MAX = 2 ** 31 - 1
_MAGNITUDE_MAX = 2 ** 64 - 1

_COMPUTER_RE = re.compile(r"On computer: (.*?)\r?\n")
_DISK_ROW_RE = re.compile(r"Disk[ \t]+(\d+)[ \t]+.+?[ \t]+(\d+)[ \t](.+?)[ \t]+.+", re.MULTILINE | re.ASCII)
_PARTITION_ROW_RE = re.compile(
    r"Partition[ \t]+(\d+)[ \t]+.+?[ \t]+(\d+)[ \t](.+?)[ \t]+.+", re.MULTILINE | re.ASCII
)
_SELECTED_DISK_RE = re.compile(r"Disk (\d+) is now the selected disk\.", re.ASCII)
_SELECTED_PARTITION_RE = re.compile(r"Partition (\d+) is now the selected partition", re.ASCII)


class ListingRow(NamedTuple):
    number: int
    magnitude: int
    unit: str


def decode(buffer: bytes | bytearray) -> str:
    # diskpart writes the console OEM code page; only ASCII matters here.
    return bytes(buffer).decode("utf-8", errors="replace")


def _to_int(text: str, upper: int, what: str) -> int:
    value = int(text, 10)
    if value > upper:
        raise TranscriptParseError(f"{what} {text} out of range")
    return value


def match_computer_name(text: str) -> str | None:
    m = _COMPUTER_RE.search(text)
    if not m:
        return None
    return m.group(1).strip()


def _iter_rows(pattern: re.Pattern, text: str) -> Iterator[ListingRow]:
    for m in pattern.finditer(text):
        number = _to_int(m.group(1), _ORDINAL_MAX, "ordinal")
        magnitude = _to_int(m.group(2), _MAGNITUDE_MAX, "size")
        yield ListingRow(number, magnitude, m.group(3))


def iter_disk_rows(text: str) -> Iterator[ListingRow]:
    """Yield one row per ``Disk N ... size unit ...`` line, lazily.

    Raises :class:`TranscriptParseError` when reaching a row whose numbers do
    not fit, so callers stop scanning at the first malformed row.
    """

    return _iter_rows(_DISK_ROW_RE, text)


def iter_partition_rows(text: str) -> Iterator[ListingRow]:
    return _iter_rows(_PARTITION_ROW_RE, text)


def match_disk_rows(text: str) -> list[ListingRow]:
    return list(iter_disk_rows(text))


def match_partition_rows(text: str) -> list[ListingRow]:
    return list(iter_partition_rows(text))


def match_selected_disk(text: str) -> int | None:
    m = _SELECTED_DISK_RE.search(text)
    if not m:
        return None
    try:
        return _to_int(m.group(1), _ORDINAL_MAX, "disk")
    except TranscriptParseError:
        return None


def match_selected_partition(text: str) -> int | None:
    m = _SELECTED_PARTITION_RE.search(text)
    if not m:
        return None
    try:
        return _to_int(m.group(1), _ORDINAL_MAX, "partition")
    except TranscriptParseError:
        return None


def match_success_banner(text: str, phrase: str) -> bool:
    return phrase in text
