"""Error taxonomy for the diskpart protocol driver."""
from __future__ import annotations

import enum


class StepError(enum.IntEnum):
    """Result of a single protocol step. Only SUCCESS advances the machine."""

    SUCCESS = 0
    MISMATCH_COMPUTER = 1
    MISMATCH_DISK = 2
    MISMATCH_PARTITION = 3
    SELECT_DISK_FAILED = 4
    SELECT_PARTITION_FAILED = 5
    ASSIGN_LETTER_FAILED = 6
    REMOVE_LETTER_FAILED = 7
    PARSE_FAILED = 8
    IO = 9


class SessionOutcome(enum.Enum):
    COMPLETED = "completed"
    PROTOCOL_FAILED = "protocol_failed"
    PROCESS_EXITED = "process_exited"
    TIMEOUT = "timeout"
    SPAWN_FAILED = "spawn_failed"
    HELPER_FAILED = "helper_failed"


class BltError(Exception):
    """Base exception for bltool errors"""


class UnknownUnitError(BltError, ValueError):
    """Raised when a capacity unit label is not recognised."""

    def __init__(self, label: str) -> None:
        super().__init__(f"unknown capacity unit {label!r}")
        self.label = label


class TranscriptParseError(BltError, ValueError):
    """Raised when a transcript row carries a field that does not convert."""


class SelectorParseError(BltError, ValueError):
    """Raised when a command-line volume selector is malformed."""


class ElevationError(BltError, OSError):
    """Raised when an elevated helper cannot be launched."""
