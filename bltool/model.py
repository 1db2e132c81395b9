from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .capacity import Capacity
from .errors import SessionOutcome, StepError
from .paths import bdeunlock_path, diskpart_path, managebde_path

DEFAULT_SESSION_TIMEOUT = 100.0
DEFAULT_HELPER_TIMEOUT = 300.0


class Action(enum.Enum):
    MOUNT = "mount"
    UNMOUNT = "unmount"


@dataclass(frozen=True)
class DiskId:
    number: int
    capacity: Capacity


@dataclass(frozen=True)
class PartitionId:
    number: int
    capacity: Capacity


@dataclass(frozen=True)
class VolumeSelector:
    disk: DiskId
    partition: PartitionId
    letter: str

    def __post_init__(self):
        if len(self.letter) != 1 or not self.letter.isascii() or not self.letter.isalpha():
            raise ValueError(f"drive letter must be a single ASCII letter, got {self.letter!r}")


@dataclass
class SessionConfig:
    diskpart_cmd: Sequence[str] = field(default_factory=lambda: [diskpart_path()])
    bdeunlock: str = field(default_factory=bdeunlock_path)
    managebde: str = field(default_factory=managebde_path)
    timeout: float = DEFAULT_SESSION_TIMEOUT
    helper_timeout: Optional[float] = DEFAULT_HELPER_TIMEOUT
    expected_computer: Optional[str] = None


@dataclass
class HelperResult:
    path: str
    params: str
    rc: Optional[int]
    timed_out: bool = False


@dataclass
class SessionResult:
    action: Action
    outcome: SessionOutcome
    step: Optional[StepError] = None
    exit_code: Optional[int] = None
    helper: Optional[HelperResult] = None

    @property
    def ok(self) -> bool:
        return self.outcome is SessionOutcome.COMPLETED
