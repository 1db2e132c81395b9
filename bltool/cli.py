"""CLI entrypoint for the BitLocker drive-letter tool.

    bitlocker-tool mount   0:1863:GiB  6:362:GiB  X
    bitlocker-tool unmount 0:1863:GiB  6:362:GiB  X
                   <action> <disk>:<capacity>:<unit> <partition>:<capacity>:<unit> <letter>
"""

from __future__ import annotations

import argparse
import json
import os
import re
import sys
import time
from typing import Any, Dict, Optional

from . import executil, session
from .capacity import Capacity, Unit, capacity_cast, caller_unit
from .elevate import shell_session
from .errors import SelectorParseError, SessionOutcome, UnknownUnitError
from .executil import append_jsonl, resolve_log_path, trace
from .model import (
    DEFAULT_HELPER_TIMEOUT,
    DEFAULT_SESSION_TIMEOUT,
    Action,
    DiskId,
    PartitionId,
    SessionConfig,
    SessionResult,
    VolumeSelector,
)
from .paths import blt_logs_dir

RESULT_CODES: Dict[str, int] = {
    "MOUNT_OK": 0,
    "UNMOUNT_OK": 0,
    "FAIL_BAD_ARGUMENTS": 2,
    "FAIL_SPAWN": 3,
    "FAIL_TIMEOUT": 4,
    "FAIL_PROCESS_EXITED": 5,
    "FAIL_HELPER": 6,
    "FAIL_UNHANDLED": 12,
    "FAIL_MISMATCH_COMPUTER": 21,
    "FAIL_MISMATCH_DISK": 22,
    "FAIL_MISMATCH_PARTITION": 23,
    "FAIL_SELECT_DISK_FAILED": 24,
    "FAIL_SELECT_PARTITION_FAILED": 25,
    "FAIL_ASSIGN_LETTER_FAILED": 26,
    "FAIL_REMOVE_LETTER_FAILED": 27,
    "FAIL_PARSE_FAILED": 28,
    "FAIL_IO": 29,
}

_OUTCOME_KINDS = {
    SessionOutcome.SPAWN_FAILED: "FAIL_SPAWN",
    SessionOutcome.TIMEOUT: "FAIL_TIMEOUT",
    SessionOutcome.PROCESS_EXITED: "FAIL_PROCESS_EXITED",
    SessionOutcome.HELPER_FAILED: "FAIL_HELPER",
}

_SELECTOR_RE = re.compile(r"^(\d+):(\d+):(.+)$", re.ASCII)

CLI_START_MONO = time.perf_counter()


def _result_log_path() -> str:
    path = resolve_log_path()
    if not path:
        path = os.path.join(blt_logs_dir(), executil.LOG_NAME)
    return path


def parse_selector_part(text: str) -> tuple[int, Capacity]:
    """Parse ``NUMBER:MAGNITUDE:UNIT`` into an ordinal and a byte capacity."""

    m = _SELECTOR_RE.match(text)
    if not m:
        raise SelectorParseError(f"expected <number>:<capacity>:<unit>, got {text!r}")
    try:
        unit = caller_unit(m.group(3))
    except UnknownUnitError as exc:
        raise SelectorParseError(f"unsupported capacity unit in {text!r}; use KiB, MiB or GiB") from exc
    number = int(m.group(1))
    magnitude = int(m.group(2))
    try:
        return number, capacity_cast(Capacity(magnitude, unit), Unit.BYTES)
    except ValueError as exc:
        raise SelectorParseError(f"capacity in {text!r} does not fit in 64 bits of bytes") from exc


def parse_letter(text: str) -> str:
    if len(text) != 1 or not text.isascii() or not text.isalpha():
        raise SelectorParseError(f"drive letter must be a single letter A-Z, got {text!r}")
    return text.upper()


def build_selector(disk: str, partition: str, letter: str) -> VolumeSelector:
    disk_number, disk_capacity = parse_selector_part(disk)
    partition_number, partition_capacity = parse_selector_part(partition)
    return VolumeSelector(
        disk=DiskId(disk_number, disk_capacity),
        partition=PartitionId(partition_number, partition_capacity),
        letter=parse_letter(letter),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bitlocker-tool", add_help=True)
    parser.add_argument("action", choices=[a.value for a in Action])
    parser.add_argument("disk", help="disk as <number>:<capacity>:<KiB|MiB|GiB>")
    parser.add_argument("partition", help="partition as <number>:<capacity>:<KiB|MiB|GiB>")
    parser.add_argument("letter")
    parser.add_argument("--timeout", type=float, default=DEFAULT_SESSION_TIMEOUT)
    parser.add_argument("--helper-timeout", type=float, default=DEFAULT_HELPER_TIMEOUT)
    parser.add_argument("--no-helper-timeout", dest="helper_timeout", action="store_const", const=None)
    parser.add_argument("--computer", dest="expected_computer", default=None)
    parser.add_argument("--diskpart", default=None, help="override the diskpart executable")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def result_kind(result: SessionResult) -> str:
    if result.outcome is SessionOutcome.COMPLETED:
        return f"{result.action.value.upper()}_OK"
    if result.outcome is SessionOutcome.PROTOCOL_FAILED and result.step is not None:
        return f"FAIL_{result.step.name}"
    return _OUTCOME_KINDS.get(result.outcome, "FAIL_UNHANDLED")


def _result_payload(result: SessionResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "action": result.action.value,
        "outcome": result.outcome.value,
    }
    if result.step is not None:
        payload["step"] = result.step.name
    if result.exit_code is not None:
        payload["diskpart_rc"] = result.exit_code
    if result.helper is not None:
        payload["helper"] = {
            "path": result.helper.path,
            "params": result.helper.params,
            "rc": result.helper.rc,
            "timed_out": result.helper.timed_out,
        }
    return payload


def _emit_result(kind: str, extra: Optional[Dict[str, Any]] = None) -> None:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    log_path = _result_log_path()
    payload.setdefault("log_path", log_path)
    payload["timing_total_ms"] = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    append_jsonl(log_path, payload)
    print(json.dumps(payload, sort_keys=True, separators=(",", ":")))
    raise SystemExit(RESULT_CODES.get(kind, 1))


def _main_impl(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    executil.ECHO = args.verbose

    try:
        selector = build_selector(args.disk, args.partition, args.letter)
    except SelectorParseError as exc:
        _emit_result("FAIL_BAD_ARGUMENTS", extra={"why": str(exc)})

    config = SessionConfig(
        timeout=args.timeout,
        helper_timeout=args.helper_timeout,
        expected_computer=args.expected_computer,
    )
    if args.diskpart:
        config.diskpart_cmd = [args.diskpart]

    action = Action(args.action)
    trace("cli.start", action=action.value, argv=list(argv) if argv is not None else sys.argv[1:])
    with shell_session():
        result = session.run(action, selector, config)
    _emit_result(result_kind(result), extra=_result_payload(result))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001
        _emit_result("FAIL_UNHANDLED", extra={"error": str(exc), "type": type(exc).__name__})
    return 0


if __name__ == "__main__":
    sys.exit(main())
