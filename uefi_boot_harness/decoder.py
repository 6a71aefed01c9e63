"""Turn the emulator's termination status into a test verdict.

QEMU's ``isa-debug-exit`` device terminates the emulator with host exit
code ``(V << 1) | 1`` when the guest writes the byte ``V`` to its I/O port.
The guest test runner writes ``1`` on success. Any other value, a raw code
with the low bit clear (the guest never touched the port) or termination by
a signal is a failure.
"""

from __future__ import annotations

import enum
import signal as _signal
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

import pexpect

from .logging_utils import log_event

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .launch import VmProcessHandle

SUCCESS_VALUE = 1


class Verdict(enum.Enum):
    PASS = "pass"
    FAIL = "fail"
    TIMEOUT = "timeout"
    HARNESS_ERROR = "harness_error"


@dataclass(frozen=True)
class TestVerdict:
    """Outcome of a single run together with the codes it was derived from."""

    __test__ = False

    verdict: Verdict
    raw_code: Optional[int] = None
    guest_value: Optional[int] = None
    signal: Optional[int] = None
    reason: str = ""

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def describe(self) -> str:
        """Return the human-readable status line printed by the CLI."""

        if self.verdict is Verdict.PASS:
            return f"TEST PASSED (exit code: {self.guest_value})"
        if self.verdict is Verdict.TIMEOUT:
            return f"TEST TIMED OUT ({self.reason})"
        if self.verdict is Verdict.HARNESS_ERROR:
            return f"Error: {self.reason}"
        if self.guest_value is not None:
            return f"TEST FAILED (exit code: {self.guest_value})"
        return f"TEST FAILED ({self.reason})"

    def to_metadata(self) -> Dict[str, object]:
        return {
            "verdict": self.verdict.value,
            "raw_code": self.raw_code,
            "guest_value": self.guest_value,
            "signal": self.signal,
            "reason": self.reason,
            "exit_code": self.exit_code,
        }


def decode_exit_code(raw: int) -> int:
    """Recover the value the guest wrote to the debug-exit port."""

    return raw >> 1


def encode_guest_value(value: int) -> int:
    """Return the host exit code QEMU reports for guest value ``value``."""

    return (value << 1) | 1


def is_debug_exit(raw: int) -> bool:
    """Return ``True`` when ``raw`` can only have come from the debug-exit device."""

    return raw & 1 == 1


def _signal_name(signum: int) -> str:
    try:
        return _signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def verdict_from_status(exit_status: Optional[int], signal_status: Optional[int] = None) -> TestVerdict:
    """Map a reaped process status onto a verdict; total over all inputs."""

    if signal_status is not None:
        return TestVerdict(
            verdict=Verdict.FAIL,
            signal=signal_status,
            reason=f"emulator terminated by {_signal_name(signal_status)}",
        )
    if exit_status is None:
        return TestVerdict(verdict=Verdict.FAIL, reason="emulator exit status unavailable")

    guest_value = decode_exit_code(exit_status)
    if not is_debug_exit(exit_status):
        return TestVerdict(
            verdict=Verdict.FAIL,
            raw_code=exit_status,
            guest_value=guest_value,
            reason=f"guest never signalled through debug-exit (raw exit status {exit_status})",
        )
    if guest_value == SUCCESS_VALUE:
        return TestVerdict(
            verdict=Verdict.PASS,
            raw_code=exit_status,
            guest_value=guest_value,
            reason="guest signalled success",
        )
    return TestVerdict(
        verdict=Verdict.FAIL,
        raw_code=exit_status,
        guest_value=guest_value,
        reason=f"guest signalled failure value {guest_value}",
    )


def harness_error(reason: str) -> TestVerdict:
    return TestVerdict(verdict=Verdict.HARNESS_ERROR, reason=reason)


def decode(handle: "VmProcessHandle", *, timeout: Optional[float] = None) -> TestVerdict:
    """Wait for the emulator to terminate and decode its status.

    Without a ``timeout`` the wait is unbounded. When the deadline passes the
    emulator is killed and a TIMEOUT verdict is returned.
    """

    try:
        exited = handle.wait_for_exit(timeout=timeout)
    except pexpect.ExceptionPexpect as exc:
        log_event("uefi_boot_harness.decoder.wait_failed", pid=handle.pid, error=str(exc))
        handle.kill()
        exited = True
    if not exited:
        handle.kill()
        verdict = TestVerdict(
            verdict=Verdict.TIMEOUT,
            raw_code=handle.exit_status,
            signal=handle.signal_status,
            reason=f"no exit signal within {timeout:g}s; emulator killed",
        )
    else:
        verdict = verdict_from_status(handle.exit_status, handle.signal_status)
    log_event(
        "uefi_boot_harness.decoder.verdict",
        verdict=verdict.verdict.value,
        raw_code=verdict.raw_code,
        guest_value=verdict.guest_value,
        signal=verdict.signal,
    )
    return verdict


__all__ = [
    "SUCCESS_VALUE",
    "TestVerdict",
    "Verdict",
    "decode",
    "decode_exit_code",
    "encode_guest_value",
    "harness_error",
    "is_debug_exit",
    "verdict_from_status",
]
