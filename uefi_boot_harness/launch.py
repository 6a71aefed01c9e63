"""Start the emulator for one run and hand back a handle to it."""

from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import pexpect

from .devices import VmProcessConfig
from .errors import LaunchFailure
from .logging_utils import log_event

# Ctrl-] detaches an interactive session from the serial console.
ESCAPE_CHARACTER = chr(29)

# Console bytes already reach the capture sink; pexpect only keeps this tail.
SEARCH_WINDOW_SIZE = 2000

Spawner = Callable[..., "pexpect.spawn"]


@dataclass
class VmProcessHandle:
    """Running emulator process.

    Output must keep being consumed (``wait_for_exit`` or ``interact``) for
    the console capture to see it; the exit status is only available once
    the process has been reaped.
    """

    child: "pexpect.spawn"
    config: VmProcessConfig
    command: Tuple[str, ...]
    exit_status: Optional[int] = field(default=None, init=False)
    signal_status: Optional[int] = field(default=None, init=False)
    reaped: bool = field(default=False, init=False)

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.child, "pid", None)

    def is_alive(self) -> bool:
        if self.reaped:
            return False
        return bool(self.child.isalive())

    def wait_for_exit(self, timeout: Optional[float] = None) -> bool:
        """Consume output until the process exits.

        Returns ``False`` when ``timeout`` elapses first; ``None`` waits
        without limit.
        """

        if self.reaped:
            return True
        try:
            self.child.expect(pexpect.EOF, timeout=timeout, searchwindowsize=SEARCH_WINDOW_SIZE)
        except pexpect.TIMEOUT:
            return False
        self._reap()
        return True

    def kill(self) -> None:
        """Forcefully stop the emulator and reap it."""

        if self.reaped:
            return
        if self.child.isalive():
            log_event("uefi_boot_harness.launch.kill", pid=self.pid)
            self.child.terminate(force=True)
        self._reap()

    def interact(self) -> bool:
        """Attach the terminal to the emulator's console until detach or exit.

        Returns ``False`` without attaching when stdin is not a terminal; the
        emulator keeps running and the caller simply waits for it.
        """

        if not self.is_alive():
            return False
        if not _stdin_is_terminal():
            log_event("uefi_boot_harness.launch.interact_skipped", pid=self.pid, reason="stdin is not a tty")
            return False
        self.child.interact(escape_character=ESCAPE_CHARACTER)
        return True

    def _reap(self) -> None:
        try:
            self.child.wait()
        except pexpect.ExceptionPexpect as exc:
            log_event("uefi_boot_harness.launch.wait_failed", pid=self.pid, error=str(exc))
        try:
            self.child.close(force=True)
        except pexpect.ExceptionPexpect as exc:  # pragma: no cover - pty teardown race
            log_event("uefi_boot_harness.launch.close_failed", pid=self.pid, error=str(exc))
        self.exit_status = self.child.exitstatus
        self.signal_status = self.child.signalstatus
        self.reaped = True
        log_event(
            "uefi_boot_harness.launch.reaped",
            pid=self.pid,
            exit_status=self.exit_status,
            signal_status=self.signal_status,
        )


def _stdin_is_terminal() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


def probe_qemu_version(executable: str) -> Optional[str]:
    """Return the first line of ``qemu --version`` output when available."""

    try:
        result = subprocess.run(
            [executable, "--version"],
            check=True,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError):
        return None
    output = (result.stdout or "").strip()
    if not output:
        output = (result.stderr or "").strip()
    if not output:
        return None
    return output.splitlines()[0]


def launch(
    config: VmProcessConfig,
    *,
    console_sink: Optional[object] = None,
    spawn: Optional[Spawner] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[Path] = None,
) -> VmProcessHandle:
    """Spawn the emulator described by ``config``.

    Everything the emulator prints on its terminal is copied into
    ``console_sink``. Missing inputs are reported as :class:`LaunchFailure`
    before anything is spawned.
    """

    firmware = Path(config.firmware.path)
    if not firmware.is_file():
        raise LaunchFailure(f"firmware image not found at path '{firmware}'")
    medium = Path(config.boot_disk.medium_root)
    if not medium.is_dir():
        raise LaunchFailure(f"boot medium not found at path '{medium}'")

    cmd = config.command()
    spawner = spawn or pexpect.spawn
    log_event("uefi_boot_harness.launch.start", command=cmd, mode=config.mode)
    try:
        child = spawner(
            cmd[0],
            cmd[1:],
            timeout=None,
            env=env,
            cwd=str(cwd) if cwd is not None else None,
        )
    except (pexpect.ExceptionPexpect, OSError) as exc:
        log_event("uefi_boot_harness.launch.failed", command=cmd, error=str(exc))
        raise LaunchFailure(f"failed to start {cmd[0]}: {exc}") from exc
    if console_sink is not None:
        child.logfile_read = console_sink
    handle = VmProcessHandle(child=child, config=config, command=tuple(cmd))
    log_event("uefi_boot_harness.launch.spawned", pid=handle.pid)
    return handle


__all__ = ["ESCAPE_CHARACTER", "SEARCH_WINDOW_SIZE", "VmProcessHandle", "launch", "probe_qemu_version"]
