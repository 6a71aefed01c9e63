"""CLI entry point: boot a UEFI binary under QEMU and report the verdict."""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path
from typing import BinaryIO, Optional, Sequence

from .capture import HarnessLog, LogCapture
from .decoder import TestVerdict, decode, harness_error
from .devices import (
    AUTOMATED_MEMORY,
    DEFAULT_QEMU,
    INTERACTIVE_MEMORY,
    VmProcessConfig,
    automated_config,
    interactive_config,
)
from .errors import HarnessError, LaunchFailure
from .launch import Spawner, launch, probe_qemu_version
from .logging_utils import log_event
from .media import assemble
from .metadata import append_run_ledger_entry, record_verdict, write_run_metadata
from .workspace import RunPaths, WorkspaceConfig, default_workspace

DEFAULT_FIRMWARE = Path("third_party/ovmf/RELEASEX64_OVMF.fd")


def _read_positive_env(name: str) -> Optional[float]:
    """Return a positive number configured via environment variable, if any."""

    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return None
    try:
        parsed = float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be greater than zero")
    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid timeout {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("timeout must be greater than zero")
    return parsed


def _default_firmware() -> Path:
    override = os.environ.get("UEFI_BOOT_HARNESS_FIRMWARE")
    if override:
        return Path(override)
    return DEFAULT_FIRMWARE


def _prepare_run_dir(run_paths: RunPaths) -> bool:
    try:
        run_paths.run_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        log_event(
            "uefi_boot_harness.cli.log_dir_unavailable",
            path=run_paths.run_dir,
            error=str(exc),
        )
        return False
    return True


def _record_outcome(
    *,
    run_paths: RunPaths,
    workspace: WorkspaceConfig,
    binary: Path,
    verdict: TestVerdict,
    started: float,
    command: Optional[Sequence[str]],
    harness_log: HarnessLog,
) -> None:
    harness_log.step("Verdict", body=verdict.describe())
    try:
        record_verdict(run_paths.metadata, verdict)
        append_run_ledger_entry(
            workspace.ledger_path,
            run_id=run_paths.run_id,
            binary=binary,
            metadata_path=run_paths.metadata if run_paths.metadata.exists() else None,
            verdict=verdict,
            duration_seconds=time.perf_counter() - started,
            qemu_command=list(command) if command else None,
        )
    except OSError as exc:
        # Diagnostics must never change the verdict.
        log_event("uefi_boot_harness.cli.record_failed", error=str(exc))


def build_config(
    *,
    firmware: Path,
    medium_root: Path,
    run_paths: RunPaths,
    logs_available: bool,
    interactive: bool = False,
    memory: Optional[str] = None,
    input_devices: bool = True,
    qemu_binary: str = DEFAULT_QEMU,
) -> VmProcessConfig:
    if interactive:
        return interactive_config(
            firmware=firmware,
            medium_root=medium_root,
            serial_logfile=run_paths.serial_log if logs_available else None,
            monitor_logfile=run_paths.monitor_log if logs_available else None,
            memory=memory or INTERACTIVE_MEMORY,
            qemu_binary=qemu_binary,
            input_devices=input_devices,
        )
    return automated_config(
        firmware=firmware,
        medium_root=medium_root,
        memory=memory or AUTOMATED_MEMORY,
        qemu_binary=qemu_binary,
    )


def run_boot_test(
    binary: Path,
    *,
    workspace: WorkspaceConfig,
    firmware: Path,
    memory: Optional[str] = None,
    interactive: bool = False,
    input_devices: bool = True,
    timeout: Optional[float] = None,
    qemu_binary: str = DEFAULT_QEMU,
    echo: Optional[BinaryIO] = None,
    spawn: Optional[Spawner] = None,
) -> TestVerdict:
    """Assemble, launch, capture and decode a single boot test.

    :class:`~uefi_boot_harness.errors.MissingArtifact`,
    :class:`~uefi_boot_harness.errors.WorkspaceUnavailable` and
    :class:`~uefi_boot_harness.errors.LaunchFailure` propagate; once the
    emulator is running a verdict is always returned.
    """

    binary = Path(binary)
    medium = assemble(binary, workspace)
    started = time.perf_counter()
    run_paths = workspace.run_paths()
    harness_log = HarnessLog(run_paths.harness_log)
    logs_available = _prepare_run_dir(run_paths)
    harness_log.step(f"Boot medium assembled at {medium.root}")

    config = build_config(
        firmware=Path(firmware),
        medium_root=medium.root,
        run_paths=run_paths,
        logs_available=logs_available,
        interactive=interactive,
        memory=memory,
        input_devices=input_devices,
        qemu_binary=qemu_binary,
    )
    command = config.command()
    harness_log.step("QEMU command", body=" ".join(command))

    try:
        write_run_metadata(
            run_paths.metadata,
            run_id=run_paths.run_id,
            binary=binary,
            firmware=Path(firmware),
            mode=config.mode,
            qemu_command=command,
            qemu_version=probe_qemu_version(qemu_binary),
            serial_log=run_paths.serial_log if logs_available else None,
            monitor_log=run_paths.monitor_log if interactive and logs_available else None,
            harness_log=run_paths.harness_log,
            timeout=timeout,
        )
    except OSError as exc:
        log_event("uefi_boot_harness.cli.metadata_failed", error=str(exc))

    # QEMU tees the console itself in interactive mode.
    capture = LogCapture(run_paths, echo=None if interactive else echo)
    sink = None if interactive else capture.open()
    if capture.degraded:
        harness_log.step("Serial log unavailable; console only on stdout", body=capture.error)
    try:
        try:
            handle = launch(config, console_sink=sink, spawn=spawn)
        except LaunchFailure as exc:
            harness_log.step("Launch failed", body=str(exc))
            _record_outcome(
                run_paths=run_paths,
                workspace=workspace,
                binary=binary,
                verdict=harness_error(str(exc)),
                started=started,
                command=command,
                harness_log=harness_log,
            )
            raise
        harness_log.step(f"QEMU started (pid {handle.pid})")
        try:
            if interactive and not handle.interact():
                harness_log.step("No terminal on stdin; waiting for QEMU without attaching")
            verdict = decode(handle, timeout=timeout)
        except BaseException:
            handle.kill()
            raise
    finally:
        capture.close()

    _record_outcome(
        run_paths=run_paths,
        workspace=workspace,
        binary=binary,
        verdict=verdict,
        started=started,
        command=command,
        harness_log=harness_log,
    )
    return verdict


def parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Boot a UEFI application in QEMU and report the test verdict",
    )
    parser.add_argument("binary", type=Path, help="Path to the UEFI application (.efi)")
    parser.add_argument(
        "--firmware",
        type=Path,
        default=None,
        help=f"UEFI firmware image (default: $UEFI_BOOT_HARNESS_FIRMWARE or {DEFAULT_FIRMWARE})",
    )
    parser.add_argument(
        "--memory",
        default=os.environ.get("UEFI_BOOT_HARNESS_MEMORY"),
        help=f"Guest memory size (default: {AUTOMATED_MEMORY}, {INTERACTIVE_MEMORY} when interactive)",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Open a graphical window with input devices and a telnet monitor",
    )
    parser.add_argument(
        "--no-input-devices",
        dest="input_devices",
        action="store_false",
        help="Do not attach keyboard and tablet in interactive mode",
    )
    parser.add_argument(
        "--work-dir",
        type=Path,
        default=None,
        help="Root for the boot medium and logs (default: $UEFI_BOOT_HARNESS_WORK_DIR or cwd)",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for run logs (default: <work-dir>/log)",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help="Kill the emulator and report a timeout after this many seconds",
    )
    parser.add_argument(
        "--qemu",
        default=os.environ.get("UEFI_BOOT_HARNESS_QEMU", DEFAULT_QEMU),
        help="QEMU executable",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)
    if args.timeout is None:
        try:
            args.timeout = _read_positive_env("UEFI_BOOT_HARNESS_TIMEOUT")
        except ValueError as exc:
            parser.error(str(exc))
    return args


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the harness and return the process exit code."""

    args = parse_args(argv)
    workspace = default_workspace(args.work_dir)
    if args.log_dir is not None:
        workspace = WorkspaceConfig(boot_dir=workspace.boot_dir, log_dir=args.log_dir)
    workspace = WorkspaceConfig(
        boot_dir=workspace.boot_dir.resolve(),
        log_dir=workspace.log_dir.resolve(),
    )
    firmware = (args.firmware or _default_firmware()).resolve()

    try:
        verdict = run_boot_test(
            args.binary,
            workspace=workspace,
            firmware=firmware,
            memory=args.memory,
            interactive=args.interactive,
            input_devices=args.input_devices,
            timeout=args.timeout,
            qemu_binary=args.qemu,
            echo=sys.stdout.buffer,
        )
    except (HarnessError, ValueError) as exc:
        verdict = harness_error(str(exc))
    sys.stdout.flush()
    print(verdict.describe())
    return verdict.exit_code


__all__ = ["build_config", "main", "parse_args", "run_boot_test"]
