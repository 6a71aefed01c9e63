"""Explicit locations for the boot medium and run logs."""

from __future__ import annotations

import datetime
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

BOOT_DIR_NAME = "mnt"
LOG_DIR_NAME = "log"
LEDGER_FILENAME = "runs.jsonl"
SERIAL_LOG_FILENAME = "com1.txt"
MONITOR_LOG_FILENAME = "monitor.txt"
HARNESS_LOG_FILENAME = "harness.log"
METADATA_FILENAME = "metadata.json"


@dataclass(frozen=True)
class WorkspaceConfig:
    """Directories a single harness invocation owns.

    ``boot_dir`` is wiped and recreated by every run; ``log_dir`` only ever
    grows. Two concurrent runs need two distinct workspaces.
    """

    boot_dir: Path
    log_dir: Path

    @classmethod
    def from_root(cls, root: Path) -> "WorkspaceConfig":
        root = Path(root)
        return cls(boot_dir=root / BOOT_DIR_NAME, log_dir=root / LOG_DIR_NAME)

    @property
    def ledger_path(self) -> Path:
        return self.log_dir / LEDGER_FILENAME

    def run_paths(self, run_id: Optional[str] = None) -> "RunPaths":
        """Return the log locations for one run inside ``log_dir``."""

        return RunPaths(run_dir=self.log_dir / (run_id or new_run_id()))


@dataclass(frozen=True)
class RunPaths:
    """Run-scoped log files; the parent directory is created lazily."""

    run_dir: Path

    @property
    def run_id(self) -> str:
        return self.run_dir.name

    @property
    def serial_log(self) -> Path:
        return self.run_dir / SERIAL_LOG_FILENAME

    @property
    def monitor_log(self) -> Path:
        return self.run_dir / MONITOR_LOG_FILENAME

    @property
    def harness_log(self) -> Path:
        return self.run_dir / HARNESS_LOG_FILENAME

    @property
    def metadata(self) -> Path:
        return self.run_dir / METADATA_FILENAME


def new_run_id() -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.strftime("%Y%m%dT%H%M%S.%fZ")


def default_workspace(root: Optional[Path] = None) -> WorkspaceConfig:
    """Return the workspace honouring the environment overrides.

    ``UEFI_BOOT_HARNESS_WORK_DIR`` replaces the root the boot medium lives
    under, ``UEFI_BOOT_HARNESS_LOG_DIR`` replaces the log directory itself.
    """

    if root is None:
        override = os.environ.get("UEFI_BOOT_HARNESS_WORK_DIR")
        root = Path(override) if override else Path.cwd()
    workspace = WorkspaceConfig.from_root(root)
    log_override = os.environ.get("UEFI_BOOT_HARNESS_LOG_DIR")
    if log_override:
        workspace = WorkspaceConfig(boot_dir=workspace.boot_dir, log_dir=Path(log_override))
    return workspace


__all__ = [
    "RunPaths",
    "WorkspaceConfig",
    "default_workspace",
    "new_run_id",
]
