"""Fixtures for tests that boot a real emulator.

They skip unless ``qemu-system-x86_64`` is on ``PATH`` and a UEFI firmware
image is available through ``UEFI_BOOT_HARNESS_VM_FIRMWARE``.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Optional

import pytest

from uefi_boot_harness.launch import probe_qemu_version

DEFAULT_VM_TIMEOUT = 60


def _read_timeout_env(name: str, default: int) -> int:
    """Return a positive integer timeout configured via environment variable."""

    value = os.environ.get(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError as exc:  # pragma: no cover - configuration guard
        raise ValueError(f"{name} must be an integer value") from exc
    if parsed <= 0:  # pragma: no cover - configuration guard
        raise ValueError(f"{name} must be greater than zero")
    return parsed


VM_TIMEOUT: int = _read_timeout_env("UEFI_BOOT_HARNESS_VM_TIMEOUT", DEFAULT_VM_TIMEOUT)


def _require_executable(executable: str) -> str:
    """Ensure an executable exists in ``PATH`` or skip the invoking test."""

    path: Optional[str] = shutil.which(executable)
    if path is None:
        pytest.skip(f"required executable '{executable}' is not available in PATH")
    return path


@pytest.fixture(scope="session")
def qemu_executable() -> str:
    path = _require_executable("qemu-system-x86_64")
    if probe_qemu_version(path) is None:
        pytest.skip("qemu-system-x86_64 did not report a version")
    return path


@pytest.fixture(scope="session")
def ovmf_firmware() -> Path:
    value = os.environ.get("UEFI_BOOT_HARNESS_VM_FIRMWARE")
    if not value:
        pytest.skip("set UEFI_BOOT_HARNESS_VM_FIRMWARE to an OVMF image to boot real VMs")
    path = Path(value)
    if not path.is_file():
        pytest.skip(f"firmware image {path} does not exist")
    return path


__all__ = ["VM_TIMEOUT", "ovmf_firmware", "qemu_executable"]
