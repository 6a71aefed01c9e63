"""Boot-test harness for UEFI kernel images under QEMU."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as pkg_version

__all__ = [
    "capture",
    "cli",
    "decoder",
    "devices",
    "launch",
    "media",
    "metadata",
    "workspace",
]


def _discover_version() -> str:
    try:
        return pkg_version("uefi-boot-harness")
    except PackageNotFoundError:
        return "unknown"


__version__ = _discover_version()
