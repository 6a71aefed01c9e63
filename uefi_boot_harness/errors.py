"""Exceptions raised by the boot-test harness."""

from __future__ import annotations

from typing import Optional


class HarnessError(Exception):
    """Base class for failures that prevent a run from reaching a verdict."""


class MissingArtifact(HarnessError):
    """The bootable binary handed to the harness is absent or unreadable."""

    def __init__(self, path: object, reason: Optional[str] = None) -> None:
        if reason is None:
            message = f"EFI binary not found at path '{path}'"
        else:
            message = f"EFI binary not readable at path '{path}': {reason}"
        super().__init__(message)
        self.path = path
        self.reason = reason


class WorkspaceUnavailable(HarnessError):
    """The boot medium directory cannot be reset or populated."""

    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"boot medium directory '{path}' is unusable: {reason}")
        self.path = path
        self.reason = reason


class LaunchFailure(HarnessError):
    """The emulator could not be started."""


__all__ = ["HarnessError", "LaunchFailure", "MissingArtifact", "WorkspaceUnavailable"]
