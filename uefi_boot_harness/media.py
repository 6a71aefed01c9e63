"""Stage a UEFI application onto a directory the firmware boots as FAT."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .errors import MissingArtifact, WorkspaceUnavailable
from .logging_utils import log_event
from .workspace import WorkspaceConfig

# Fixed by the UEFI removable-media boot convention for x86_64.
BOOT_RELATIVE_PATH = PurePosixPath("EFI/BOOT/BOOTX64.EFI")


@dataclass(frozen=True)
class BootMedium:
    """Directory tree handed to QEMU as a virtual FAT drive."""

    root: Path

    @property
    def boot_path(self) -> Path:
        return self.root.joinpath(*BOOT_RELATIVE_PATH.parts)


def _reason(exc: OSError) -> str:
    return exc.strerror or str(exc)


def _reset(root: Path) -> None:
    if root.exists() or root.is_symlink():
        if root.is_dir() and not root.is_symlink():
            shutil.rmtree(root)
        else:
            root.unlink()


def assemble(binary_path: Path, workspace: WorkspaceConfig) -> BootMedium:
    """Recreate the boot medium holding a copy of ``binary_path``.

    Raises :class:`MissingArtifact` before touching the filesystem when the
    binary is not a readable regular file, and :class:`WorkspaceUnavailable`
    when the medium directory cannot be rebuilt. The previous medium is
    removed entirely so nothing from an earlier run survives.
    """

    binary = Path(binary_path)
    if not binary.is_file():
        log_event("uefi_boot_harness.media.missing_artifact", path=binary)
        raise MissingArtifact(binary)
    try:
        with binary.open("rb"):
            pass
    except OSError as exc:
        log_event("uefi_boot_harness.media.unreadable_artifact", path=binary, error=str(exc))
        raise MissingArtifact(binary, reason=_reason(exc)) from exc

    medium = BootMedium(root=Path(workspace.boot_dir))
    try:
        _reset(medium.root)
        medium.boot_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(binary, medium.boot_path)
    except OSError as exc:
        log_event("uefi_boot_harness.media.workspace_unusable", path=medium.root, error=str(exc))
        raise WorkspaceUnavailable(medium.root, _reason(exc)) from exc
    log_event(
        "uefi_boot_harness.media.assembled",
        binary=binary,
        boot_path=medium.boot_path,
        size=medium.boot_path.stat().st_size,
    )
    return medium


__all__ = ["BOOT_RELATIVE_PATH", "BootMedium", "assemble"]
