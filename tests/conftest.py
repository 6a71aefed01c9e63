from pathlib import Path
import os
import sys

import pytest

# Ensure repository root is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

FAKE_QEMU_PREAMBLE = """#!/bin/sh
if [ "$1" = "--version" ]; then
  echo "QEMU emulator version 0.0.0 (fake)"
  exit 0
fi
"""


@pytest.fixture(autouse=True)
def _isolate_harness_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("UEFI_BOOT_HARNESS_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def efi_binary(tmp_path: Path) -> Path:
    path = tmp_path / "artifacts" / "kernel.efi"
    path.parent.mkdir()
    path.write_bytes(b"MZ\x90\x00" + bytes(range(256)) * 4)
    return path


@pytest.fixture()
def firmware_image(tmp_path: Path) -> Path:
    path = tmp_path / "ovmf" / "RELEASEX64_OVMF.fd"
    path.parent.mkdir()
    path.write_bytes(b"\xff" * 64)
    return path


@pytest.fixture()
def fake_qemu(tmp_path: Path):
    """Return a factory writing an executable that stands in for QEMU."""

    def _write(body: str, name: str = "fake-qemu") -> str:
        script = tmp_path / "bin" / name
        script.parent.mkdir(exist_ok=True)
        script.write_text(FAKE_QEMU_PREAMBLE + body + "\n", encoding="utf-8")
        script.chmod(0o755)
        return str(script)

    return _write
