"""Expose the emulator fixtures to tests under ``tests/vm``."""

from tests.vm.fixtures import ovmf_firmware, qemu_executable  # noqa: F401
