"""Tests for device descriptors and command construction."""

from __future__ import annotations

from pathlib import Path

import pytest

from uefi_boot_harness.devices import (
    AUTOMATED,
    INTERACTIVE,
    BootDisk,
    DebugExitDevice,
    Display,
    FirmwareDevice,
    InputDevice,
    SerialConsole,
    VmProcessConfig,
    automated_config,
    interactive_config,
)


def test_automated_command_matches_reference_invocation() -> None:
    config = automated_config(
        firmware=Path("/fw/RELEASEX64_OVMF.fd"),
        medium_root=Path("/work/mnt"),
    )

    assert config.mode == AUTOMATED
    assert config.headless
    assert config.command() == [
        "qemu-system-x86_64",
        "-m",
        "512M",
        "-bios",
        "/fw/RELEASEX64_OVMF.fd",
        "-drive",
        "if=none,format=raw,file=fat:rw:/work/mnt,id=hd0",
        "-device",
        "ide-hd,drive=hd0",
        "-device",
        "isa-debug-exit,iobase=0xf4,iosize=0x01",
        "-serial",
        "stdio",
        "-display",
        "none",
    ]


def test_automated_config_has_no_input_or_monitor() -> None:
    config = automated_config(firmware=Path("/fw.fd"), medium_root=Path("/mnt"))

    assert config.input_devices == []
    assert config.monitor is None
    assert config.debug_exit == DebugExitDevice(iobase=0xF4, iosize=0x01)


def test_interactive_command_wires_logs_monitor_and_inputs(tmp_path: Path) -> None:
    serial = tmp_path / "com1.txt"
    monitor = tmp_path / "monitor.txt"

    config = interactive_config(
        firmware=Path("/fw.fd"),
        medium_root=Path("/mnt"),
        serial_logfile=serial,
        monitor_logfile=monitor,
    )
    cmd = config.command()

    assert config.mode == INTERACTIVE
    assert not config.headless
    assert cmd[1:3] == ["-m", "4G"]
    assert f"stdio,id=char_com1,mux=on,logfile={serial}" in cmd
    assert cmd[cmd.index("-serial") + 1] == "chardev:char_com1"
    monitor_spec = cmd[cmd.index("-mon") - 1]
    assert monitor_spec.startswith("socket,id=char_monitor,host=127.0.0.1,port=5555")
    assert "telnet=on" in monitor_spec
    assert monitor_spec.endswith(f"logfile={monitor}")
    assert "isa-debug-exit,iobase=0xf4,iosize=0x01" in cmd
    for driver in ("qemu-xhci", "usb-kbd", "usb-tablet"):
        assert driver in cmd
    assert "-display" not in cmd


def test_interactive_without_input_devices() -> None:
    config = interactive_config(
        firmware=Path("/fw.fd"),
        medium_root=Path("/mnt"),
        input_devices=False,
        display="gtk",
    )
    cmd = config.command()

    assert "usb-kbd" not in cmd
    assert "qemu-xhci" not in cmd
    assert cmd[-2:] == ["-display", "gtk"]
    assert config.serial == SerialConsole(logfile=None, mux=True)


def test_option_values_escape_commas() -> None:
    disk = BootDisk(Path("/tmp/a,b/mnt"))

    assert disk.args()[1] == "if=none,format=raw,file=fat:rw:/tmp/a,,b/mnt,id=hd0"


@pytest.mark.parametrize(
    "devices, message",
    [
        ((FirmwareDevice(Path("/fw")), BootDisk(Path("/mnt"))), "debug-exit"),
        (
            (
                FirmwareDevice(Path("/fw")),
                BootDisk(Path("/mnt")),
                DebugExitDevice(),
                DebugExitDevice(),
            ),
            "debug-exit",
        ),
        ((FirmwareDevice(Path("/fw")), DebugExitDevice()), "boot disk"),
        ((BootDisk(Path("/mnt")), DebugExitDevice()), "firmware"),
        (
            (
                FirmwareDevice(Path("/fw")),
                BootDisk(Path("/mnt")),
                DebugExitDevice(),
                InputDevice("usb-kbd"),
            ),
            "USB controller",
        ),
        (
            (
                FirmwareDevice(Path("/fw")),
                BootDisk(Path("/mnt")),
                DebugExitDevice(),
                Display("none"),
                Display("gtk"),
            ),
            "display",
        ),
    ],
)
def test_config_rejects_invalid_topologies(devices, message) -> None:
    with pytest.raises(ValueError, match=message):
        VmProcessConfig(memory="512M", devices=devices)


@pytest.mark.parametrize("memory", ["", "0", "512MB", "-1G", "lots"])
def test_config_rejects_bad_memory(memory: str) -> None:
    with pytest.raises(ValueError, match="memory"):
        automated_config(firmware=Path("/fw"), medium_root=Path("/mnt"), memory=memory)


def test_config_is_immutable() -> None:
    config = automated_config(firmware=Path("/fw"), medium_root=Path("/mnt"), memory="2048")

    with pytest.raises(AttributeError):
        config.memory = "1G"  # type: ignore[misc]
    assert config.command()[2] == "2048"
