"""Typed QEMU device descriptors and the per-run process configuration."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Type, TypeVar, Union

DEFAULT_QEMU = "qemu-system-x86_64"
AUTOMATED_MEMORY = "512M"
INTERACTIVE_MEMORY = "4G"
DEFAULT_MONITOR_HOST = "127.0.0.1"
DEFAULT_MONITOR_PORT = 5555
DEBUG_EXIT_IOBASE = 0xF4
DEBUG_EXIT_IOSIZE = 0x01

AUTOMATED = "automated"
INTERACTIVE = "interactive"

_MEMORY_PATTERN = re.compile(r"^[1-9][0-9]*[KMGT]?$")


def _ensure(condition: bool, message: str) -> None:
    if not condition:
        raise ValueError(message)


def _escape(value: object) -> str:
    """Escape a value embedded in a comma-separated QEMU option string."""

    return str(value).replace(",", ",,")


@dataclass(frozen=True)
class FirmwareDevice:
    path: Path

    def args(self) -> List[str]:
        return ["-bios", str(self.path)]


@dataclass(frozen=True)
class BootDisk:
    """Directory exposed as a raw FAT drive on an IDE disk."""

    medium_root: Path
    drive_id: str = "hd0"
    controller: str = "ide-hd"

    def args(self) -> List[str]:
        drive = f"if=none,format=raw,file=fat:rw:{_escape(self.medium_root)},id={self.drive_id}"
        return ["-drive", drive, "-device", f"{self.controller},drive={self.drive_id}"]


@dataclass(frozen=True)
class DebugExitDevice:
    """``isa-debug-exit``: a guest write of V makes QEMU exit with ``(V << 1) | 1``."""

    iobase: int = DEBUG_EXIT_IOBASE
    iosize: int = DEBUG_EXIT_IOSIZE

    def args(self) -> List[str]:
        return ["-device", f"isa-debug-exit,iobase={self.iobase:#x},iosize={self.iosize:#04x}"]


@dataclass(frozen=True)
class SerialConsole:
    """COM1 bound to QEMU's stdio, optionally tee'd by QEMU into ``logfile``."""

    logfile: Optional[Path] = None
    mux: bool = False
    chardev_id: str = "char_com1"

    def args(self) -> List[str]:
        if self.logfile is None and not self.mux:
            return ["-serial", "stdio"]
        options = [f"stdio,id={self.chardev_id}"]
        if self.mux:
            options.append("mux=on")
        if self.logfile is not None:
            options.append(f"logfile={_escape(self.logfile)}")
        return ["-chardev", ",".join(options), "-serial", f"chardev:{self.chardev_id}"]


@dataclass(frozen=True)
class MonitorChannel:
    """Human monitor exposed on a local telnet listener."""

    host: str = DEFAULT_MONITOR_HOST
    port: int = DEFAULT_MONITOR_PORT
    logfile: Optional[Path] = None
    chardev_id: str = "char_monitor"

    def args(self) -> List[str]:
        options = [
            f"socket,id={self.chardev_id}",
            f"host={self.host}",
            f"port={self.port}",
            "server=on",
            "wait=off",
            "telnet=on",
        ]
        if self.logfile is not None:
            options.append(f"logfile={_escape(self.logfile)}")
        return ["-chardev", ",".join(options), "-mon", f"chardev={self.chardev_id},mode=readline"]


@dataclass(frozen=True)
class UsbController:
    driver: str = "qemu-xhci"

    def args(self) -> List[str]:
        return ["-device", self.driver]


@dataclass(frozen=True)
class InputDevice:
    driver: str

    def args(self) -> List[str]:
        return ["-device", self.driver]


@dataclass(frozen=True)
class Display:
    """``backend=None`` leaves the choice of graphical frontend to QEMU."""

    backend: Optional[str] = "none"

    @property
    def headless(self) -> bool:
        return self.backend == "none"

    def args(self) -> List[str]:
        if self.backend is None:
            return []
        return ["-display", self.backend]


Device = Union[
    FirmwareDevice,
    BootDisk,
    DebugExitDevice,
    SerialConsole,
    MonitorChannel,
    UsbController,
    InputDevice,
    Display,
]

_D = TypeVar("_D")


@dataclass(frozen=True)
class VmProcessConfig:
    """Everything needed to start one emulator instance.

    The configuration is validated on construction: the exit decoder relies
    on exactly one debug-exit device and exactly one boot disk being wired.
    """

    memory: str
    devices: Tuple[Device, ...]
    qemu_binary: str = DEFAULT_QEMU
    mode: str = AUTOMATED
    extra_args: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "devices", tuple(self.devices))
        object.__setattr__(self, "extra_args", tuple(self.extra_args))
        _ensure(
            isinstance(self.memory, str) and bool(_MEMORY_PATTERN.match(self.memory)),
            f"invalid memory size {self.memory!r}; expected e.g. 512M or 4G",
        )
        _ensure(self.mode in {AUTOMATED, INTERACTIVE}, f"unknown run mode {self.mode!r}")
        _ensure(bool(self.qemu_binary), "qemu binary must not be empty")
        for device_type, label in (
            (DebugExitDevice, "debug-exit device"),
            (BootDisk, "boot disk"),
            (FirmwareDevice, "firmware image"),
        ):
            count = len(self._all(device_type))
            _ensure(count == 1, f"configuration requires exactly one {label}, found {count}")
        for device_type, label in (
            (SerialConsole, "serial console"),
            (MonitorChannel, "monitor channel"),
            (Display, "display"),
        ):
            _ensure(len(self._all(device_type)) <= 1, f"configuration allows at most one {label}")
        if self._all(InputDevice):
            _ensure(bool(self._all(UsbController)), "input devices require a USB controller")

    def _all(self, device_type: Type[_D]) -> List[_D]:
        return [device for device in self.devices if isinstance(device, device_type)]

    def _one(self, device_type: Type[_D]) -> Optional[_D]:
        matches = self._all(device_type)
        return matches[0] if matches else None

    @property
    def firmware(self) -> FirmwareDevice:
        return self._all(FirmwareDevice)[0]

    @property
    def boot_disk(self) -> BootDisk:
        return self._all(BootDisk)[0]

    @property
    def debug_exit(self) -> DebugExitDevice:
        return self._all(DebugExitDevice)[0]

    @property
    def serial(self) -> Optional[SerialConsole]:
        return self._one(SerialConsole)

    @property
    def monitor(self) -> Optional[MonitorChannel]:
        return self._one(MonitorChannel)

    @property
    def display(self) -> Optional[Display]:
        return self._one(Display)

    @property
    def input_devices(self) -> List[InputDevice]:
        return self._all(InputDevice)

    @property
    def headless(self) -> bool:
        display = self.display
        return display is not None and display.headless

    def command(self) -> List[str]:
        """Assemble the emulator invocation without starting anything."""

        cmd = [self.qemu_binary, "-m", self.memory]
        for device in self.devices:
            cmd.extend(device.args())
        cmd.extend(self.extra_args)
        return cmd


def automated_config(
    *,
    firmware: Path,
    medium_root: Path,
    memory: str = AUTOMATED_MEMORY,
    qemu_binary: str = DEFAULT_QEMU,
    extra_args: Sequence[str] = (),
) -> VmProcessConfig:
    """Headless run with COM1 on stdio; the harness captures the console."""

    devices: List[Device] = [
        FirmwareDevice(Path(firmware)),
        BootDisk(Path(medium_root)),
        DebugExitDevice(),
        SerialConsole(),
        Display("none"),
    ]
    return VmProcessConfig(
        memory=memory,
        devices=tuple(devices),
        qemu_binary=qemu_binary,
        mode=AUTOMATED,
        extra_args=tuple(extra_args),
    )


def interactive_config(
    *,
    firmware: Path,
    medium_root: Path,
    serial_logfile: Optional[Path] = None,
    monitor_logfile: Optional[Path] = None,
    memory: str = INTERACTIVE_MEMORY,
    qemu_binary: str = DEFAULT_QEMU,
    input_devices: bool = True,
    monitor_port: int = DEFAULT_MONITOR_PORT,
    display: Optional[str] = None,
    extra_args: Sequence[str] = (),
) -> VmProcessConfig:
    """Graphical run with keyboard/tablet and a telnet monitor.

    QEMU itself tees COM1 into ``serial_logfile`` so the console stays fully
    interactive on the terminal.
    """

    devices: List[Device] = [
        FirmwareDevice(Path(firmware)),
        BootDisk(Path(medium_root)),
        DebugExitDevice(),
        SerialConsole(logfile=serial_logfile, mux=True),
        MonitorChannel(port=monitor_port, logfile=monitor_logfile),
    ]
    if input_devices:
        devices.extend(
            [UsbController(), InputDevice("usb-kbd"), InputDevice("usb-tablet")]
        )
    devices.append(Display(display))
    return VmProcessConfig(
        memory=memory,
        devices=tuple(devices),
        qemu_binary=qemu_binary,
        mode=INTERACTIVE,
        extra_args=tuple(extra_args),
    )


__all__ = [
    "AUTOMATED",
    "AUTOMATED_MEMORY",
    "BootDisk",
    "DEFAULT_MONITOR_PORT",
    "DEFAULT_QEMU",
    "DebugExitDevice",
    "Device",
    "Display",
    "FirmwareDevice",
    "INTERACTIVE",
    "INTERACTIVE_MEMORY",
    "InputDevice",
    "MonitorChannel",
    "SerialConsole",
    "UsbController",
    "VmProcessConfig",
    "automated_config",
    "interactive_config",
]
