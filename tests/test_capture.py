"""Tests for console capture and the harness transcript."""

from __future__ import annotations

import io
from pathlib import Path

from uefi_boot_harness.capture import ConsoleTee, HarnessLog, LogCapture
from uefi_boot_harness.workspace import RunPaths


class BrokenSink(io.BytesIO):
    def write(self, data):  # type: ignore[override]
        raise OSError("disk full")


def test_tee_copies_bytes_to_every_stream() -> None:
    first = io.BytesIO()
    second = io.BytesIO()
    tee = ConsoleTee(first, second)

    assert tee.write(b"BdsDxe: loading\r\n") == len(b"BdsDxe: loading\r\n")
    tee.flush()

    assert first.getvalue() == b"BdsDxe: loading\r\n"
    assert second.getvalue() == b"BdsDxe: loading\r\n"


def test_tee_drops_failing_stream_and_keeps_going() -> None:
    healthy = io.BytesIO()
    broken = BrokenSink()
    tee = ConsoleTee(broken, healthy)

    tee.write(b"one")
    tee.write(b"two")

    assert healthy.getvalue() == b"onetwo"
    assert tee.dropped == [broken]
    assert tee.streams == [healthy]


def test_tee_accepts_text() -> None:
    sink = io.BytesIO()
    ConsoleTee(sink).write("héllo")

    assert sink.getvalue() == "héllo".encode("utf-8")


def test_capture_appends_to_run_scoped_serial_log(tmp_path: Path) -> None:
    paths = RunPaths(run_dir=tmp_path / "log" / "run-a")
    echo = io.BytesIO()

    with LogCapture(paths, echo=echo) as sink:
        sink.write(b"first line\r\n")

    with LogCapture(paths) as sink:
        sink.write(b"second line\r\n")

    assert paths.serial_log.read_bytes() == b"first line\r\nsecond line\r\n"
    assert echo.getvalue() == b"first line\r\n"


def test_capture_degrades_to_echo_when_log_unavailable(tmp_path: Path) -> None:
    blocker = tmp_path / "log"
    blocker.write_text("a file where the log dir should be", encoding="utf-8")
    paths = RunPaths(run_dir=blocker / "run-a")
    echo = io.BytesIO()

    capture = LogCapture(paths, echo=echo)
    sink = capture.open()
    sink.write(b"still visible")
    capture.close()

    assert capture.degraded
    assert capture.error
    assert capture.serial_log is None
    assert echo.getvalue() == b"still visible"


def test_harness_log_writes_timestamped_steps(tmp_path: Path) -> None:
    log = HarnessLog(tmp_path / "run" / "harness.log")

    log.step("QEMU started")
    log.step("QEMU command", body="qemu -m 512M\n-display none")
    log.step("Empty body", body="")

    lines = log.path.read_text(encoding="utf-8").splitlines()
    assert lines[0].endswith("] QEMU started")
    assert lines[2].endswith("]   qemu -m 512M")
    assert lines[3].endswith("]   -display none")
    assert lines[-1].endswith("]   <no output>")
    assert len(log.entries) == 3


def test_harness_log_failure_is_not_fatal(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    log = HarnessLog(blocker / "harness.log")

    log.step("cannot be written")

    assert log.entries and log.entries[0].endswith("cannot be written")
