"""Persist emulator console output and harness steps for post-mortem use."""

from __future__ import annotations

import datetime
from pathlib import Path
from typing import BinaryIO, List, Optional

from .logging_utils import log_event
from .workspace import RunPaths


class ConsoleTee:
    """File-like sink that copies console bytes to several streams.

    Used as the ``logfile_read`` of the spawned emulator. A stream that fails
    with ``OSError`` is dropped and the remaining streams keep receiving
    output; the emulator is never affected by a broken sink.
    """

    def __init__(self, *streams: BinaryIO) -> None:
        self._streams: List[BinaryIO] = [stream for stream in streams if stream is not None]
        self.dropped: List[BinaryIO] = []

    @property
    def streams(self) -> List[BinaryIO]:
        return list(self._streams)

    def add(self, stream: BinaryIO) -> None:
        self._streams.append(stream)

    def _drop(self, stream: BinaryIO, exc: OSError) -> None:
        if stream in self._streams:
            self._streams.remove(stream)
            self.dropped.append(stream)
        log_event(
            "uefi_boot_harness.capture.sink_dropped",
            sink=getattr(stream, "name", repr(stream)),
            error=str(exc),
        )

    def write(self, data: bytes) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8", errors="replace")
        for stream in list(self._streams):
            try:
                stream.write(data)
                stream.flush()
            except OSError as exc:
                self._drop(stream, exc)
        return len(data)

    def flush(self) -> None:
        for stream in list(self._streams):
            try:
                stream.flush()
            except OSError as exc:
                self._drop(stream, exc)


class LogCapture:
    """Open the run's serial log and fan console output into it.

    When the log cannot be opened the capture degrades to the ``echo``
    stream alone (normally the host's stdout) and ``degraded`` is set.
    """

    def __init__(self, run_paths: RunPaths, *, echo: Optional[BinaryIO] = None) -> None:
        self.run_paths = run_paths
        self.echo = echo
        self.degraded = False
        self.error: Optional[str] = None
        self._serial_handle: Optional[BinaryIO] = None
        self.sink = ConsoleTee()

    @property
    def serial_log(self) -> Optional[Path]:
        if self._serial_handle is None:
            return None
        return self.run_paths.serial_log

    def open(self) -> ConsoleTee:
        try:
            self.run_paths.run_dir.mkdir(parents=True, exist_ok=True)
            self._serial_handle = self.run_paths.serial_log.open("ab")
        except OSError as exc:
            self.degraded = True
            self.error = str(exc)
            log_event(
                "uefi_boot_harness.capture.serial_log_unavailable",
                path=self.run_paths.serial_log,
                error=str(exc),
            )
        else:
            self.sink.add(self._serial_handle)
        if self.echo is not None:
            self.sink.add(self.echo)
        return self.sink

    def close(self) -> None:
        self.sink.flush()
        if self._serial_handle is not None:
            try:
                self._serial_handle.close()
            except OSError as exc:  # pragma: no cover - best effort cleanup
                log_event(
                    "uefi_boot_harness.capture.close_failed",
                    path=self.run_paths.serial_log,
                    error=str(exc),
                )

    def __enter__(self) -> ConsoleTee:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class HarnessLog:
    """Timestamped transcript of what the harness did during a run."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.entries: List[str] = []

    def step(self, message: str, body: Optional[str] = None) -> None:
        timestamp = datetime.datetime.now(datetime.timezone.utc).isoformat()
        entry = f"[{timestamp}] {message}"
        self.entries.append(entry)
        lines = [entry]
        if body is not None:
            body_lines = body.splitlines()
            if not body_lines:
                lines.append(f"[{timestamp}]   <no output>")
            else:
                lines.extend(f"[{timestamp}]   {line}" for line in body_lines)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write("\n".join(lines) + "\n")
        except OSError as exc:
            log_event(
                "uefi_boot_harness.capture.harness_log_failed",
                path=self.path,
                error=str(exc),
            )


__all__ = ["ConsoleTee", "HarnessLog", "LogCapture"]
