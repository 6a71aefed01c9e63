"""JSON event logging shared by the harness modules.

Events are silent unless ``UEFI_BOOT_HARNESS_LOG_EVENTS`` is set, so normal
runs only show the emulator console and the final status line.
"""

from __future__ import annotations

import datetime as _dt
import json
import os
import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence


def _serialise(value: Any) -> Any:
    """Convert event fields (paths, argv lists, nested dicts) to JSON values."""

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _serialise(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_serialise(item) for item in value]
    return repr(value)


def _logs_enabled() -> bool:
    value = os.environ.get("UEFI_BOOT_HARNESS_LOG_EVENTS")
    if value is None:
        return False
    return value.strip().lower() not in {"", "0", "false", "no"}


def log_event(event: str, **fields: Any) -> None:
    """Record a harness event such as ``uefi_boot_harness.launch.spawned``.

    One JSON object per line goes to ``stderr``, keeping stdout free for the
    guest console. Each record carries a UTC ``timestamp`` for lining it up
    with the run's ``harness.log``. When ``UEFI_BOOT_HARNESS_LOG_FILE`` is
    set the same line is appended there as well.
    """

    if not _logs_enabled():
        return

    record = {
        "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
        "event": event,
    }
    for key, value in fields.items():
        record[str(key)] = _serialise(value)

    line = json.dumps(record, sort_keys=True)

    sys.stderr.write(line + "\n")
    sys.stderr.flush()
    _append_to_event_file(line)


def _event_file() -> Optional[Path]:
    value = os.environ.get("UEFI_BOOT_HARNESS_LOG_FILE")
    if value is None or value.strip() == "":
        return None
    return Path(value)


def _append_to_event_file(line: str) -> None:
    """Append ``line`` to the event file; a failure never aborts the run."""

    target = _event_file()
    if target is None:
        return
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
    except OSError as exc:  # pragma: no cover - best effort logging path
        sys.stderr.write(f"uefi-boot-harness: cannot record event in {target} ({exc}); continuing\n")
        sys.stderr.flush()
