"""Utilities for recording run metadata and the cross-run ledger."""

from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .decoder import TestVerdict


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _write_json(path: Path, payload: Dict[str, object]) -> None:
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def _load_metadata(metadata_path: Path) -> Optional[Dict[str, object]]:
    try:
        raw_metadata = metadata_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    if not raw_metadata.strip():
        return None
    try:
        metadata = json.loads(raw_metadata)
    except json.JSONDecodeError:
        return None
    if not isinstance(metadata, dict):
        return None
    return metadata


def write_run_metadata(
    metadata_path: Path,
    *,
    run_id: str,
    binary: Path,
    firmware: Path,
    mode: str,
    qemu_command: List[str],
    qemu_version: Optional[str] = None,
    serial_log: Optional[Path] = None,
    monitor_log: Optional[Path] = None,
    harness_log: Optional[Path] = None,
    timeout: Optional[float] = None,
) -> None:
    """Persist structured metadata describing a harness run."""

    metadata_path.parent.mkdir(parents=True, exist_ok=True)
    metadata: Dict[str, object] = {
        "generated_at": _now(),
        "run_id": run_id,
        "artifact": {
            "binary": str(binary),
            "firmware": str(firmware),
        },
        "mode": mode,
        "logs": {
            "serial": str(serial_log) if serial_log is not None else None,
            "monitor": str(monitor_log) if monitor_log is not None else None,
            "harness": str(harness_log) if harness_log is not None else None,
        },
        "qemu": {
            "command": list(qemu_command),
        },
        "timeout_seconds": timeout,
    }
    if qemu_version:
        metadata["qemu"]["version"] = qemu_version  # type: ignore[index]
    _write_json(metadata_path, metadata)


def record_verdict(metadata_path: Path, verdict: "TestVerdict") -> None:
    """Merge the run's verdict into ``metadata.json`` without dropping keys."""

    metadata = _load_metadata(metadata_path)
    if metadata is None:
        return
    metadata["verdict"] = verdict.to_metadata()
    metadata["completed_at"] = _now()
    _write_json(metadata_path, metadata)


def append_run_ledger_entry(
    ledger_path: Path,
    *,
    run_id: str,
    binary: Path,
    metadata_path: Optional[Path],
    verdict: "TestVerdict",
    duration_seconds: Optional[float] = None,
    qemu_command: Optional[List[str]] = None,
) -> None:
    """Append a JSON line describing one run to the ledger.

    Entries are additive and never rewritten, so the ledger survives across
    runs the same way the log directory does.
    """

    entry: Dict[str, object] = {
        "timestamp": _now(),
        "run_id": run_id,
        "binary": str(binary),
        "metadata": str(metadata_path) if metadata_path is not None else None,
        "outcome": verdict.verdict.value,
        "exit_code": verdict.exit_code,
        "raw_code": verdict.raw_code,
        "guest_value": verdict.guest_value,
    }
    if verdict.signal is not None:
        entry["signal"] = verdict.signal
    if duration_seconds is not None:
        entry["duration_seconds"] = round(duration_seconds, 3)
    if qemu_command:
        entry["qemu_command"] = list(qemu_command)
    ledger_path.parent.mkdir(parents=True, exist_ok=True)
    with ledger_path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(entry, sort_keys=True) + "\n")


__all__ = [
    "append_run_ledger_entry",
    "record_verdict",
    "write_run_metadata",
]
