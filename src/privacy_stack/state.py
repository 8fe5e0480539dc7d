# src/privacy_stack/state.py
from __future__ import annotations
import contextlib
import fcntl
import hashlib
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .errors import ConcurrentRunError
from .keys import write_secret_file
from .logging_utils import get_logger

log = get_logger(__name__)

RECORD_VERSION = 1

RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class StageRecord:
    status: str
    inputs: str                        # sha256 of the stage inputs
    updated_at: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProvisioningRecord:
    stages: Dict[str, StageRecord] = field(default_factory=dict)

    def get(self, stage: str) -> Optional[StageRecord]:
        return self.stages.get(stage)

    def mark(self, stage: str, status: str, inputs: str, **details: Any) -> StageRecord:
        rec = StageRecord(
            status=status,
            inputs=inputs,
            updated_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            details=details,
        )
        self.stages[stage] = rec
        return rec


def inputs_hash(inputs: Dict[str, Any]) -> str:
    blob = json.dumps(inputs, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def record_to_dict(record: ProvisioningRecord) -> dict:
    return {
        "version": RECORD_VERSION,
        "stages": {
            name: {
                "status": s.status,
                "inputs": s.inputs,
                "updated_at": s.updated_at,
                "details": s.details,
            }
            for name, s in record.stages.items()
        },
    }


def dict_to_record(data: dict) -> ProvisioningRecord:
    stages = {}
    for name, s in data.get("stages", {}).items():
        stages[name] = StageRecord(
            status=s["status"],
            inputs=s["inputs"],
            updated_at=s.get("updated_at", ""),
            details=s.get("details", {}),
        )
    return ProvisioningRecord(stages=stages)


def load_record(path: Path) -> ProvisioningRecord:
    if not path.exists():
        return ProvisioningRecord()
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        log.warning("Ignoring unreadable provisioning record %s: %s", path, exc)
        return ProvisioningRecord()
    if data.get("version") != RECORD_VERSION:
        log.warning("Ignoring provisioning record with version %r", data.get("version"))
        return ProvisioningRecord()
    return dict_to_record(data)


def save_record(record: ProvisioningRecord, path: Path) -> None:
    path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
    write_secret_file(path, json.dumps(record_to_dict(record), indent=2) + "\n")


@contextlib.contextmanager
def run_lock(path: Path) -> Iterator[None]:
    """Exclusive, non-blocking lock held for the whole run."""
    path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            raise ConcurrentRunError(
                f"Another privacy-stack run holds {path}; wait for it to finish."
            ) from exc
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
