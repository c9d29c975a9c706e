from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from .models import IterationRecord, IterationStatus


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class StateStore:
    """Last known iteration state, overwritten on every terminal outcome."""

    def __init__(self, path: Path):
        self.path = path
        self.log = logging.getLogger(__name__)

    def save(self, iteration: int, issue_number: int, status: IterationStatus) -> IterationRecord:
        record = IterationRecord(
            iteration=iteration,
            issue_number=issue_number,
            status=status,
            timestamp=utcnow_iso(),
        )
        payload = {
            "last_iteration": record.iteration,
            "last_issue": record.issue_number,
            "last_status": record.status.value,
            "timestamp": record.timestamp,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)
        self.log.info(
            "state saved iteration=%s issue=%s status=%s",
            record.iteration,
            record.issue_number,
            record.status.value,
        )
        return record

    def load(self) -> IterationRecord | None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            self.log.warning("state file is not valid json path=%s", self.path)
            return None
        if not isinstance(raw, dict):
            return None
        try:
            return IterationRecord(
                iteration=int(raw["last_iteration"]),
                issue_number=int(raw["last_issue"]),
                status=IterationStatus(raw["last_status"]),
                timestamp=str(raw.get("timestamp", "")),
            )
        except (KeyError, TypeError, ValueError):
            self.log.warning("state file has unexpected shape path=%s", self.path)
            return None
