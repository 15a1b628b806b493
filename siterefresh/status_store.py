"""File-backed run status (single JSON document, atomically replaced)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import jsonschema

from ._util import atomic_write_json, from_iso, load_json_file, to_iso
from .models import RunRecord, TaskOutcome, TASK_ORDER

logger = logging.getLogger(__name__)

_NULLABLE_STR = {"type": ["string", "null"]}

STATUS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["schedule", "lastRun", "nextRun", "lastStatus", "isRunning"],
    "properties": {
        "schedule": _NULLABLE_STR,
        "lastRun": _NULLABLE_STR,
        "lastRunFinished": _NULLABLE_STR,
        "nextRun": _NULLABLE_STR,
        "isRunning": {"type": "boolean"},
        "lastStatus": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["success"],
                "properties": {
                    "success": {"type": "boolean"},
                    "timestamp": _NULLABLE_STR,
                    "details": {"type": "object"},
                },
            },
        },
    },
}


class PersistenceError(RuntimeError):
    pass


@dataclass(frozen=True)
class StatusSnapshot:
    schedule: str | None
    next_run: datetime | None
    record: RunRecord


def snapshot_to_dict(*, schedule: str | None, next_run: datetime | None, record: RunRecord) -> dict[str, Any]:
    return {
        "schedule": schedule,
        "lastRun": to_iso(record.last_run_started_at),
        "lastRunFinished": to_iso(record.last_run_finished_at),
        "nextRun": to_iso(next_run),
        "lastStatus": {name: outcome.to_dict() for name, outcome in record.outcomes.items()},
        "isRunning": record.is_running,
    }


class StatusStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def save(self, *, schedule: str | None, next_run: datetime | None, record: RunRecord) -> None:
        data = snapshot_to_dict(schedule=schedule, next_run=next_run, record=record)
        try:
            atomic_write_json(self.path, data)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"failed to save scheduler status to {self.path}: {e}") from e
        logger.debug("Scheduler status saved to %s", self.path)

    def read(self) -> dict[str, Any] | None:
        """Return the schema-checked status document as stored, or None when absent."""
        try:
            data = load_json_file(self.path)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise PersistenceError(f"failed to read scheduler status {self.path}: {e}") from e

        try:
            jsonschema.validate(instance=data, schema=STATUS_SCHEMA)
        except jsonschema.ValidationError as e:
            raise PersistenceError(f"invalid scheduler status {self.path}: {e.message}") from e
        return data

    def load(self) -> StatusSnapshot | None:
        """Return the persisted snapshot, or None when no status file exists."""
        data = self.read()
        if data is None:
            logger.info("No previous scheduler status found at %s", self.path)
            return None

        outcomes = {name: TaskOutcome.pending() for name in TASK_ORDER}
        for name, raw in (data.get("lastStatus") or {}).items():
            outcomes[name] = TaskOutcome.from_dict(raw)

        record = RunRecord(
            last_run_started_at=from_iso(data.get("lastRun")),
            last_run_finished_at=from_iso(data.get("lastRunFinished")),
            outcomes=outcomes,
            # A persisted "running" flag means the previous process died mid-run.
            is_running=False,
        )
        logger.info("Scheduler status loaded from %s", self.path)
        return StatusSnapshot(schedule=data.get("schedule"), next_run=from_iso(data.get("nextRun")), record=record)
