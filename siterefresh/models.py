from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ._util import from_iso, to_iso, utc_now


CONTENT_GENERATION = "contentGeneration"
BANNER_UPDATES = "bannerUpdates"
LANGUAGE_UPDATES = "languageUpdates"

# Fixed execution order for every run.
TASK_ORDER: tuple[str, ...] = (CONTENT_GENERATION, BANNER_UPDATES, LANGUAGE_UPDATES)


@dataclass(frozen=True)
class TaskOutcome:
    success: bool
    timestamp: datetime | None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, details: dict[str, Any] | None = None) -> "TaskOutcome":
        return cls(success=True, timestamp=utc_now(), details=dict(details or {}))

    @classmethod
    def failed(cls, details: dict[str, Any] | None = None, *, error: str | None = None) -> "TaskOutcome":
        d = dict(details or {})
        if error is not None:
            d["error"] = error
        return cls(success=False, timestamp=utc_now(), details=d)

    @classmethod
    def pending(cls) -> "TaskOutcome":
        return cls(success=False, timestamp=None, details={})

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "timestamp": to_iso(self.timestamp), "details": self.details}

    @classmethod
    def from_dict(cls, obj: Any) -> "TaskOutcome":
        if not isinstance(obj, dict):
            return cls.pending()
        details = obj.get("details")
        return cls(
            success=obj.get("success") is True,
            timestamp=from_iso(obj.get("timestamp")),
            details=details if isinstance(details, dict) else {},
        )


def _initial_outcomes() -> dict[str, TaskOutcome]:
    return {name: TaskOutcome.pending() for name in TASK_ORDER}


@dataclass
class RunRecord:
    last_run_started_at: datetime | None = None
    last_run_finished_at: datetime | None = None
    outcomes: dict[str, TaskOutcome] = field(default_factory=_initial_outcomes)
    is_running: bool = False


@dataclass(frozen=True)
class RunResult:
    skipped: bool
    success: bool
    outcomes: dict[str, TaskOutcome] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def skipped_run(cls) -> "RunResult":
        return cls(skipped=True, success=False)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes.values() if not o.success)

    def summary(self) -> str:
        if self.skipped:
            return "skipped: a run is already in progress"
        return f"{self.succeeded} succeeded, {self.failed} failed"
