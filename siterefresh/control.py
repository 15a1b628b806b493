"""Control operations exposed to an HTTP layer or CLI.

Each method returns a :class:`ControlResponse` carrying an HTTP-equivalent
status code and a JSON-ready body, so a route handler only has to
serialize it.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ._util import format_duration, to_iso, utc_now
from .banners import DEFAULT_BANNER_SPECS, BannerSpec, BannerTask, BannerUpdater, banner_config
from .scheduler import InvalidScheduleError, Scheduler

logger = logging.getLogger(__name__)

# Suggested delay before a caller polls status after triggering a run.
_STATUS_POLL_HINT_S = 60


@dataclass(frozen=True)
class ControlResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _elapsed(ms: float) -> dict[str, Any]:
    ms_int = max(0, int(ms))
    return {"milliseconds": ms_int, "formatted": format_duration(ms_int)}


class SchedulerControl:
    def __init__(self, scheduler: Scheduler, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._scheduler = scheduler
        self._clock = clock

    def trigger_run(self) -> ControlResponse:
        handle = self._scheduler.trigger()
        if not handle.accepted:
            return ControlResponse(409, {"success": False, "message": "Scheduler is already running"})
        next_check = self._clock() + timedelta(seconds=_STATUS_POLL_HINT_S)
        return ControlResponse(
            202,
            {
                "success": True,
                "message": "Scheduler tasks started successfully",
                "nextCheckTime": to_iso(next_check),
            },
        )

    def get_status(self) -> ControlResponse:
        status = self._scheduler.snapshot()
        now = self._clock()

        next_run = self._scheduler.get_next_run_time()
        if next_run is not None:
            status["timeUntilNextRun"] = _elapsed((next_run - now).total_seconds() * 1000)

        last_run = self._scheduler.record.last_run_started_at
        if last_run is not None:
            status["timeSinceLastRun"] = _elapsed((now - last_run).total_seconds() * 1000)

        return ControlResponse(200, {"success": True, "status": status})

    def stop(self) -> ControlResponse:
        self._scheduler.stop()
        return ControlResponse(200, {"success": True, "message": "Scheduler stopped successfully"})

    def start(self, schedule: str | None = None) -> ControlResponse:
        try:
            next_run = self._scheduler.start(schedule)
        except InvalidScheduleError as e:
            logger.warning("Rejected schedule %r: %s", schedule, e)
            return ControlResponse(400, {"success": False, "message": "Invalid schedule", "error": str(e)})
        return ControlResponse(
            200,
            {
                "success": True,
                "message": "Scheduler started successfully",
                "schedule": self._scheduler.schedule,
                "nextRun": to_iso(next_run),
            },
        )


class BannerControl:
    """Manual banner regeneration plus read-only banner listings."""

    def __init__(
        self,
        updater: BannerUpdater,
        *,
        specs: tuple[BannerSpec, ...] = DEFAULT_BANNER_SPECS,
        rng: random.Random | None = None,
    ) -> None:
        self._updater = updater
        self._specs = specs
        self._rng = rng

    def update_banners(self, page_types: list[str] | None = None) -> ControlResponse:
        specs = self._specs
        if page_types:
            known = {s.page_type for s in self._specs}
            unknown = sorted(set(page_types) - known)
            if unknown:
                return ControlResponse(
                    400, {"success": False, "message": f"Unknown banner page type(s): {', '.join(unknown)}"}
                )
            specs = tuple(s for s in self._specs if s.page_type in page_types)

        outcome = BannerTask(self._updater, specs=specs, rng=self._rng).run()
        successful: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for slot, entry in outcome.details.items():
            if not isinstance(entry, dict):
                continue
            (successful if entry.get("success") else failed).append({"slot": slot, **entry})

        if not outcome.success and not (successful or failed):
            error = outcome.details.get("error", "no banner slots processed")
            return ControlResponse(500, {"success": False, "message": "Banner update failed", "error": error})

        body = {
            "success": not failed,
            "message": f"{len(successful)} banner(s) updated, {len(failed)} failed",
            "successful": successful,
            "failed": failed,
        }
        return ControlResponse(200 if not failed else 207, body)

    def get_status(self) -> ControlResponse:
        return ControlResponse(200, {"success": True, "status": self._updater.get_status()})

    def get_config(self) -> ControlResponse:
        return ControlResponse(200, {"success": True, "config": banner_config(self._specs)})
