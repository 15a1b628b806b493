"""Scheduled update orchestrator.

One :class:`Scheduler` per process owns the cron timer, the run guard and
the :class:`~siterefresh.models.RunRecord`. A run executes every task in
order; a task that raises is recorded as failed and the run continues.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Protocol

from croniter import croniter

from ._util import JsonlLogger, to_iso, utc_now
from .config import DEFAULT_SCHEDULE
from .models import RunRecord, RunResult, TaskOutcome
from .status_store import PersistenceError, StatusStore, snapshot_to_dict

logger = logging.getLogger(__name__)

# Upper bound for one timer wait; the loop re-reads next_run after each wake-up.
_MAX_TIMER_WAIT_S = 60.0


class InvalidScheduleError(ValueError):
    pass


class TaskExecutor(Protocol):
    name: str

    def run(self) -> TaskOutcome: ...


def _to_croniter_expression(expression: str) -> str:
    """Accept 5-field cron, or 6-field with a leading seconds field."""
    if not isinstance(expression, str):
        raise InvalidScheduleError(f"schedule must be a string, got {type(expression).__name__}")
    fields = expression.split()
    if len(fields) == 5:
        expr = " ".join(fields)
    elif len(fields) == 6:
        # croniter expects seconds as the trailing field.
        expr = " ".join(fields[1:] + fields[:1])
    else:
        raise InvalidScheduleError(f"schedule must have 5 or 6 fields: {expression!r}")
    if not croniter.is_valid(expr):
        raise InvalidScheduleError(f"invalid cron expression: {expression!r}")
    return expr


def compute_next_run(expression: str, now: datetime | None = None) -> datetime:
    """First fire time strictly after *now* (UTC)."""
    expr = _to_croniter_expression(expression)
    base = now or utc_now()
    try:
        it = croniter(expr, base)
        nxt = it.get_next(datetime)
        while nxt <= base:
            nxt = it.get_next(datetime)
    except (ValueError, KeyError) as e:
        raise InvalidScheduleError(f"invalid cron expression: {expression!r}: {e}") from e
    return nxt


def validate_schedule(expression: str) -> str:
    _to_croniter_expression(expression)
    return expression


@dataclass(frozen=True)
class RunHandle:
    """Acknowledgement for an on-demand run; poll ``future`` or the status."""

    accepted: bool
    future: Future[RunResult] | None = None
    reason: str | None = None

    def wait(self, timeout: float | None = None) -> RunResult | None:
        if self.future is None:
            return None
        return self.future.result(timeout=timeout)


class Scheduler:
    def __init__(
        self,
        *,
        tasks: Sequence[TaskExecutor],
        store: StatusStore | None = None,
        schedule: str = DEFAULT_SCHEDULE,
        run_log: JsonlLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._tasks = list(tasks)
        self._store = store
        self._schedule = schedule
        self._run_log = run_log
        self._clock = clock

        self._guard = threading.Lock()
        self._persist_lock = threading.Lock()
        self._record = RunRecord()
        self._next_run: datetime | None = None
        self._stop_event: threading.Event | None = None
        self._timer_thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._pending: Future[RunResult] | None = None

        self._restore()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _restore(self) -> None:
        if self._store is None:
            return
        try:
            snap = self._store.load()
        except PersistenceError as e:
            logger.error("Error loading scheduler status, starting fresh: %s", e)
            return
        if snap is None:
            return
        self._record = snap.record
        # A persisted next_run belongs to the previous process; start() or the
        # next completed run computes a fresh one.
        if snap.next_run is not None:
            logger.info("Previous next run was %s; not armed until start()", to_iso(snap.next_run))

    @property
    def schedule(self) -> str:
        return self._schedule

    @property
    def is_running(self) -> bool:
        return self._record.is_running

    @property
    def is_started(self) -> bool:
        return self._timer_thread is not None

    @property
    def record(self) -> RunRecord:
        with self._guard:
            return replace(self._record, outcomes=dict(self._record.outcomes))

    def get_next_run_time(self) -> datetime | None:
        return self._next_run

    def snapshot(self) -> dict[str, Any]:
        with self._guard:
            return snapshot_to_dict(schedule=self._schedule, next_run=self._next_run, record=self._record)

    def _persist(self) -> None:
        if self._store is None:
            return
        with self._persist_lock:
            with self._guard:
                record = replace(self._record, outcomes=dict(self._record.outcomes))
                schedule, next_run = self._schedule, self._next_run
            try:
                self._store.save(schedule=schedule, next_run=next_run, record=record)
            except PersistenceError as e:
                logger.error("Failed to save scheduler status: %s", e)

    def _log_event(self, event: str, **fields: Any) -> None:
        if self._run_log is None:
            return
        try:
            self._run_log.log(event, **fields)
        except OSError as e:
            logger.warning("Failed to write run log %s: %s", self._run_log.path, e)

    def _safe_next_run(self, after: datetime) -> datetime | None:
        try:
            return compute_next_run(self._schedule, after)
        except InvalidScheduleError as e:
            logger.error("Failed to parse cron schedule: %s", e)
            return None

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def start(self, schedule: str | None = None) -> datetime:
        """Arm (or re-arm) the recurring timer. Returns the next fire time."""
        expression = self._schedule if schedule is None else schedule
        next_run = compute_next_run(expression, self._clock())

        with self._guard:
            self._cancel_timer_locked()
            self._schedule = expression
            self._next_run = next_run
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._timer_loop, args=(stop_event,), name="siterefresh-timer", daemon=True
            )
            self._stop_event = stop_event
            self._timer_thread = thread
        thread.start()
        self._persist()

        logger.info("Scheduler started with schedule: %s", expression)
        logger.info("Next scheduled run: %s", to_iso(next_run))
        return next_run

    def _cancel_timer_locked(self) -> bool:
        if self._timer_thread is None:
            return False
        if self._stop_event is not None:
            self._stop_event.set()
        self._timer_thread = None
        self._stop_event = None
        return True

    def stop(self) -> None:
        """Cancel future fires. An in-flight run is left to finish."""
        with self._guard:
            stopped = self._cancel_timer_locked()
        if stopped:
            logger.info("Scheduler stopped")

    def _timer_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            next_run = self._next_run
            if next_run is None:
                logger.warning("No next run time; timer exiting")
                return
            delay = (next_run - self._clock()).total_seconds()
            if delay > 0:
                stop_event.wait(min(delay, _MAX_TIMER_WAIT_S))
                continue

            result = self.run_updates()
            if result.skipped:
                with self._guard:
                    self._next_run = self._safe_next_run(self._clock())

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def _run_task(self, task: TaskExecutor) -> TaskOutcome:
        name = getattr(task, "name", type(task).__name__)
        logger.info("Task %s started", name)
        try:
            outcome = task.run()
        except Exception as e:
            logger.exception("Task %s crashed", name)
            self._log_event("task_crashed", task=name, error=str(e))
            return TaskOutcome.failed(error=str(e))
        if not isinstance(outcome, TaskOutcome):
            return TaskOutcome.failed(error=f"task returned {type(outcome).__name__}, expected TaskOutcome")
        logger.info("Task %s finished: %s", name, "success" if outcome.success else "failed")
        self._log_event("task_finished", task=name, success=outcome.success)
        return outcome

    def run_updates(self) -> RunResult:
        with self._guard:
            if self._record.is_running:
                logger.warning("Scheduler is already running, skipping this run")
                skipped = True
            else:
                skipped = False
                started_at = self._clock()
                self._record.is_running = True
                self._record.last_run_started_at = started_at
                self._record.last_run_finished_at = None
        if skipped:
            self._log_event("run_skipped")
            return RunResult.skipped_run()

        logger.info("Starting scheduled content update")
        self._log_event("run_started", started_at=to_iso(started_at))
        outcomes: dict[str, TaskOutcome] = {}
        finished_at: datetime | None = None
        try:
            for task in self._tasks:
                name = getattr(task, "name", type(task).__name__)
                outcome = self._run_task(task)
                outcomes[name] = outcome
                with self._guard:
                    self._record.outcomes[name] = outcome
            finished_at = self._clock()
            next_run = self._safe_next_run(finished_at)
            with self._guard:
                self._record.last_run_finished_at = finished_at
                self._next_run = next_run
        finally:
            with self._guard:
                self._record.is_running = False
            self._persist()

        result = RunResult(
            skipped=False,
            success=all(o.success for o in outcomes.values()),
            outcomes=outcomes,
            started_at=started_at,
            finished_at=finished_at,
        )
        duration_s = (finished_at - started_at).total_seconds() if finished_at else 0.0
        logger.info("Scheduled update completed in %.1f seconds: %s", duration_s, result.summary())
        self._log_event(
            "run_finished",
            success=result.success,
            succeeded=result.succeeded,
            failed=result.failed,
            duration_s=duration_s,
            next_run=to_iso(self._next_run),
        )
        return result

    def trigger(self) -> RunHandle:
        """Submit a run in the background and return immediately."""
        with self._guard:
            busy = self._record.is_running or (self._pending is not None and not self._pending.done())
            if busy:
                return RunHandle(accepted=False, reason="already running")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="siterefresh-run")
            fut = self._executor.submit(self.run_updates)
            self._pending = fut
        return RunHandle(accepted=True, future=fut)

    def shutdown(self, *, wait: bool = True) -> None:
        self.stop()
        with self._guard:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
