"""
Task supervisor.

Handles host execution grants: reschedules the next grant, runs the
coordinator under a safety deadline stricter than the host's, and signals
completion exactly once.
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Callable

from returnsync import config
from returnsync.db import DatabaseConnection, UnitOfWork
from returnsync.errors import DeadlineExceeded, SchedulingDenied
from returnsync.models.item import TrackedItem
from returnsync.models.sync import RunResult, SubtaskName, SubtaskOutcome, SyncRun
from returnsync.models.task import SyncRefreshTask
from returnsync.worker.coordinator import SyncCoordinator
from returnsync.worker.scheduler import JobScheduler

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[bool], None]


class CompletionSignal:
    """One-shot success/failure signal. Only the first ``fire`` counts."""

    def __init__(self, callback: CompletionCallback | None = None):
        self._callback = callback
        self._lock = threading.Lock()
        self._fired = False
        self.success: bool | None = None

    @property
    def fired(self) -> bool:
        return self._fired

    def fire(self, success: bool) -> bool:
        """
        Signal completion.

        Returns:
            True if this call delivered the signal, False if it was already fired
        """
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            self.success = success

        if self._callback is not None:
            try:
                self._callback(success)
            except Exception:
                logger.exception("Completion callback failed")
        return True


class TaskSupervisor:
    """
    Owns the recurring sync job.

    At most one run is active at a time. A run abandoned at its safety
    deadline no longer counts as active, its late writes are suppressed by
    the coordinator.
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        coordinator: SyncCoordinator,
        connection: DatabaseConnection,
        job_id: str | None = None,
        interval: timedelta | None = None,
        grant: timedelta | None = None,
        safety_margin: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.scheduler = scheduler
        self.coordinator = coordinator
        self.connection = connection
        self.job_id = job_id or config.SYNC_JOB_ID
        self.interval = interval or timedelta(minutes=config.SYNC_INTERVAL_MINUTES)
        self.grant = grant or timedelta(seconds=config.SYNC_GRANT_SECONDS)
        self.safety_margin = (
            safety_margin
            if safety_margin is not None
            else timedelta(seconds=config.SYNC_SAFETY_MARGIN_SECONDS)
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._active: SyncRun | None = None
        self._scheduling: set[asyncio.Task] = set()
        self.schedule_pending = False

    @property
    def active_run(self) -> SyncRun | None:
        run = self._active
        if run is None or run.closed:
            return None
        return run

    def register(self) -> None:
        self.scheduler.register(self.job_id, self.on_grant)

    def schedule_next(self) -> bool:
        """
        Request the next grant.

        A refusal is logged and retried at the next opportunity.
        """
        not_before = self._clock() + self.interval
        try:
            self.scheduler.schedule_next(self.job_id, not_before)
        except SchedulingDenied as e:
            self.schedule_pending = True
            logger.warning(
                "Host refused next grant, will retry: %s",
                e,
                extra={"json_fields": {"job_id": self.job_id}},
            )
            return False

        self.schedule_pending = False
        return True

    async def on_grant(self, task: SyncRefreshTask) -> RunResult | None:
        """Scheduler entry point for one execution grant."""
        grant = (
            timedelta(seconds=task.grant_seconds) if task.grant_seconds else self.grant
        )
        return await self.handle(self._clock() + grant)

    async def handle(
        self,
        deadline: datetime,
        on_complete: CompletionCallback | None = None,
    ) -> RunResult | None:
        """
        Run one sync within an execution grant ending at ``deadline``.

        Args:
            deadline: Host deadline for this grant
            on_complete: Called exactly once with the run's success

        Returns:
            RunResult, or None if the grant was refused because a run is active
        """
        if self.active_run is not None:
            logger.warning(
                "Sync run already in progress, refusing grant",
                extra={"json_fields": {"active_run_id": self._active.id}},
            )
            return None

        safety_deadline = deadline - self.safety_margin
        run = SyncRun(started_at=self._clock(), deadline=safety_deadline)
        self._active = run
        signal = CompletionSignal(on_complete)

        # Continuity first, even if this run fails
        await self._request_next_grant(safety_deadline)

        logger.info(
            "Sync run started",
            extra={
                "json_fields": {
                    "run_id": run.id,
                    "deadline": deadline.isoformat(),
                    "safety_deadline": safety_deadline.isoformat(),
                }
            },
        )

        try:
            items = self._load_items()
        except Exception:
            logger.exception("Failed to load tracked items", extra={"json_fields": {"run_id": run.id}})
            run.close("load failed")
            self._active = None
            signal.fire(False)
            return self._failed_result(run, "Failed to load tracked items")

        coordinator_task = asyncio.create_task(
            self.coordinator.run(items, safety_deadline, run)
        )
        coordinator_task.add_done_callback(
            partial(self._on_coordinator_done, run, signal)
        )

        done, _ = await asyncio.wait(
            {coordinator_task}, timeout=self._remaining(safety_deadline)
        )

        if done:
            result = self._result_of(coordinator_task, run)
        else:
            error = DeadlineExceeded(f"Run {run.id} exceeded its safety deadline")
            run.close(str(error))
            logger.error(
                "Sync run hit safety deadline",
                extra={"json_fields": {"run_id": run.id}},
            )
            signal.fire(False)
            result = self._failed_result(run, str(error), timed_out=True)

        if self.schedule_pending:
            await self._request_next_grant(safety_deadline)
        return result

    async def _request_next_grant(self, deadline: datetime) -> None:
        """
        Call ``schedule_next`` in a worker thread, waiting at most until ``deadline``.

        A request still in flight at the deadline finishes in the background.
        """
        task = asyncio.create_task(
            asyncio.to_thread(self.schedule_next), name="schedule-next"
        )
        self._scheduling.add(task)
        task.add_done_callback(self._on_scheduling_done)
        await asyncio.wait({task}, timeout=self._remaining(deadline))

    def _on_scheduling_done(self, task: asyncio.Task) -> None:
        self._scheduling.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error(
                "Scheduling next grant failed",
                exc_info=task.exception(),
                extra={"json_fields": {"job_id": self.job_id}},
            )

    def _remaining(self, deadline: datetime) -> float:
        return max(0.0, (deadline - self._clock()).total_seconds())

    def _load_items(self) -> list[TrackedItem]:
        with UnitOfWork(self.connection) as uow:
            return uow.items.load_all()

    def _on_coordinator_done(
        self, run: SyncRun, signal: CompletionSignal, task: asyncio.Task
    ) -> None:
        if self._active is run:
            self._active = None

        if task.cancelled():
            success = False
        elif task.exception() is not None:
            logger.error(
                "Sync coordinator crashed",
                exc_info=task.exception(),
                extra={"json_fields": {"run_id": run.id}},
            )
            success = False
        else:
            success = task.result().success

        if not signal.fire(success):
            logger.warning(
                "Late run completion ignored",
                extra={"json_fields": {"run_id": run.id, "success": success}},
            )

    def _result_of(self, task: asyncio.Task, run: SyncRun) -> RunResult:
        if task.cancelled() or task.exception() is not None:
            return self._failed_result(run, "Sync coordinator crashed")
        return task.result()

    def _failed_result(
        self, run: SyncRun, error: str, timed_out: bool = False
    ) -> RunResult:
        return RunResult(
            run_id=run.id,
            success=False,
            timed_out=timed_out,
            tracking=SubtaskOutcome(
                name=SubtaskName.TRACKING, success=False, timed_out=timed_out, error=error
            ),
            inbox=SubtaskOutcome(
                name=SubtaskName.INBOX, success=False, timed_out=timed_out, error=error
            ),
            finished_at=self._clock(),
        )
