"""
Sync coordinator.

Fans out the tracking refresh and the inbox scan as two concurrent subtasks,
joins them against the run deadline and merges their results into the store.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from returnsync import config
from returnsync.clients.inbox import InboxScanner
from returnsync.clients.oauth import GmailTokenManager
from returnsync.clients.tracking import TrackingClient
from returnsync.db import DatabaseConnection, UnitOfWork
from returnsync.db.repositories import SeenReason
from returnsync.errors import AuthError, DeadlineExceeded, SyncError
from returnsync.models.candidate import CandidateReturn
from returnsync.models.item import (
    RefundStatus,
    TrackedItem,
    TrackingInfo,
    TrackingStatus,
)
from returnsync.models.sync import RunResult, SubtaskName, SubtaskOutcome, SyncRun
from returnsync.worker.notifications import (
    DeadlineWarning,
    NotificationTrigger,
    deadline_identifier,
    due_deadline_warning,
)

logger = logging.getLogger(__name__)


def apply_tracking(
    item: TrackedItem, info: TrackingInfo, synced_at: datetime
) -> TrackedItem:
    """
    Merge a fetched tracking snapshot into an item.

    Only tracking fields change, plus shipped -> received on delivery.
    """
    item.tracking_info = info
    item.last_synced_at = synced_at
    if (
        info.status == TrackingStatus.DELIVERED
        and item.refund_status == RefundStatus.SHIPPED
    ):
        item.refund_status = RefundStatus.RECEIVED
    return item


def _consume_late_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Abandoned subtask %s failed late: %s", task.get_name(), exc)
    else:
        logger.warning("Abandoned subtask %s finished after the deadline", task.get_name())


class SyncCoordinator:
    """
    Runs one sync across both external sources.

    All merges go through a single lock and are dropped once the run has
    been closed, so nothing is written after the run reported its outcome.
    Alert delivery runs in worker threads, off the event loop.
    """

    def __init__(
        self,
        connection: DatabaseConnection,
        tracking_client: TrackingClient,
        inbox_scanner: InboxScanner,
        token_manager: GmailTokenManager,
        notifier: NotificationTrigger,
        tracking_concurrency: int | None = None,
        deadline_warning_days: list[int] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.connection = connection
        self.tracking_client = tracking_client
        self.inbox_scanner = inbox_scanner
        self.token_manager = token_manager
        self.notifier = notifier
        self.tracking_concurrency = tracking_concurrency or config.TRACKING_CONCURRENCY
        self.deadline_warning_days = (
            deadline_warning_days
            if deadline_warning_days is not None
            else config.DEADLINE_WARNING_DAYS
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._merge_lock = asyncio.Lock()

    async def run(
        self,
        items: list[TrackedItem],
        deadline: datetime,
        run: SyncRun | None = None,
    ) -> RunResult:
        """
        Run both subtasks and wait for them or the deadline, whichever is first.

        Args:
            items: Snapshot of the tracked items
            deadline: Absolute deadline shared by both subtasks
            run: Run handle; created if not given

        Returns:
            RunResult with per-subtask outcomes
        """
        run = run or SyncRun(started_at=self._clock(), deadline=deadline)
        timeout = max(0.0, (deadline - self._clock()).total_seconds())

        tracking_task = asyncio.create_task(
            self.refresh_tracking(items, run), name=SubtaskName.TRACKING.value
        )
        inbox_task = asyncio.create_task(
            self.scan_inbox(run), name=SubtaskName.INBOX.value
        )

        _, pending = await asyncio.wait({tracking_task, inbox_task}, timeout=timeout)

        timed_out = bool(pending)
        if timed_out:
            error = DeadlineExceeded(f"Run {run.id} reached its deadline")
            run.close(str(error))
            logger.error(
                "Sync run deadline reached, abandoning subtasks",
                extra={
                    "json_fields": {
                        "run_id": run.id,
                        "pending": sorted(task.get_name() for task in pending),
                    }
                },
            )
            for task in pending:
                task.add_done_callback(_consume_late_result)

        tracking = self._outcome(tracking_task, SubtaskName.TRACKING)
        inbox = self._outcome(inbox_task, SubtaskName.INBOX)

        result = RunResult(
            run_id=run.id,
            success=tracking.success and inbox.success and not timed_out,
            timed_out=timed_out,
            tracking=tracking,
            inbox=inbox,
            finished_at=self._clock(),
        )
        logger.info(
            "Sync run finished",
            extra={
                "json_fields": {
                    "run_id": run.id,
                    "success": result.success,
                    "timed_out": timed_out,
                    "items_updated": tracking.items_updated,
                    "items_failed": tracking.items_failed,
                    "deadline_warnings": tracking.deadline_warnings,
                    "candidates": len(inbox.candidates),
                    "new_candidates": inbox.new_candidates,
                }
            },
        )
        return result

    def _outcome(self, task: asyncio.Task, name: SubtaskName) -> SubtaskOutcome:
        if not task.done():
            return SubtaskOutcome(
                name=name, success=False, timed_out=True, error="Deadline exceeded"
            )
        exc = task.exception()
        if exc is not None:
            logger.error("Subtask %s failed", name.value, exc_info=exc)
            return SubtaskOutcome(name=name, success=False, error=str(exc))
        return task.result()

    async def refresh_tracking(
        self, items: list[TrackedItem], run: SyncRun
    ) -> SubtaskOutcome:
        """
        Fetch tracking for every eligible item and merge each result as it lands.

        A failed fetch leaves its item unchanged. The subtask only fails when
        every fetch failed. Return deadline warnings go out afterwards.
        """
        eligible = [item for item in items if item.needs_tracking_refresh]
        outcome = SubtaskOutcome(name=SubtaskName.TRACKING, items_attempted=len(eligible))
        if eligible:
            await self._refresh_eligible(eligible, run, outcome)
            if outcome.items_failed == len(eligible):
                outcome.success = False
                outcome.error = "All tracking refreshes failed"

        outcome.deadline_warnings = await self.warn_deadlines(items, run)
        return outcome

    async def _refresh_eligible(
        self, eligible: list[TrackedItem], run: SyncRun, outcome: SubtaskOutcome
    ) -> None:
        semaphore = asyncio.Semaphore(self.tracking_concurrency)

        async def refresh_one(item: TrackedItem) -> None:
            async with semaphore:
                if run.closed:
                    return
                try:
                    info = await asyncio.to_thread(
                        self.tracking_client.fetch, item.tracking_number
                    )
                except Exception as e:
                    outcome.items_failed += 1
                    logger.warning(
                        "Tracking refresh failed for item %s: %s",
                        item.id,
                        e,
                        extra={"json_fields": {"run_id": run.id, "item_id": item.id}},
                    )
                    return

            await self._merge_tracking(item.id, info, run, outcome)

        await asyncio.gather(*(refresh_one(item) for item in eligible))

    async def warn_deadlines(self, items: list[TrackedItem], run: SyncRun) -> int:
        """
        Alert on pending returns whose deadline reached a warning mark.

        Each (item, mark) pair is recorded in the sent-alert ledger before
        delivery and never alerts again.

        Returns:
            Number of warnings sent
        """
        now = self._clock()
        due: list[tuple[TrackedItem, DeadlineWarning]] = []
        for item in items:
            warning = due_deadline_warning(item, now, self.deadline_warning_days)
            if warning is not None:
                due.append((item, warning))
        if not due:
            return 0

        async with self._merge_lock:
            if run.closed:
                return 0

            with UnitOfWork(self.connection) as uow:
                sent = uow.sent_alerts.sent_among(
                    deadline_identifier(item.id, warning.threshold) for item, warning in due
                )
                due = [
                    (item, warning)
                    for item, warning in due
                    if deadline_identifier(item.id, warning.threshold) not in sent
                ]
                if due:
                    uow.sent_alerts.mark_many(
                        deadline_identifier(item.id, warning.threshold)
                        for item, warning in due
                    )
                    uow.commit()

        for item, warning in due:
            await asyncio.to_thread(self.notifier.on_deadline_approaching, item, warning)
        return len(due)

    async def _merge_tracking(
        self,
        item_id: str,
        info: TrackingInfo,
        run: SyncRun,
        outcome: SubtaskOutcome,
    ) -> None:
        async with self._merge_lock:
            if run.closed:
                logger.warning(
                    "Discarding late tracking result",
                    extra={"json_fields": {"run_id": run.id, "item_id": item_id}},
                )
                return

            synced_at = self._clock()
            with UnitOfWork(self.connection) as uow:
                change = uow.items.update(
                    item_id, lambda item: apply_tracking(item, info, synced_at)
                )
                uow.commit()

        if change is None:
            # Item deleted since the run started
            return

        previous, updated = change
        outcome.items_updated += 1
        sent = await asyncio.to_thread(
            self.notifier.on_tracking_transition,
            updated,
            previous.tracking_status,
            info.status,
        )
        if sent is not None:
            outcome.transitions += 1

    async def scan_inbox(self, run: SyncRun) -> SubtaskOutcome:
        """
        Scan the inbox and filter the result against the seen-set.

        Skipped, and successful, when no inbox account is connected.
        """
        if not self.token_manager.is_authenticated:
            return SubtaskOutcome.skipped_success(SubtaskName.INBOX)

        try:
            candidates = await asyncio.to_thread(self.inbox_scanner.scan)
        except AuthError as e:
            logger.warning("Inbox scan not authorized: %s", e)
            return SubtaskOutcome(name=SubtaskName.INBOX, success=False, error=str(e))
        except SyncError as e:
            logger.warning("Inbox scan failed: %s", e)
            return SubtaskOutcome(name=SubtaskName.INBOX, success=False, error=str(e))

        return await self._merge_candidates(candidates, run)

    async def _merge_candidates(
        self, candidates: list[CandidateReturn], run: SyncRun
    ) -> SubtaskOutcome:
        async with self._merge_lock:
            if run.closed:
                logger.warning(
                    "Discarding late inbox result",
                    extra={"json_fields": {"run_id": run.id, "candidates": len(candidates)}},
                )
                return SubtaskOutcome(
                    name=SubtaskName.INBOX, success=False, timed_out=True
                )

            with UnitOfWork(self.connection) as uow:
                excluded = uow.seen_messages.excluded_ids()
                notified = uow.seen_messages.notified_ids()

                visible: dict[str, CandidateReturn] = {}
                for candidate in candidates:
                    if candidate.email_id in excluded:
                        continue
                    visible.setdefault(candidate.email_id, candidate)

                new_ids = [email_id for email_id in visible if email_id not in notified]
                if new_ids:
                    uow.seen_messages.mark_many(new_ids, SeenReason.NOTIFIED)
                    uow.commit()

        if new_ids:
            await asyncio.to_thread(self.notifier.on_candidates_found, len(new_ids))

        return SubtaskOutcome(
            name=SubtaskName.INBOX,
            candidates=list(visible.values()),
            new_candidates=len(new_ids),
        )
