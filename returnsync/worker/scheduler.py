"""
Recurring job registration against the host.

A JobScheduler maps stable job ids to handlers and asks the host for the
next execution grant. At most one request is pending per job id:
scheduling again replaces whatever was pending.
"""

import json
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable

from google.api_core import exceptions as gcp_exceptions
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from returnsync import config
from returnsync.errors import SchedulingDenied
from returnsync.models.task import SyncRefreshTask

logger = logging.getLogger(__name__)

GRANT_ENDPOINT = "/tasks/sync-refresh"
# Grant ids remembered for de-duplication, oldest forgotten first
MAX_REMEMBERED_GRANTS = 256

JobHandler = Callable[[SyncRefreshTask], Awaitable[Any]]


class JobScheduler:
    """
    Base scheduler: handler registry and grant de-duplication.

    Subclasses implement ``schedule_next`` against a concrete host.
    """

    def __init__(self, max_remembered_grants: int = MAX_REMEMBERED_GRANTS):
        self._handlers: dict[str, JobHandler] = {}
        self._handled_grants: set[str] = set()
        self._grant_order: deque[str] = deque()
        self.max_remembered_grants = max_remembered_grants

    def register(self, job_id: str, handler: JobHandler) -> None:
        """Install the handler the host invokes for ``job_id``."""
        self._handlers[job_id] = handler
        logger.info("Registered job handler", extra={"json_fields": {"job_id": job_id}})

    def is_registered(self, job_id: str) -> bool:
        return job_id in self._handlers

    def schedule_next(self, job_id: str, not_before: datetime) -> str:
        """
        Request the next grant for ``job_id``, cancelling any pending one.

        Returns:
            Host identifier of the pending request

        Raises:
            SchedulingDenied: If the host refuses the request
        """
        raise NotImplementedError

    async def invoke(
        self, task: SyncRefreshTask, grant_id: str | None = None
    ) -> tuple[bool, Any]:
        """
        Run the registered handler for one grant.

        A grant id already handled is not run again, among the most recent
        ``max_remembered_grants`` ids.

        Returns:
            (ran, handler result)

        Raises:
            KeyError: If no handler is registered for the job id
        """
        handler = self._handlers.get(task.job_id)
        if handler is None:
            raise KeyError(task.job_id)

        if grant_id is not None:
            if grant_id in self._handled_grants:
                logger.info(
                    "Ignoring repeated grant",
                    extra={"json_fields": {"job_id": task.job_id, "grant_id": grant_id}},
                )
                return False, None
            self._remember_grant(grant_id)

        return True, await handler(task)

    def _remember_grant(self, grant_id: str) -> None:
        self._handled_grants.add(grant_id)
        self._grant_order.append(grant_id)
        while len(self._grant_order) > self.max_remembered_grants:
            self._handled_grants.discard(self._grant_order.popleft())


class CloudTasksScheduler(JobScheduler):
    """Schedules grants as delayed Cloud Tasks targeting the worker service."""

    def __init__(
        self,
        project_id: str | None = None,
        location: str | None = None,
        queue_name: str | None = None,
        worker_url: str | None = None,
        service_account: str | None = None,
        client: tasks_v2.CloudTasksClient | None = None,
    ):
        super().__init__()
        self.project_id = project_id if project_id is not None else config.PROJECT_ID
        self.location = location or config.LOCATION
        self.queue_name = queue_name or config.QUEUE_NAME
        self.worker_url = (worker_url or config.WORKER_SERVICE_URL).rstrip("/")
        self.service_account = (
            service_account
            if service_account is not None
            else config.SERVICE_ACCOUNT_EMAIL
        )
        self._client = client

    @property
    def is_local(self) -> bool:
        return not self.project_id

    @property
    def client(self) -> tasks_v2.CloudTasksClient:
        if self._client is None:
            self._client = tasks_v2.CloudTasksClient()
        return self._client

    def schedule_next(self, job_id: str, not_before: datetime) -> str:
        payload = SyncRefreshTask(job_id=job_id, not_before=not_before)
        payload_bytes = json.dumps(payload.model_dump(mode="json")).encode("utf-8")
        task_id = f"{job_id}-{int(not_before.timestamp())}"

        # Local development mode - skip actual task creation
        if self.is_local:
            logger.info(
                "[LOCAL] Would schedule task",
                extra={
                    "json_fields": {
                        "task_id": task_id,
                        "endpoint": GRANT_ENDPOINT,
                        "not_before": not_before.isoformat(),
                    }
                },
            )
            return f"local-task/{task_id}"

        queue_path = self.client.queue_path(
            self.project_id, self.location, self.queue_name
        )

        try:
            self._cancel_pending(queue_path, job_id)
            response = self.client.create_task(
                request=tasks_v2.CreateTaskRequest(
                    parent=queue_path,
                    task=self._build_task(queue_path, task_id, payload_bytes, not_before),
                )
            )
        except gcp_exceptions.GoogleAPIError as e:
            logger.exception(
                "Cloud Tasks scheduling failed",
                extra={
                    "json_fields": {
                        "task_id": task_id,
                        "queue_path": queue_path,
                        "worker_url": self.worker_url,
                    }
                },
            )
            raise SchedulingDenied(f"Cloud Tasks refused {task_id}: {e}") from e

        logger.info(
            "Scheduled next grant",
            extra={
                "json_fields": {
                    "task_name": response.name,
                    "not_before": not_before.isoformat(),
                }
            },
        )
        return response.name

    def _cancel_pending(self, queue_path: str, job_id: str) -> None:
        prefix = f"{queue_path}/tasks/{job_id}-"
        for task in self.client.list_tasks(parent=queue_path):
            if not task.name.startswith(prefix):
                continue
            try:
                self.client.delete_task(name=task.name)
            except gcp_exceptions.NotFound:
                # Already dispatched or deleted
                continue
            logger.info(
                "Cancelled pending grant",
                extra={"json_fields": {"task_name": task.name}},
            )

    def _build_task(
        self,
        queue_path: str,
        task_id: str,
        payload_bytes: bytes,
        not_before: datetime,
    ) -> tasks_v2.Task:
        # Build OIDC token for authenticated Cloud Run services
        oidc_token = None
        if self.worker_url.startswith("https://") and self.service_account:
            oidc_token = tasks_v2.OidcToken(
                service_account_email=self.service_account,
                audience=self.worker_url,
            )

        http_request = tasks_v2.HttpRequest(
            http_method=tasks_v2.HttpMethod.POST,
            url=f"{self.worker_url}{GRANT_ENDPOINT}",
            headers={"Content-Type": "application/json"},
            body=payload_bytes,
            oidc_token=oidc_token,
        )

        schedule_time = timestamp_pb2.Timestamp()
        schedule_time.FromDatetime(not_before)

        return tasks_v2.Task(
            name=f"{queue_path}/tasks/{task_id}",
            http_request=http_request,
            schedule_time=schedule_time,
        )
