"""
Explicit construction of the worker's services.

Everything is built once here and passed by reference; nothing in the
package holds module-level service instances.
"""

import logging
from dataclasses import dataclass

from returnsync import config
from returnsync.clients.inbox import InboxScanner
from returnsync.clients.oauth import GmailTokenManager
from returnsync.clients.tracking import TrackingClient
from returnsync.db import DatabaseConnection
from returnsync.worker.coordinator import SyncCoordinator
from returnsync.worker.notifications import (
    LoggingNotificationDelivery,
    NotificationDelivery,
    NotificationTrigger,
    WebhookNotificationDelivery,
)
from returnsync.worker.scheduler import CloudTasksScheduler, JobScheduler
from returnsync.worker.supervisor import TaskSupervisor

logger = logging.getLogger(__name__)


@dataclass
class Services:
    connection: DatabaseConnection
    tracking_client: TrackingClient
    token_manager: GmailTokenManager
    inbox_scanner: InboxScanner
    notifier: NotificationTrigger
    coordinator: SyncCoordinator
    scheduler: JobScheduler
    supervisor: TaskSupervisor

    def start(self) -> None:
        """Open the store, load the inbox session and register the sync job."""
        self.connection.initialize()
        session = self.token_manager.load()
        logger.info(
            "Services started",
            extra={
                "json_fields": {
                    "inbox_connected": session is not None,
                    "job_id": self.supervisor.job_id,
                }
            },
        )
        self.supervisor.register()
        self.supervisor.schedule_next()

    def stop(self) -> None:
        self.connection.close()


def default_delivery() -> NotificationDelivery:
    if config.NOTIFICATION_WEBHOOK_URL:
        return WebhookNotificationDelivery(config.NOTIFICATION_WEBHOOK_URL)
    return LoggingNotificationDelivery()


def build_services(
    connection: DatabaseConnection | None = None,
    tracking_client: TrackingClient | None = None,
    token_manager: GmailTokenManager | None = None,
    inbox_scanner: InboxScanner | None = None,
    delivery: NotificationDelivery | None = None,
    scheduler: JobScheduler | None = None,
) -> Services:
    """
    Wire the worker's services, using configured defaults for anything not given.
    """
    connection = connection or DatabaseConnection()
    tracking_client = tracking_client or TrackingClient()
    token_manager = token_manager or GmailTokenManager(connection)
    inbox_scanner = inbox_scanner or InboxScanner(token_manager)
    notifier = NotificationTrigger(delivery or default_delivery())
    coordinator = SyncCoordinator(
        connection=connection,
        tracking_client=tracking_client,
        inbox_scanner=inbox_scanner,
        token_manager=token_manager,
        notifier=notifier,
    )
    scheduler = scheduler or CloudTasksScheduler()
    supervisor = TaskSupervisor(
        scheduler=scheduler,
        coordinator=coordinator,
        connection=connection,
    )

    return Services(
        connection=connection,
        tracking_client=tracking_client,
        token_manager=token_manager,
        inbox_scanner=inbox_scanner,
        notifier=notifier,
        coordinator=coordinator,
        scheduler=scheduler,
        supervisor=supervisor,
    )
