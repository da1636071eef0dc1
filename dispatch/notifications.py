"""
Purpose: Fire-and-forget notification hooks for status and assignment events.
What it does:
The dispatcher tells a NotificationSink what happened; delivery (push, SMS,
inbox rows) belongs to an external service. BackgroundNotificationSink hands
every event to a worker thread so a slow or failing sink never blocks, or
breaks, a dispatch operation.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from drivers.models import Driver
from parcels.models import Parcel, StatusHistoryEntry

logger = logging.getLogger(__name__)


class NotificationSink:
    """No-op base sink."""

    def notify_status_update(self, parcel: Parcel, entry: StatusHistoryEntry) -> None:
        pass

    def notify_driver_assignment(self, driver: Driver, parcel: Parcel) -> None:
        pass

    def close(self) -> None:
        pass


class LoggingNotificationSink(NotificationSink):

    def notify_status_update(self, parcel: Parcel, entry: StatusHistoryEntry) -> None:
        logger.info(
            "Parcel %s status: %s (sender %s)",
            parcel.tracking_id, entry.status.value.replace("_", " "), parcel.sender_id,
        )

    def notify_driver_assignment(self, driver: Driver, parcel: Parcel) -> None:
        logger.info("Driver %s has been assigned parcel %s", driver.id, parcel.tracking_id)


class BackgroundNotificationSink(NotificationSink):
    """
    Runs a delegate sink on a small thread pool. Failures are logged by the
    worker, never raised to the caller.
    """

    def __init__(self, delegate: Optional[NotificationSink] = None, max_workers: int = 2):
        self.delegate = delegate or LoggingNotificationSink()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def notify_status_update(self, parcel: Parcel, entry: StatusHistoryEntry) -> None:
        self._submit(self.delegate.notify_status_update, parcel, entry)

    def notify_driver_assignment(self, driver: Driver, parcel: Parcel) -> None:
        self._submit(self.delegate.notify_driver_assignment, driver, parcel)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.delegate.close()

    def _submit(self, func, *args) -> None:
        future = self._executor.submit(func, *args)
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Notification delivery failed: %s", exc, exc_info=exc)
