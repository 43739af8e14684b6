"""Per-channel dispatch loop draining the notification queue."""

import threading
from typing import Callable, Dict, Optional

from .constants import DEFAULT_DISPATCH_INTERVAL_SECS, DEFAULT_LIST_RETRY_SECS
from .errors import StoreError
from .logging import get_logger
from .notification_queue import NotificationQueue, Target
from .publishers import Publisher

logger = get_logger(__name__)


class ChannelDispatcher:
    """Publishes one target's pending notifications and deletes delivered rows.

    Each dispatcher only touches rows of its own target. Failed publishes are
    left in the queue and retried on the next tick; there is no per-item
    backoff.
    """

    def __init__(
        self,
        target: Target,
        queue: NotificationQueue,
        publisher: Publisher,
        interval_secs: int = DEFAULT_DISPATCH_INTERVAL_SECS,
        list_retry_secs: int = DEFAULT_LIST_RETRY_SECS,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ):
        self.target = Target(target)
        self.queue = queue
        self.publisher = publisher
        self.interval_secs = interval_secs
        self.list_retry_secs = list_retry_secs
        self._stop_event = threading.Event()
        self._sleep_fn = sleep_fn or self._stop_event.wait
        self.metrics = {"sent": 0, "failed": 0}

    def run_once(self) -> Dict:
        """
        Attempt delivery of every pending notification once.

        Returns:
            Dictionary with sent and failed counts

        Raises:
            StoreError: If pending notifications cannot be listed
        """
        logger.debug(f"Process pending {self.target} notifications")
        notifications = self.queue.list_pending(self.target)

        sent = failed = 0
        for notification in notifications:
            try:
                published = self.publisher.publish(notification)
            except Exception as e:
                logger.error(
                    f"Publishing {self.target} notification {notification.id} raised: {e}",
                    exc_info=True
                )
                published = False

            if not published:
                failed += 1
                logger.error(f"Impossible to send {self.target} notification {notification.id}")
                continue

            sent += 1
            logger.info(f"Sent {self.target} notification: {notification.plain_text}")
            try:
                self.queue.delete(notification.id)
                logger.debug(f"Notification {notification.id} deleted")
            except StoreError as e:
                logger.error(f"Impossible to delete notification {notification.id}: {e}")

        self.metrics["sent"] += sent
        self.metrics["failed"] += failed
        return {"target": self.target.value, "sent": sent, "failed": failed}

    def run_continuous(self):
        """Dispatch loop; runs until stop() is called."""
        logger.info(f"{self.target} dispatcher started")
        self.publisher.start()

        while not self._stop_event.is_set():
            try:
                self.run_once()
            except StoreError as e:
                logger.error(f"Impossible to get {self.target} notifications from db: {e}")
                self._sleep_fn(self.list_retry_secs)
                continue

            logger.debug("Wait for new notifications")
            self._sleep_fn(self.interval_secs)

        self.publisher.close()
        logger.info(f"{self.target} dispatcher stopped")

    def stop(self):
        self._stop_event.set()
