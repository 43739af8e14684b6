"""Durable, content-addressed notification mailbox per delivery target."""

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import List

from .logging import get_logger
from .storage import NOTIFICATION_NAMESPACE, Storage

logger = get_logger(__name__)

NOTIFICATION_ID_LENGTH = 32


class Target(str, Enum):
    NTFY = "ntfy"
    NOSTR = "nostr"
    MATRIX = "matrix"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Notification:
    id: str
    target: Target
    plain_text: str
    html: str


def notification_id(target: Target, plain_text: str, html: str) -> str:
    """Deterministic identity: truncated sha512 of the notification content."""
    digest = hashlib.sha512(f"{Target(target)}:{plain_text}:{html}".encode("utf-8")).hexdigest()
    return digest[:NOTIFICATION_ID_LENGTH]


class NotificationQueue:
    """Pending notifications keyed by content hash.

    Re-enqueueing identical content writes the same row again, so a block
    re-evaluated after a crash never duplicates entries. Listing has no
    ordering guarantee.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def enqueue(self, target: Target, plain_text: str, html: str) -> str:
        """
        Queue a notification for one target.

        Returns:
            Notification id

        Raises:
            StoreError: If the row could not be written
        """
        target = Target(target)
        key = notification_id(target, plain_text, html)
        value = json.dumps({"target": target.value, "plain_text": plain_text, "html": html})
        self.storage.put(NOTIFICATION_NAMESPACE, key, value)
        return key

    def list_pending(self, target: Target) -> List[Notification]:
        """
        Return every undeleted notification for a target.

        Rows that cannot be decoded are logged and skipped; they stay in the
        store untouched.

        Raises:
            StoreError: If the store cannot be read
        """
        target = Target(target)
        pending = []
        for key, raw in self.storage.items(NOTIFICATION_NAMESPACE).items():
            try:
                record = json.loads(raw)
                notification = Notification(
                    id=key,
                    target=Target(record["target"]),
                    plain_text=str(record["plain_text"]),
                    html=str(record["html"]),
                )
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Skipping undecodable notification {key}: {e!r}")
                continue
            if notification.target == target:
                pending.append(notification)
        return pending

    def delete(self, notification_id: str) -> None:
        """Remove a notification; unknown ids are ignored."""
        self.storage.delete(NOTIFICATION_NAMESPACE, notification_id)
