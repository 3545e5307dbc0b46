"""Notification-transition policy and notification sinks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from tokenpulse_client.models import Failure, ProviderResult, Success


class NotificationLevel(str, Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    message: str
    account_name: str


def decide_notification(
    account_name: str,
    old: ProviderResult | None,
    new: ProviderResult,
) -> Notification | None:
    """Decide whether the transition ``old -> new`` deserves a notification.

    A failure is reported when it is the first result, follows a success, or
    changes the failure kind; repeats of the same kind stay silent. A success
    following a failure is reported once as a recovery.
    """
    if isinstance(new, Failure):
        if old is None or isinstance(old, Success) or (
            isinstance(old, Failure) and old.kind != new.kind
        ):
            return Notification(
                level=NotificationLevel.ERROR,
                message=f"Failed to refresh {account_name}: {new.message}",
                account_name=account_name,
            )
        return None
    if isinstance(new, Success) and isinstance(old, Failure):
        return Notification(
            level=NotificationLevel.INFO,
            message=f"Account {account_name} is back online.",
            account_name=account_name,
        )
    return None


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None:
        """Deliver a user-facing notification."""


class LoggingNotifier:
    """Routes notifications to the ``tokenpulse.notifications`` logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("tokenpulse.notifications")

    def notify(self, notification: Notification) -> None:
        if notification.level is NotificationLevel.ERROR:
            self._logger.error(notification.message)
        else:
            self._logger.info(notification.message)


@dataclass
class RecordingNotifier:
    """Keeps every notification in memory, optionally forwarding it."""

    forward_to: Notifier | None = None
    notifications: list[Notification] = field(default_factory=list)

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self.forward_to is not None:
            self.forward_to.notify(notification)

    def messages(self) -> list[str]:
        return [notification.message for notification in self.notifications]
