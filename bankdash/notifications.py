"""
Notification Sink — where user-visible status events go.

Components report outcomes here; how they are shown is up to the host.
Two sinks ship with the package: ``NotificationLog`` keeps events in memory
(the dashboard reads from it), ``LoggingSink`` writes them to the log.
"""

from __future__ import annotations

import logging
from typing import Callable

from bankdash.models import Notification, NotificationLevel


class NotificationSink:
    """Base sink. Subclasses override ``emit``."""

    def emit(self, notification: Notification) -> None:
        raise NotImplementedError

    def notify(self, level: NotificationLevel, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        self.emit(notification)
        return notification

    def success(self, message: str) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message)

    def error(self, message: str) -> Notification:
        return self.notify(NotificationLevel.ERROR, message)

    def warning(self, message: str) -> Notification:
        return self.notify(NotificationLevel.WARNING, message)

    def info(self, message: str) -> Notification:
        return self.notify(NotificationLevel.INFO, message)


class NotificationLog(NotificationSink):
    """Keeps the most recent ``max_size`` events in arrival order."""

    def __init__(self, max_size: int = 100):
        self._max_size = max_size
        self._events: list[Notification] = []

    def emit(self, notification: Notification) -> None:
        self._events.append(notification)
        if len(self._events) > self._max_size:
            del self._events[: len(self._events) - self._max_size]

    @property
    def events(self) -> list[Notification]:
        return list(self._events)

    def of_level(self, level: NotificationLevel) -> list[Notification]:
        return [n for n in self._events if n.level == level]

    def clear(self) -> None:
        self._events.clear()


_LOG_LEVELS = {
    NotificationLevel.SUCCESS: logging.INFO,
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ERROR: logging.ERROR,
}


class LoggingSink(NotificationSink):
    def __init__(self, name: str = "bankdash.notifications"):
        self._logger = logging.getLogger(name)

    def emit(self, notification: Notification) -> None:
        self._logger.log(
            _LOG_LEVELS[notification.level], "[%s] %s",
            notification.level.value, notification.message,
        )


class CallbackSink(NotificationSink):
    """Forwards every event to a callable, e.g. a UI toast."""

    def __init__(self, callback: Callable[[Notification], None]):
        self._callback = callback

    def emit(self, notification: Notification) -> None:
        self._callback(notification)
