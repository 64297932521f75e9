"""Fire-and-forget notification sinks."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(self, topic: str, payload: Mapping[str, Any]) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: records notifications in the log only."""

    def notify(self, topic: str, payload: Mapping[str, Any]) -> None:
        logger.debug(f"Notification {topic}: {dict(payload)}")


def publish(sink: NotificationSink, topic: str, payload: Mapping[str, Any]) -> None:
    """Deliver a notification without letting sink failures reach the caller."""

    try:
        sink.notify(topic, payload)
    except Exception as exc:
        logger.error(f"Notification sink failed for {topic}: {exc}")


__all__ = ["NotificationSink", "LoggingNotificationSink", "publish"]
