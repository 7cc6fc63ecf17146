"""Notification sink backed by the content store."""

from __future__ import annotations

import logging

from tale_graph.core.clock import Clock, to_utc_iso, utc_now
from tale_graph.domain.models import NotificationType, StoredNotification
from tale_graph.domain.ports import ContentStore

logger = logging.getLogger(__name__)


class StoreNotificationSink:
    """Stores notifications for later reading; users are never told about their own actions."""

    def __init__(self, content: ContentStore, *, clock: Clock = utc_now) -> None:
        self._content = content
        self._clock = clock

    def notify(
        self,
        *,
        recipient_id: str,
        notification_type: NotificationType,
        message: str,
        related_tale_id: str | None,
        triggered_by_id: str,
        triggered_by_name: str,
    ) -> bool:
        if recipient_id == triggered_by_id:
            return False
        stored = self._content.insert_notification(
            user_id=recipient_id,
            notification_type=notification_type,
            message=message,
            related_tale_id=related_tale_id,
            triggered_by_id=triggered_by_id,
            triggered_by_name=triggered_by_name,
            created_at_utc=to_utc_iso(self._clock()),
        )
        logger.debug(
            "notification.stored id=%s recipient=%s type=%s",
            stored.notification_id,
            recipient_id,
            notification_type.value,
        )
        return True

    def list_unread(self, *, user_id: str) -> list[StoredNotification]:
        return self._content.list_unread_notifications(user_id=user_id)

    def mark_read(self, *, notification_id: str, user_id: str) -> bool:
        return self._content.mark_notification_read(
            notification_id=notification_id, user_id=user_id
        )

    def mark_all_read(self, *, user_id: str) -> int:
        return self._content.mark_all_notifications_read(user_id=user_id)
