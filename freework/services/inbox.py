"""Per-conversation message history fed by the realtime channel."""

import bisect
from typing import Callable

import structlog

from freework.models.message import Message, MessageNotification
from freework.services.broadcast import StateBroadcast
from freework.services.realtime_channel import RealtimeChannel

logger = structlog.get_logger(__name__)


class Inbox:
    """Append-only message lists keyed by conversation, plus the unread total.

    Messages are kept in timestamp order and deduplicated by id; a message
    delivered both as MESSAGE and inside a NOTIFICATION is stored once.
    """

    def __init__(self, channel: RealtimeChannel):
        self.unread_count: StateBroadcast[int] = StateBroadcast("unread_count", 0)
        self._conversations: dict[str, list[Message]] = {}
        self._seen_ids: set[str] = set()
        self._unsubscribers: list[Callable[[], None]] = [
            channel.messages.subscribe(self.add_message),
            channel.notifications.subscribe(self._on_notification),
        ]

    def add_message(self, message: Message) -> bool:
        """Store a message.

        Returns:
            False if a message with the same id was already stored
        """
        if message.id is not None:
            if message.id in self._seen_ids:
                logger.debug("inbox_duplicate_message", message_id=message.id)
                return False
            self._seen_ids.add(message.id)

        history = self._conversations.setdefault(message.conversation_id, [])
        bisect.insort_right(history, message, key=lambda m: m.timestamp)
        return True

    def messages(self, conversation_id: str) -> list[Message]:
        return list(self._conversations.get(conversation_id, []))

    def conversation_ids(self) -> list[str]:
        return list(self._conversations)

    def set_unread_count(self, count: int) -> None:
        self.unread_count.publish(max(0, count))

    def clear(self) -> None:
        """Forget everything (used on logout)."""
        self._conversations.clear()
        self._seen_ids.clear()
        self.set_unread_count(0)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _on_notification(self, notification: MessageNotification) -> None:
        self.add_message(notification.message)
        self.set_unread_count(notification.total_unread)
