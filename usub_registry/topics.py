"""
Topic registry.

Authoritative metadata per topic: publisher of record and the
notification-registration flag that gates publish-time resolution.
"""

from __future__ import annotations

import structlog

from .errors import NotFoundError
from .states import TopicRecord
from .store import SubscriptionStore

log = structlog.get_logger()


def _require(value: str, name: str) -> None:
    if not value:
        raise ValueError(f"{name} is empty")


class TopicRegistry:
    """Topic lifecycle: register, deregister, notification flag, lookups."""

    def __init__(self, store: SubscriptionStore):
        self._store = store

    async def register_topic(
        self,
        topic: str,
        publisher: str,
        *,
        details: str = "",
        notification_enabled: bool = False,
    ) -> None:
        """Create or replace the topic's metadata record (last writer wins)."""
        _require(topic, "Topic")
        _require(publisher, "Publisher")
        async with self._store.transaction() as db:
            await db.execute(
                """INSERT OR REPLACE INTO topics
                   (topic, publisher, details, notification_enabled)
                   VALUES (?, ?, ?, ?)""",
                (topic, publisher, details, int(notification_enabled)),
            )
        log.info(
            "topics.registered",
            topic=topic,
            publisher=publisher,
            notification_enabled=notification_enabled,
        )

    async def deregister_topic(self, topic: str) -> int:
        """
        Remove the topic and every membership row for it.

        Both deletes run in one transaction. Returns the number of affected
        rows across both tables.
        """
        async with self._store.transaction() as db:
            cursor = await db.execute("DELETE FROM topics WHERE topic = ?", (topic,))
            removed = cursor.rowcount
            cursor = await db.execute("DELETE FROM subscribers WHERE topic = ?", (topic,))
            removed += cursor.rowcount
        log.info("topics.deregistered", topic=topic, rows=removed)
        return removed

    async def set_notification_enabled(self, topic: str, enabled: bool) -> bool:
        """
        Update the notification flag if it differs from the stored value.

        Returns True when the stored value changed. Raises NotFoundError if
        the topic is not registered.
        """
        async with self._store.transaction() as db:
            cursor = await db.execute(
                """UPDATE topics SET notification_enabled = ?
                   WHERE topic = ? AND notification_enabled != ?""",
                (int(enabled), topic, int(enabled)),
            )
            changed = cursor.rowcount > 0
            if not changed and not await self._exists(db, topic):
                raise NotFoundError("topic", topic)
        if changed:
            log.info("topics.notification_changed", topic=topic, enabled=enabled)
        return changed

    async def get_topic(self, topic: str) -> TopicRecord | None:
        async with self._store.transaction() as db:
            cursor = await db.execute("SELECT * FROM topics WHERE topic = ?", (topic,))
            row = await cursor.fetchone()
        return TopicRecord.from_row(row) if row else None

    async def is_registered(self, topic: str) -> bool:
        async with self._store.transaction() as db:
            return await self._exists(db, topic)

    async def get_publisher(self, topic: str) -> str:
        record = await self.get_topic(topic)
        if record is None:
            raise NotFoundError("topic", topic)
        return record.publisher

    async def is_notification_enabled(self, topic: str) -> bool:
        record = await self.get_topic(topic)
        if record is None:
            raise NotFoundError("topic", topic)
        return record.notification_enabled

    async def get_publisher_if_notification_enabled(self, topic: str) -> str | None:
        """
        Publish-time gate.

        Returns the publisher when the topic is registered and enabled for
        notification, None when registered but disabled. Raises NotFoundError
        for an unregistered topic.
        """
        record = await self.get_topic(topic)
        if record is None:
            raise NotFoundError("topic", topic)
        return record.publisher if record.notification_enabled else None

    async def count_topics(self) -> int:
        async with self._store.transaction() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM topics")
            row = await cursor.fetchone()
        return row[0]

    @staticmethod
    async def _exists(db, topic: str) -> bool:
        cursor = await db.execute(
            "SELECT EXISTS(SELECT 1 FROM topics WHERE topic = ?)", (topic,)
        )
        row = await cursor.fetchone()
        return bool(row[0])
