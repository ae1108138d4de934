"""
Subscriber registry.

Membership of subscriber identities in topics. Inserts are idempotent:
a duplicate (topic, subscriber) pair is absorbed, not an error.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from .states import SubscriberRecord, encode_details
from .store import SubscriptionStore

log = structlog.get_logger()


class SubscriberRegistry:
    """Recipient sets per topic and the reverse lookup per subscriber."""

    def __init__(self, store: SubscriptionStore):
        self._store = store

    async def add_subscriber(
        self,
        topic: str,
        subscriber: str,
        *,
        details: Sequence[str] = (),
        expiry: int = 0,
        request_id: str | None = None,
    ) -> bool:
        """Insert the membership row. Returns False if it already existed."""
        if not topic:
            raise ValueError("Topic is empty")
        if not subscriber:
            raise ValueError("Subscriber is empty")
        async with self._store.transaction() as db:
            cursor = await db.execute(
                """INSERT OR IGNORE INTO subscribers
                   (topic, subscriber, details, expiry, request_id)
                   VALUES (?, ?, ?, ?, ?)""",
                (topic, subscriber, encode_details(details), expiry, request_id),
            )
            added = cursor.rowcount > 0
        if added:
            log.info("subscribers.added", topic=topic, subscriber=subscriber)
        else:
            log.debug("subscribers.duplicate_ignored", topic=topic, subscriber=subscriber)
        return added

    async def remove_subscriber(self, topic: str, subscriber: str) -> bool:
        async with self._store.transaction() as db:
            cursor = await db.execute(
                "DELETE FROM subscribers WHERE topic = ? AND subscriber = ?",
                (topic, subscriber),
            )
            removed = cursor.rowcount > 0
        if removed:
            log.info("subscribers.removed", topic=topic, subscriber=subscriber)
        return removed

    async def remove_all_for_topic(self, topic: str) -> int:
        async with self._store.transaction() as db:
            cursor = await db.execute("DELETE FROM subscribers WHERE topic = ?", (topic,))
            removed = cursor.rowcount
        log.info("subscribers.topic_cleared", topic=topic, rows=removed)
        return removed

    async def list_subscribers(self, topic: str) -> list[str]:
        async with self._store.transaction() as db:
            cursor = await db.execute(
                "SELECT subscriber FROM subscribers WHERE topic = ? ORDER BY id", (topic,)
            )
            rows = await cursor.fetchall()
        return [r["subscriber"] for r in rows]

    async def list_topics_for_subscriber(self, subscriber: str) -> list[str]:
        async with self._store.transaction() as db:
            cursor = await db.execute(
                "SELECT topic FROM subscribers WHERE subscriber = ? ORDER BY id", (subscriber,)
            )
            rows = await cursor.fetchall()
        return [r["topic"] for r in rows]

    async def first_subscriber(self, topic: str) -> SubscriberRecord | None:
        """Earliest-inserted subscriber of the topic."""
        async with self._store.transaction() as db:
            cursor = await db.execute(
                "SELECT * FROM subscribers WHERE topic = ? ORDER BY id LIMIT 1", (topic,)
            )
            row = await cursor.fetchone()
        return SubscriberRecord.from_row(row) if row else None

    async def get_subscriber(self, topic: str, subscriber: str) -> SubscriberRecord | None:
        async with self._store.transaction() as db:
            cursor = await db.execute(
                "SELECT * FROM subscribers WHERE topic = ? AND subscriber = ?",
                (topic, subscriber),
            )
            row = await cursor.fetchone()
        return SubscriberRecord.from_row(row) if row else None

    async def is_subscribed(self, topic: str, subscriber: str) -> bool:
        return await self.get_subscriber(topic, subscriber) is not None

    async def fetch_by_topic(self, topic: str) -> list[SubscriberRecord]:
        return await self._fetch("SELECT * FROM subscribers WHERE topic = ? ORDER BY id", (topic,))

    async def fetch_by_subscriber(self, subscriber: str) -> list[SubscriberRecord]:
        return await self._fetch(
            "SELECT * FROM subscribers WHERE subscriber = ? ORDER BY id", (subscriber,)
        )

    async def all_records(self) -> list[SubscriberRecord]:
        return await self._fetch("SELECT * FROM subscribers ORDER BY id", ())

    async def count_subscribers(self) -> int:
        async with self._store.transaction() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM subscribers")
            row = await cursor.fetchone()
        return row[0]

    async def _fetch(self, query: str, params: tuple) -> list[SubscriberRecord]:
        async with self._store.transaction() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [SubscriberRecord.from_row(r) for r in rows]
