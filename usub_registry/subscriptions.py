"""
Subscription state machine.

One state record per topic, negotiated with a remote subscription
authority. Requests persist an optimistic state immediately; confirmations
and denials from the authority resolve it later. Transitions that are not
valid for the current state raise InvalidTransitionError and leave the
stored record untouched.

Membership rows are never written here: callers that confirm a subscribe
must add the subscriber themselves (see ``SubscriptionRegistry``).
"""

from __future__ import annotations

import aiosqlite
import structlog

from .errors import InvalidTransitionError, NotFoundError
from .states import (
    EFFECTIVELY_SUBSCRIBED_CODES,
    PENDING_CODES,
    SubscriptionRecord,
    SubscriptionState,
    is_valid_transition,
)
from .store import SubscriptionStore

log = structlog.get_logger()

# Resolution of a pending state by the authority: (confirmed, denied)
_RESOLUTIONS: dict[SubscriptionState, tuple[SubscriptionState, SubscriptionState]] = {
    SubscriptionState.SUBSCRIBE_PENDING: (
        SubscriptionState.SUBSCRIBED,
        SubscriptionState.UNSUBSCRIBED,
    ),
    SubscriptionState.UNSUBSCRIBE_PENDING: (
        SubscriptionState.UNSUBSCRIBED,
        SubscriptionState.SUBSCRIBED,
    ),
}


class SubscriptionStateMachine:
    """Per-topic subscription lifecycle, correlated by request id."""

    def __init__(self, store: SubscriptionStore):
        self._store = store

    # --- Requests ---

    async def request_subscribe(self, topic: str, request_id: str) -> None:
        """
        Record an outgoing subscribe request as SUBSCRIBE_PENDING.

        Valid from UNSUBSCRIBED (including no record) or DEPRECATED. The
        topic must be registered.
        """
        if not request_id:
            raise ValueError("Request id is empty")
        async with self._store.transaction() as db:
            cursor = await db.execute(
                "SELECT EXISTS(SELECT 1 FROM topics WHERE topic = ?)", (topic,)
            )
            row = await cursor.fetchone()
            if not row[0]:
                raise NotFoundError("topic", topic)
            current = await self._state(db, topic)
            self._check(topic, current, SubscriptionState.SUBSCRIBE_PENDING)
            await self._write(db, topic, SubscriptionState.SUBSCRIBE_PENDING, request_id)
        self._log_transition(topic, current, SubscriptionState.SUBSCRIBE_PENDING, request_id)

    async def request_unsubscribe(self, topic: str, request_id: str) -> None:
        """Record an outgoing unsubscribe request. Valid from SUBSCRIBED only."""
        if not request_id:
            raise ValueError("Request id is empty")
        async with self._store.transaction() as db:
            current = await self._state(db, topic)
            self._check(topic, current, SubscriptionState.UNSUBSCRIBE_PENDING)
            await self._write(db, topic, SubscriptionState.UNSUBSCRIBE_PENDING, request_id)
        self._log_transition(topic, current, SubscriptionState.UNSUBSCRIBE_PENDING, request_id)

    # --- Responses ---

    async def confirm(self, topic: str) -> SubscriptionState:
        """Resolve a pending request as accepted. Returns the new state."""
        return await self._resolve(topic, accepted=True)

    async def deny(self, topic: str) -> SubscriptionState:
        """Revert a pending request to its pre-request state."""
        return await self._resolve(topic, accepted=False)

    async def deprecate(self, topic: str) -> None:
        """Force DEPRECATED: the authority withdrew the topic."""
        async with self._store.transaction() as db:
            record = await self._record(db, topic)
            current = record.state if record else SubscriptionState.UNSUBSCRIBED
            await self._write(
                db, topic, SubscriptionState.DEPRECATED, record.request_id if record else None
            )
        if current is not SubscriptionState.DEPRECATED:
            self._log_transition(topic, current, SubscriptionState.DEPRECATED)

    async def _resolve(self, topic: str, accepted: bool) -> SubscriptionState:
        async with self._store.transaction() as db:
            record = await self._record(db, topic)
            current = record.state if record else SubscriptionState.UNSUBSCRIBED
            resolution = _RESOLUTIONS.get(current)
            if resolution is None:
                attempted = (
                    SubscriptionState.SUBSCRIBED if accepted else SubscriptionState.UNSUBSCRIBED
                )
                raise InvalidTransitionError(topic, current, attempted)
            target = resolution[0] if accepted else resolution[1]
            self._check(topic, current, target)
            await db.execute(
                "UPDATE subscriptions SET state = ? WHERE topic = ?", (int(target), topic)
            )
        self._log_transition(topic, current, target, record.request_id)
        return target

    # --- Queries ---

    async def current_state(self, topic: str) -> SubscriptionState:
        """State of the topic; UNSUBSCRIBED when no record exists."""
        async with self._store.transaction() as db:
            return await self._state(db, topic)

    async def get_record(self, topic: str) -> SubscriptionRecord | None:
        async with self._store.transaction() as db:
            return await self._record(db, topic)

    async def resolve_topic_for_request(self, request_id: str) -> str | None:
        """Topic correlated with an outstanding request id, if any."""
        async with self._store.transaction() as db:
            cursor = await db.execute(
                """SELECT topic FROM subscriptions WHERE request_id = ?
                   ORDER BY rowid DESC LIMIT 1""",
                (request_id,),
            )
            row = await cursor.fetchone()
        return row["topic"] if row else None

    async def list_effectively_subscribed(self) -> list[str]:
        """Topics in SUBSCRIBE_PENDING or SUBSCRIBED."""
        async with self._store.transaction() as db:
            cursor = await db.execute(
                f"SELECT topic FROM subscriptions WHERE state IN "
                f"({_placeholders(EFFECTIVELY_SUBSCRIBED_CODES)}) ORDER BY topic",
                EFFECTIVELY_SUBSCRIBED_CODES,
            )
            rows = await cursor.fetchall()
        return [r["topic"] for r in rows]

    async def list_pending(self) -> list[SubscriptionRecord]:
        """Records awaiting a decision from the authority."""
        async with self._store.transaction() as db:
            cursor = await db.execute(
                f"SELECT * FROM subscriptions WHERE state IN "
                f"({_placeholders(PENDING_CODES)}) ORDER BY topic",
                PENDING_CODES,
            )
            rows = await cursor.fetchall()
        return [SubscriptionRecord.from_row(r) for r in rows]

    async def count_deprecated(self) -> int:
        async with self._store.transaction() as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM subscriptions WHERE state = ?",
                (int(SubscriptionState.DEPRECATED),),
            )
            row = await cursor.fetchone()
        return row[0]

    # --- Cleanup ---

    async def purge(self, topic: str) -> bool:
        """Delete the topic's state record."""
        async with self._store.transaction() as db:
            cursor = await db.execute("DELETE FROM subscriptions WHERE topic = ?", (topic,))
            removed = cursor.rowcount > 0
        if removed:
            log.info("subscriptions.purged", topic=topic)
        return removed

    async def purge_deprecated(self) -> int:
        async with self._store.transaction() as db:
            cursor = await db.execute(
                "DELETE FROM subscriptions WHERE state = ?",
                (int(SubscriptionState.DEPRECATED),),
            )
            removed = cursor.rowcount
        log.info("subscriptions.deprecated_purged", rows=removed)
        return removed

    # --- Internals ---

    @staticmethod
    async def _record(db: aiosqlite.Connection, topic: str) -> SubscriptionRecord | None:
        cursor = await db.execute("SELECT * FROM subscriptions WHERE topic = ?", (topic,))
        row = await cursor.fetchone()
        return SubscriptionRecord.from_row(row) if row else None

    async def _state(self, db: aiosqlite.Connection, topic: str) -> SubscriptionState:
        record = await self._record(db, topic)
        return record.state if record else SubscriptionState.UNSUBSCRIBED

    @staticmethod
    async def _write(
        db: aiosqlite.Connection,
        topic: str,
        state: SubscriptionState,
        request_id: str | None,
    ) -> None:
        # Full replace: one record per topic, last writer wins.
        await db.execute(
            "INSERT OR REPLACE INTO subscriptions (topic, state, request_id) VALUES (?, ?, ?)",
            (topic, int(state), request_id),
        )

    @staticmethod
    def _check(topic: str, current: SubscriptionState, target: SubscriptionState) -> None:
        if not is_valid_transition(current, target):
            raise InvalidTransitionError(topic, current, target)

    @staticmethod
    def _log_transition(
        topic: str,
        current: SubscriptionState,
        target: SubscriptionState,
        request_id: str | None = None,
    ) -> None:
        log.info(
            "subscriptions.transition",
            topic=topic,
            from_state=current.name,
            to_state=target.name,
            request_id=request_id,
        )


def _placeholders(values: tuple) -> str:
    return ", ".join("?" for _ in values)
