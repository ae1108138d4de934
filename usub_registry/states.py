"""
Subscription lifecycle states and persisted record types.

The state codes are the values stored in the ``subscriptions`` table. Query
predicates ("effectively subscribed", "pending") are derived from named
state sets rather than from integer comparisons.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from enum import IntEnum


class SubscriptionState(IntEnum):
    """Per-topic negotiation state with the subscription authority."""

    DEPRECATED = -1
    UNSUBSCRIBED = 0
    SUBSCRIBE_PENDING = 1
    SUBSCRIBED = 2
    UNSUBSCRIBE_PENDING = 3

    @property
    def is_effectively_subscribed(self) -> bool:
        return self in EFFECTIVELY_SUBSCRIBED

    @property
    def is_pending(self) -> bool:
        return self in PENDING


# Valid state transitions (from -> to)
VALID_TRANSITIONS: dict[SubscriptionState, frozenset[SubscriptionState]] = {
    SubscriptionState.UNSUBSCRIBED: frozenset({
        SubscriptionState.SUBSCRIBE_PENDING,
        SubscriptionState.DEPRECATED,
    }),
    SubscriptionState.SUBSCRIBE_PENDING: frozenset({
        SubscriptionState.SUBSCRIBED,
        SubscriptionState.UNSUBSCRIBED,  # denied
        SubscriptionState.DEPRECATED,
    }),
    SubscriptionState.SUBSCRIBED: frozenset({
        SubscriptionState.UNSUBSCRIBE_PENDING,
        SubscriptionState.DEPRECATED,
    }),
    SubscriptionState.UNSUBSCRIBE_PENDING: frozenset({
        SubscriptionState.UNSUBSCRIBED,
        SubscriptionState.SUBSCRIBED,  # denied
        SubscriptionState.DEPRECATED,
    }),
    # Re-subscribing replaces a withdrawn record; repeated withdrawal is a no-op.
    SubscriptionState.DEPRECATED: frozenset({
        SubscriptionState.SUBSCRIBE_PENDING,
        SubscriptionState.DEPRECATED,
    }),
}

EFFECTIVELY_SUBSCRIBED = frozenset({
    SubscriptionState.SUBSCRIBE_PENDING,
    SubscriptionState.SUBSCRIBED,
})

PENDING = frozenset({
    SubscriptionState.SUBSCRIBE_PENDING,
    SubscriptionState.UNSUBSCRIBE_PENDING,
})


def is_valid_transition(from_state: SubscriptionState, to_state: SubscriptionState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, frozenset())


def _state_codes(states: frozenset[SubscriptionState]) -> tuple[int, ...]:
    return tuple(sorted(int(s) for s in states))


EFFECTIVELY_SUBSCRIBED_CODES = _state_codes(EFFECTIVELY_SUBSCRIBED)
PENDING_CODES = _state_codes(PENDING)


@dataclass(frozen=True)
class TopicRecord:
    topic: str
    publisher: str
    details: str = ""
    notification_enabled: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TopicRecord:
        return cls(
            topic=row["topic"],
            publisher=row["publisher"],
            details=row["details"],
            notification_enabled=bool(row["notification_enabled"]),
        )


@dataclass(frozen=True)
class SubscriberRecord:
    """Membership of one subscriber in one topic."""

    id: int
    topic: str
    subscriber: str
    details: tuple[str, ...] = field(default_factory=tuple)
    expiry: int = 0
    request_id: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SubscriberRecord:
        return cls(
            id=row["id"],
            topic=row["topic"],
            subscriber=row["subscriber"],
            details=tuple(decode_details(row["details"])),
            expiry=row["expiry"],
            request_id=row["request_id"],
        )


@dataclass(frozen=True)
class SubscriptionRecord:
    topic: str
    state: SubscriptionState
    request_id: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SubscriptionRecord:
        return cls(
            topic=row["topic"],
            state=SubscriptionState(row["state"]),
            request_id=row["request_id"],
        )


def encode_details(details: list[str] | tuple[str, ...]) -> str:
    """Serialize subscriber details as a JSON string list."""
    return json.dumps([d for d in details if d is not None])


def decode_details(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [d for d in json.loads(raw) if d is not None]
