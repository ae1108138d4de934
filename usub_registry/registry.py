"""
Registry facade and response reconciliation.

Composes the topic registry, subscriber registry and subscription state
machine over one store handle, and implements the caller-side sequencing
that keeps subscription state and membership consistent:

- a confirmed subscribe adds the subscriber, a confirmed unsubscribe
  removes it, both in the same transaction as the state change
- stale, duplicate or unknown responses are logged and dropped
- ``heal`` repairs membership that disagrees with the recorded state
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum

import structlog

from .config import RegistryConfig
from .errors import InvalidTransitionError, NotFoundError, RegistryError
from .metrics import MetricsCollector
from .states import SubscriptionState
from .store import SubscriptionStore
from .subscribers import SubscriberRegistry
from .subscriptions import SubscriptionStateMachine
from .topics import TopicRegistry

log = structlog.get_logger()


class ResponseOutcome(Enum):
    APPLIED = "applied"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PublishCheck:
    """Result of the publish-time gate; a denial never involves the network."""

    topic: str
    permitted: bool
    publisher: str | None = None
    reason: str = ""


class SubscriptionRegistry:
    """
    Entry point for callers: RPC-response handlers, the publish path and
    administrative triggers.

    The store is owned by the caller and must be open before use.
    """

    def __init__(self, store: SubscriptionStore, metrics: MetricsCollector | None = None):
        self._store = store
        self._metrics = metrics or MetricsCollector()
        self.topics = TopicRegistry(store)
        self.subscribers = SubscriberRegistry(store)
        self.subscriptions = SubscriptionStateMachine(store)

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    # --- Publish path ---

    async def check_publish(self, topic: str) -> PublishCheck:
        """Resolve the publisher for a topic, or report why publishing is not permitted."""
        try:
            publisher = await self.topics.get_publisher_if_notification_enabled(topic)
        except NotFoundError:
            return self._deny_publish(topic, "unregistered")
        if publisher is None:
            return self._deny_publish(topic, "notification_disabled")
        return PublishCheck(topic=topic, permitted=True, publisher=publisher)

    def _deny_publish(self, topic: str, reason: str) -> PublishCheck:
        self._metrics.inc("publish_denied_total")
        log.info("registry.publish_denied", topic=topic, reason=reason)
        return PublishCheck(topic=topic, permitted=False, reason=reason)

    # --- Authority responses ---

    async def apply_confirmation(
        self,
        topic: str,
        subscriber: str,
        *,
        details: Sequence[str] = (),
        expiry: int = 0,
    ) -> SubscriptionState:
        """
        Confirm the pending request for ``topic`` and update membership.

        SUBSCRIBE_PENDING → SUBSCRIBED adds ``subscriber``;
        UNSUBSCRIBE_PENDING → UNSUBSCRIBED removes it. The state change and
        the membership change commit together.
        """
        try:
            state = await self._confirm(topic, subscriber, details=details, expiry=expiry)
        except InvalidTransitionError:
            self._metrics.inc("transitions_rejected_total")
            raise
        self._metrics.inc("transitions_total")
        return state

    async def apply_denial(self, topic: str) -> SubscriptionState:
        """Revert the pending request for ``topic``. Membership is not touched."""
        try:
            state = await self.subscriptions.deny(topic)
        except InvalidTransitionError:
            self._metrics.inc("transitions_rejected_total")
            raise
        self._metrics.inc("transitions_total")
        return state

    async def _confirm(
        self,
        topic: str,
        subscriber: str,
        *,
        details: Sequence[str],
        expiry: int,
    ) -> SubscriptionState:
        async with self._store.transaction():
            record = await self.subscriptions.get_record(topic)
            state = await self.subscriptions.confirm(topic)
            if state is SubscriptionState.SUBSCRIBED:
                await self.subscribers.add_subscriber(
                    topic,
                    subscriber,
                    details=details,
                    expiry=expiry,
                    request_id=record.request_id if record else None,
                )
            else:
                await self.subscribers.remove_subscriber(topic, subscriber)
        return state

    async def handle_response(
        self,
        request_id: str,
        accepted: bool,
        subscriber: str,
        *,
        details: Sequence[str] = (),
        expiry: int = 0,
    ) -> ResponseOutcome:
        """
        Apply an asynchronous response from the authority.

        Responses for unknown request ids, and responses that no longer fit
        the recorded state (duplicates, out-of-order replies), are dropped.
        Store failures propagate.
        """
        rejected: RegistryError | None = None
        async with self._store.transaction():
            topic = await self.subscriptions.resolve_topic_for_request(request_id)
            if topic is not None:
                try:
                    if accepted:
                        await self._confirm(topic, subscriber, details=details, expiry=expiry)
                    else:
                        await self.subscriptions.deny(topic)
                except (InvalidTransitionError, NotFoundError) as exc:
                    rejected = exc

        # Counted only once the transaction has committed.
        if topic is None:
            self._metrics.inc("responses_ignored_total")
            log.warning("registry.response_unknown_request", request_id=request_id)
            return ResponseOutcome.IGNORED
        if rejected is not None:
            if isinstance(rejected, InvalidTransitionError):
                self._metrics.inc("transitions_rejected_total")
            self._metrics.inc("responses_ignored_total")
            log.warning(
                "registry.response_stale",
                request_id=request_id,
                topic=topic,
                accepted=accepted,
                error=rejected.message,
            )
            return ResponseOutcome.IGNORED
        self._metrics.inc("transitions_total")
        return ResponseOutcome.APPLIED

    async def handle_withdrawal(self, topic: str) -> None:
        """The authority withdrew the topic."""
        await self.subscriptions.deprecate(topic)
        self._metrics.inc("transitions_total")

    # --- Reconciliation ---

    async def heal(self, topic: str, subscriber: str) -> bool:
        """
        Make ``subscriber``'s membership agree with the topic's state.

        SUBSCRIBED without a membership row re-adds it; UNSUBSCRIBED or
        DEPRECATED with a row removes it. Pending states are left alone.
        A topic that is no longer registered never regains members: any row
        left for it is removed. Returns True when membership was changed.
        """
        async with self._store.transaction():
            registered = await self.topics.is_registered(topic)
            record = await self.subscriptions.get_record(topic)
            state = record.state if record else SubscriptionState.UNSUBSCRIBED
            present = await self.subscribers.is_subscribed(topic, subscriber)
            if not registered:
                changed = present and await self.subscribers.remove_subscriber(topic, subscriber)
            elif state is SubscriptionState.SUBSCRIBED and not present:
                changed = await self.subscribers.add_subscriber(
                    topic, subscriber, request_id=record.request_id
                )
            elif present and state in (
                SubscriptionState.UNSUBSCRIBED,
                SubscriptionState.DEPRECATED,
            ):
                changed = await self.subscribers.remove_subscriber(topic, subscriber)
            else:
                changed = False
        if changed:
            self._metrics.inc("memberships_healed_total")
            log.info(
                "registry.healed",
                topic=topic,
                subscriber=subscriber,
                state=state.name,
                registered=registered,
            )
        return changed


@asynccontextmanager
async def open_registry(
    config: RegistryConfig, metrics: MetricsCollector | None = None
) -> AsyncIterator[SubscriptionRegistry]:
    """Open the configured store, yield a registry over it, close on exit."""
    store = SubscriptionStore(
        config.store.db_path, busy_timeout=config.store.busy_timeout_seconds
    )
    await store.open()
    try:
        yield SubscriptionRegistry(store, metrics=metrics)
    finally:
        await store.close()
