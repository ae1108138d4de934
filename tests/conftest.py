"""
Shared fixtures for registry tests.
"""

import pytest

from usub_registry.registry import SubscriptionRegistry
from usub_registry.states import SubscriptionState
from usub_registry.store import SubscriptionStore


@pytest.fixture
async def store(tmp_path):
    s = SubscriptionStore(str(tmp_path / "registry.db"))
    await s.open()
    yield s
    await s.close()


@pytest.fixture
def registry(store):
    return SubscriptionRegistry(store)


@pytest.fixture
def drive(registry: SubscriptionRegistry):
    """Register a topic and walk it through legal transitions into a state."""

    async def _drive(topic: str, state: SubscriptionState) -> None:
        await registry.topics.register_topic(topic, "pub1")
        sm = registry.subscriptions
        if state is SubscriptionState.UNSUBSCRIBED:
            return
        if state is SubscriptionState.DEPRECATED:
            await sm.deprecate(topic)
            return
        await sm.request_subscribe(topic, f"{topic}#subscribe")
        if state is SubscriptionState.SUBSCRIBE_PENDING:
            return
        await sm.confirm(topic)
        if state is SubscriptionState.SUBSCRIBED:
            return
        await sm.request_unsubscribe(topic, f"{topic}#unsubscribe")

    return _drive
