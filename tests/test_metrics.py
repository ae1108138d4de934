"""Tests for metrics collection."""

from usub_registry.metrics import MetricsCollector
from usub_registry.registry import SubscriptionRegistry
from usub_registry.states import SubscriptionState


def test_counter_increment():
    m = MetricsCollector()
    m.inc("transitions_total")
    m.inc("transitions_total")
    assert m.get("transitions_total") == 2
    assert m.get("never_set") == 0


def test_prometheus_format():
    m = MetricsCollector()
    m.inc("publish_denied_total", 5)
    m.set_gauge("topics", 2)
    text = m.to_prometheus()
    assert "usub_publish_denied_total 5" in text
    assert "usub_topics 2" in text
    assert "usub_uptime_seconds" in text


async def test_refresh_from_registry(registry: SubscriptionRegistry, drive):
    await drive("t/1", SubscriptionState.SUBSCRIBE_PENDING)
    await drive("t/2", SubscriptionState.SUBSCRIBED)
    await drive("t/3", SubscriptionState.DEPRECATED)
    await registry.subscribers.add_subscriber("t/2", "sub1")

    await registry.metrics.refresh(registry)

    m = registry.metrics
    assert m.get("topics") == 3
    assert m.get("subscribers") == 1
    assert m.get("subscriptions_active") == 2
    assert m.get("subscriptions_pending") == 1
    assert m.get("subscriptions_deprecated") == 1
