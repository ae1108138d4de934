"""
Registry metrics with Prometheus-compatible text export.

Counters track state-machine activity; gauges are refreshed from the store
on demand.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .registry import SubscriptionRegistry

PREFIX = "usub_"


class MetricsCollector:
    """Counters and gauges for registry operations."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1) -> None:
        self._counters[PREFIX + name] += value

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[PREFIX + name] = value

    def get(self, name: str) -> int | float:
        full = PREFIX + name
        if full in self._gauges:
            return self._gauges[full]
        return self._counters.get(full, 0)

    async def refresh(self, registry: SubscriptionRegistry) -> None:
        """Set store-derived gauges from the registry's current contents."""
        self.set_gauge("topics", await registry.topics.count_topics())
        self.set_gauge("subscribers", await registry.subscribers.count_subscribers())
        self.set_gauge("subscriptions_deprecated", await registry.subscriptions.count_deprecated())
        self.set_gauge("subscriptions_pending", len(await registry.subscriptions.list_pending()))
        self.set_gauge(
            "subscriptions_active",
            len(await registry.subscriptions.list_effectively_subscribed()),
        )

    def to_prometheus(self) -> str:
        lines = []
        for name, value in sorted(self._counters.items()):
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name} {value}")
        for name, value in sorted(self._gauges.items()):
            lines.append(f"# TYPE {name} gauge")
            lines.append(f"{name} {value}")
        uptime = time.time() - self._start_time
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "uptime_seconds": time.time() - self._start_time,
        }
