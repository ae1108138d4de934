"""
Registry errors.

Error hierarchy:
    RegistryError (base)
    ├── NotFoundError
    ├── InvalidTransitionError
    └── StoreFailureError

Duplicate inserts are not errors: idempotent operations report them through
their return value.
"""

from __future__ import annotations

from typing import Any


class RegistryError(Exception):
    """Base error for all registry operations."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(RegistryError):
    """A topic, subscriber or state record is absent where it is required."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}", {"kind": kind, "key": key})
        self.kind = kind
        self.key = key


class InvalidTransitionError(RegistryError):
    """
    The requested state change is not reachable from the current state.

    The stored state is left untouched. Callers decide whether this is a
    protocol violation or a stale/duplicate response that can be dropped.
    """

    def __init__(self, topic: str, current: Any, attempted: Any):
        super().__init__(
            f"Invalid transition for {topic}: {current.name} -> {attempted.name}",
            {"topic": topic, "current": current.name, "attempted": attempted.name},
        )
        self.topic = topic
        self.current = current
        self.attempted = attempted


class StoreFailureError(RegistryError):
    """The underlying store transaction could not complete."""
