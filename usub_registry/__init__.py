"""
uSubscription Registry

Local persistence and lifecycle layer of a publish/subscribe subscription
authority: topic registry, subscriber membership, and per-topic subscription
state negotiated with a remote authority.
"""

__version__ = "0.1.0"
