"""
Administrative entry point.

Loads configuration, configures logging, and runs a diagnostic command
against the registry store.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import structlog

from .config import RegistryConfig, load_config
from .errors import StoreFailureError
from .metrics import MetricsCollector
from .registry import SubscriptionRegistry, open_registry


def _stderr_logger(*args) -> structlog.PrintLogger:
    # Command output owns stdout.
    return structlog.PrintLogger(sys.stderr)


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            level
        ),
        logger_factory=_stderr_logger,
    )


async def _stats(registry: SubscriptionRegistry, fmt: str) -> str:
    await registry.metrics.refresh(registry)
    if fmt == "prometheus":
        return registry.metrics.to_prometheus()
    gauges = {
        name: registry.metrics.get(name)
        for name in (
            "topics",
            "subscribers",
            "subscriptions_active",
            "subscriptions_pending",
            "subscriptions_deprecated",
        )
    }
    if fmt == "json":
        return json.dumps(gauges, indent=2) + "\n"
    return "".join(f"{name}: {value:g}\n" for name, value in gauges.items())


async def _subscribers(registry: SubscriptionRegistry, topic: str) -> str:
    records = await registry.subscribers.fetch_by_topic(topic)
    return "".join(f"{r.id}\t{r.subscriber}\n" for r in records)


async def _pending(registry: SubscriptionRegistry) -> str:
    records = await registry.subscriptions.list_pending()
    return "".join(f"{r.topic}\t{r.state.name}\t{r.request_id or '-'}\n" for r in records)


async def _purge_deprecated(registry: SubscriptionRegistry) -> str:
    removed = await registry.subscriptions.purge_deprecated()
    return f"purged {removed} deprecated subscription(s)\n"


async def execute(config: RegistryConfig, args: argparse.Namespace) -> str:
    """Run one command against the configured store and return its output."""
    async with open_registry(config, metrics=MetricsCollector()) as registry:
        if args.command == "stats":
            return await _stats(registry, args.format)
        if args.command == "subscribers":
            return await _subscribers(registry, args.topic)
        if args.command == "pending":
            return await _pending(registry)
        if args.command == "purge-deprecated":
            return await _purge_deprecated(registry)
    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="uSubscription registry administration")
    parser.add_argument(
        "-c", "--config",
        default="usub-registry.yaml",
        help="Path to configuration file (default: usub-registry.yaml)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    stats = commands.add_parser("stats", help="Show registry counts")
    stats.add_argument("--format", choices=["text", "json", "prometheus"], default="text")

    subscribers = commands.add_parser("subscribers", help="List subscribers of a topic")
    subscribers.add_argument("topic")

    commands.add_parser("pending", help="List subscriptions awaiting a decision")
    commands.add_parser("purge-deprecated", help="Delete deprecated subscription records")
    return parser


def run(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.debug("registry.config_loaded", config_path=args.config, command=args.command)

    try:
        output = asyncio.run(execute(config, args))
    except StoreFailureError as exc:
        print(f"Store error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.stdout.write(output)


if __name__ == "__main__":
    run()
