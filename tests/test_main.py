"""Tests for the administrative CLI."""

import asyncio
import json

import pytest
import structlog
import yaml

from usub_registry.config import RegistryConfig, StoreConfig
from usub_registry.main import configure_logging, run
from usub_registry.registry import open_registry


@pytest.fixture
def config_path(tmp_path):
    db_path = str(tmp_path / "registry.db")
    path = tmp_path / "usub-registry.yaml"
    path.write_text(yaml.dump({
        "store": {"db_path": db_path},
        "logging": {"level": "warning", "format": "text"},
    }))

    async def seed():
        config = RegistryConfig(store=StoreConfig(db_path=db_path))
        async with open_registry(config) as registry:
            await registry.topics.register_topic("t/status", "pub1")
            await registry.topics.register_topic("t/gone", "pub1")
            await registry.subscriptions.request_subscribe("t/status", "req-1")
            await registry.subscribers.add_subscriber("t/status", "sub1")
            await registry.subscriptions.deprecate("t/gone")

    asyncio.run(seed())
    return str(path)


def test_stats_json(config_path, capsys):
    run(["-c", config_path, "stats", "--format", "json"])
    stats = json.loads(capsys.readouterr().out)
    assert stats["topics"] == 2
    assert stats["subscribers"] == 1
    assert stats["subscriptions_pending"] == 1
    assert stats["subscriptions_deprecated"] == 1


def test_stats_prometheus(config_path, capsys):
    run(["-c", config_path, "stats", "--format", "prometheus"])
    assert "usub_topics 2" in capsys.readouterr().out


def test_subscribers_and_pending(config_path, capsys):
    run(["-c", config_path, "subscribers", "t/status"])
    assert "sub1" in capsys.readouterr().out

    run(["-c", config_path, "pending"])
    assert "t/status\tSUBSCRIBE_PENDING\treq-1" in capsys.readouterr().out


def test_purge_deprecated(config_path, capsys):
    run(["-c", config_path, "purge-deprecated"])
    assert "purged 1" in capsys.readouterr().out


def test_missing_config_exits(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        run(["-c", str(tmp_path / "missing.yaml"), "stats"])
    assert excinfo.value.code == 1
    assert "Config file not found" in capsys.readouterr().err


def test_configure_logging_filters_below_level(capsys):
    configure_logging("warning", "json")
    try:
        log = structlog.get_logger()
        log.info("registry.quiet")
        log.warning("registry.loud")
        err = capsys.readouterr().err
    finally:
        structlog.reset_defaults()
    assert "registry.quiet" not in err
    assert "registry.loud" in err
