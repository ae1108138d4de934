"""Tests for configuration loading."""

import pytest
import yaml
from pydantic import ValidationError

from usub_registry.config import RegistryConfig, load_config


def test_load_config_from_yaml(tmp_path):
    config_data = {
        "store": {"db_path": "/var/lib/usub/registry.db", "busy_timeout_seconds": 2.5},
        "logging": {"level": "debug", "format": "text"},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(config_data))

    cfg = load_config(path)
    assert cfg.store.db_path == "/var/lib/usub/registry.db"
    assert cfg.store.busy_timeout_seconds == 2.5
    assert cfg.logging.format == "text"


def test_load_config_defaults():
    cfg = RegistryConfig()
    assert cfg.store.db_path == "./data/subscriptions.db"
    assert cfg.logging.level == "info"
    assert cfg.logging.format == "json"


def test_empty_file_uses_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == RegistryConfig()


def test_invalid_values_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"logging": {"format": "xml"}}))
    with pytest.raises(ValidationError):
        load_config(path)


def test_load_config_file_not_found():
    with pytest.raises(FileNotFoundError):
        load_config("/nonexistent/path.yaml")


def test_logging_level_is_normalised():
    cfg = RegistryConfig(logging={"level": "WARNING"})
    assert cfg.logging.level == "warning"


def test_unknown_logging_level_rejected():
    with pytest.raises(ValidationError):
        RegistryConfig(logging={"level": "verbose"})
