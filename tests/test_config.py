"""Tests for configuration loading."""

import os
import tempfile
import yaml
import pytest
from bitcoinalerts.config import Config
from bitcoinalerts.notification_queue import Target


def write_config(config_data):
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.dump(config_data, f)
        return f.name


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in list(os.environ):
        if var.startswith("BA_"):
            monkeypatch.delenv(var)


def test_config_defaults():
    """Test that config loads with defaults when file is minimal."""
    temp_path = write_config({"bitcoin": {"network": "bitcoin"}})

    try:
        config = Config(temp_path)
        assert config.rpc_url == "http://127.0.0.1:8332"
        assert config.rpc_user == "bitcoin"  # default
        assert config.storage_backend == "sqlite"
        assert config.processor_config["poll_secs"] == 60
        assert config.processor_config["retry_delay_floor_secs"] == 30
        assert config.processor_config["retry_delay_ceiling_secs"] == 3600
        assert config.dispatch_config["interval_secs"] == 30
        assert config.enabled_targets == []
        assert config.ruleset.always_notify_blocks is False
        assert 840000 in config.ruleset.block_milestones
    finally:
        os.unlink(temp_path)


def test_config_network_default_ports():
    temp_path = write_config({"bitcoin": {"network": "signet"}})
    try:
        config = Config(temp_path)
        assert config.rpc_url == "http://127.0.0.1:38332"
        assert config.data_dir.name == "signet"
        assert config.storage_db_path.endswith(os.path.join("signet", "bitcoin-alerts.db"))
    finally:
        os.unlink(temp_path)


def test_config_regtest_notifies_every_block():
    temp_path = write_config({"bitcoin": {"network": "regtest"}})
    try:
        assert Config(temp_path).ruleset.always_notify_blocks is True
    finally:
        os.unlink(temp_path)


def test_config_env_overrides(monkeypatch):
    """Test that environment variables override config values."""
    temp_path = write_config({
        "bitcoin": {"network": "bitcoin", "rpc_url": "http://original:8332", "rpc_user": "original"},
        "ntfy": {"enabled": False, "topic": "original"},
    })

    monkeypatch.setenv("BA_RPC_URL", "http://override:8332")
    monkeypatch.setenv("BA_RPC_USER", "override_user")
    monkeypatch.setenv("BA_NTFY_TOPIC", "override_topic")
    monkeypatch.setenv("BA_NTFY_ENABLED", "true")
    monkeypatch.setenv("BA_DATA_DIR", "/tmp/ba-data")

    try:
        config = Config(temp_path)
        assert config.rpc_url == "http://override:8332"
        assert config.rpc_user == "override_user"
        assert config.ntfy_config["topic"] == "override_topic"
        assert config.enabled_targets == [Target.NTFY]
        assert str(config.data_dir) == os.path.join("/tmp/ba-data", "bitcoin")
    finally:
        os.unlink(temp_path)


def test_config_local_override(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump({"matrix": {"enabled": True, "room_ids": ["!a:example"]}}))
    (tmp_path / "config.local.yaml").write_text(yaml.dump({"matrix": {"access_token": "secret"}}))

    config = Config(str(config_path))
    assert config.matrix_config["access_token"] == "secret"
    assert config.matrix_config["room_ids"] == ["!a:example"]
    assert config.enabled_targets == [Target.MATRIX]


def test_config_custom_rules():
    temp_path = write_config({
        "rules": {
            "block_milestones": [123],
            "supply_milestones": [19_900_000, 19_800_000],
            "countdown": {"tiers": [[10, 1]], "boundaries": [], "heartbeat_blocks": 0},
            "always_notify_blocks": True,
        }
    })
    try:
        ruleset = Config(temp_path).ruleset
        assert ruleset.block_milestones == frozenset({123})
        assert ruleset.supply_milestones == (19_800_000.0, 19_900_000.0)
        assert ruleset.countdown.tiers == ((10, 1),)
        assert ruleset.always_notify_blocks is True
    finally:
        os.unlink(temp_path)


def test_config_invalid_network():
    temp_path = write_config({"bitcoin": {"network": "litecoin"}})
    try:
        with pytest.raises(ValueError):
            Config(temp_path)
    finally:
        os.unlink(temp_path)


def test_config_nostr_requires_secret_key():
    temp_path = write_config({"nostr": {"enabled": True}})
    try:
        with pytest.raises(ValueError):
            Config(temp_path)
    finally:
        os.unlink(temp_path)


def test_config_missing_explicit_path():
    with pytest.raises(FileNotFoundError):
        Config("/nonexistent/config.yaml")


def test_config_creates_default_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = Config()
    assert (tmp_path / "config.yaml").exists()
    assert config.network == "bitcoin"
