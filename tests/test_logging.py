"""Tests for logging setup."""

import logging
import logging.handlers
import os
import yaml
import pytest
from bitcoinalerts.config import Config
from bitcoinalerts.logging import ERROR_LOG_FILE, LOG_FILE, get_logger, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


def load_config(tmp_path, logging_section):
    config_path = tmp_path / "config.yaml"
    with open(config_path, "w") as f:
        yaml.dump({"bitcoin": {"network": "regtest"}, "logging": logging_section}, f)
    return Config(str(config_path))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in list(os.environ):
        if var.startswith("BA_"):
            monkeypatch.delenv(var)


def test_daily_rotation_handlers(tmp_path, root_logger):
    log_dir = tmp_path / "logs"
    config = load_config(tmp_path, {"log_dir": str(log_dir), "level": "DEBUG", "console_level": "WARNING"})

    setup_logging(config)

    main, errors, console = root_logger.handlers
    assert isinstance(main, logging.handlers.TimedRotatingFileHandler)
    assert isinstance(errors, logging.handlers.RotatingFileHandler)
    assert errors.level == logging.ERROR
    assert console.level == logging.WARNING
    assert root_logger.level == logging.DEBUG
    assert (log_dir / "archive").is_dir()
    assert main.namer("bitcoin-alerts.log.2026-10-18") == str(log_dir / "archive" / "bitcoin-alerts.log.2026-10-18")
    assert logging.getLogger("urllib3").level == logging.INFO
    assert logging.getLogger("websocket").level == logging.INFO


def test_size_rotation_and_error_file(tmp_path, root_logger):
    log_dir = tmp_path / "logs"
    config = load_config(tmp_path, {
        "log_dir": str(log_dir),
        "rotation": {"when": "size", "max_bytes": 1024, "backup_count": 2},
    })

    setup_logging(config)
    logger = get_logger("bitcoinalerts.test")
    logger.info("Block 840000 processed")
    logger.error("Impossible to send ntfy notification abc")
    for handler in root_logger.handlers:
        handler.flush()

    main = root_logger.handlers[0]
    assert type(main) is logging.handlers.RotatingFileHandler
    assert main.maxBytes == 1024
    assert main.backupCount == 2
    assert not (log_dir / "archive").exists()
    assert "Block 840000 processed" in (log_dir / LOG_FILE).read_text()
    error_log = (log_dir / ERROR_LOG_FILE).read_text()
    assert "Impossible to send ntfy notification abc" in error_log
    assert "Block 840000" not in error_log


def test_setup_twice_replaces_handlers(tmp_path, root_logger):
    config = load_config(tmp_path, {"log_dir": str(tmp_path / "logs")})

    setup_logging(config)
    first = list(root_logger.handlers)
    setup_logging(config)

    assert len(root_logger.handlers) == 3
    assert not set(first) & set(root_logger.handlers)
