"""Configuration loading and validation for bitcoin-alerts."""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, List

from .constants import (
    DEFAULT_BLOCK_MILESTONES,
    DEFAULT_COUNTDOWN_BOUNDARIES,
    DEFAULT_COUNTDOWN_HEARTBEAT_BLOCKS,
    DEFAULT_COUNTDOWN_TIERS,
    DEFAULT_DISPATCH_INTERVAL_SECS,
    DEFAULT_HTTP_TIMEOUT_SECS,
    DEFAULT_LIST_RETRY_SECS,
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_MAX_BYTES,
    DEFAULT_METRICS_LOG_INTERVAL_SECS,
    DEFAULT_POLL_SECS,
    DEFAULT_RETRY_DELAY_CEILING_SECS,
    DEFAULT_RETRY_DELAY_FLOOR_SECS,
    DEFAULT_RPC_RETRY_SECS,
    DEFAULT_RPC_TIMEOUT_SECS,
    DEFAULT_SUPPLY_MILESTONES,
    DEFAULT_SUPPLY_REFRESH_INTERVAL,
    DEFAULT_SYNC_WAIT_SECS,
    NETWORKS,
    NOTIFICATION_TITLE,
)
from .notification_queue import Target
from .rules import CountdownPolicy, RuleSet


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuration container with environment variable overrides."""

    def __init__(self, config_path: str = None, create_if_missing: bool = True):
        """
        Load configuration from YAML file with environment variable overrides.

        Configuration precedence (highest to lowest):
        1. Environment variables (BA_* prefix)
        2. config.local.yaml (if exists, local overrides)
        3. config.yaml (main config file)
        4. Default values

        Args:
            config_path: Path to config.yaml. If None, searches for config.yaml
                        in current directory and parent directories.
            create_if_missing: If True and config_path is None, create default config
                              if not found. If config_path is explicitly provided,
                              this is ignored (file must exist).
        """
        if config_path is None:
            config_path = self._find_config_file()
            if create_if_missing and not Path(config_path).exists():
                self._create_default_config(config_path)
        elif not Path(config_path).exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, 'r') as f:
            self._raw = yaml.safe_load(f) or {}

        # Secrets usually live in the gitignored config.local.yaml
        local_config_path = Path(config_path).parent / "config.local.yaml"
        if local_config_path.exists():
            with open(local_config_path, 'r') as f:
                self._deep_merge(self._raw, yaml.safe_load(f) or {})

        self._apply_env_overrides()
        self._validate()

    def _find_config_file(self) -> str:
        """Find config.yaml in current directory or parents."""
        current = Path.cwd()
        for path in [current] + list(current.parents):
            config_file = path / "config.yaml"
            if config_file.exists():
                return str(config_file)
        return str(current / "config.yaml")

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        """Recursively merge override dict into base dict."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _create_default_config(self, path: str):
        """Create a default config.yaml file."""
        default_config = {
            "data_dir": "~/.bitcoin_alerts",
            "bitcoin": {
                "network": "bitcoin",
                "rpc_url": "",
                "rpc_user": "bitcoin",
                "rpc_password": "",
                "rpc_timeout_secs": DEFAULT_RPC_TIMEOUT_SECS,
                "coinstatsindex": False
            },
            "storage": {
                "backend": "sqlite"
            },
            "processor": {
                "poll_secs": DEFAULT_POLL_SECS,
                "rpc_retry_secs": DEFAULT_RPC_RETRY_SECS,
                "retry_delay_floor_secs": DEFAULT_RETRY_DELAY_FLOOR_SECS,
                "retry_delay_ceiling_secs": DEFAULT_RETRY_DELAY_CEILING_SECS,
                "sync_wait_secs": DEFAULT_SYNC_WAIT_SECS
            },
            "rules": {
                "block_milestones": list(DEFAULT_BLOCK_MILESTONES),
                "supply_milestones": list(DEFAULT_SUPPLY_MILESTONES),
                "supply_refresh_interval": DEFAULT_SUPPLY_REFRESH_INTERVAL
            },
            "dispatch": {
                "interval_secs": DEFAULT_DISPATCH_INTERVAL_SECS
            },
            "ntfy": {
                "enabled": False,
                "url": "https://ntfy.sh",
                "topic": "bitcoin_alerts"
            },
            "nostr": {
                "enabled": False,
                "secret_key": "",
                "relays": ["wss://relay.damus.io", "wss://nos.lol"],
                "pow_difficulty": 0
            },
            "matrix": {
                "enabled": False,
                "homeserver_url": "https://matrix.org",
                "access_token": "",
                "room_ids": []
            },
            "logging": {
                "level": "INFO",
                "console_level": "INFO",
                "log_dir": "",
                "rotation": {
                    "max_bytes": DEFAULT_LOG_MAX_BYTES,
                    "backup_count": DEFAULT_LOG_BACKUP_COUNT,
                    "when": "midnight"
                }
            }
        }
        with open(path, 'w') as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

    def _apply_env_overrides(self):
        """Apply environment variable overrides using BA_ prefix."""
        string_overrides = {
            "BA_NETWORK": ("bitcoin", "network"),
            "BA_RPC_URL": ("bitcoin", "rpc_url"),
            "BA_RPC_USER": ("bitcoin", "rpc_user"),
            "BA_RPC_PASS": ("bitcoin", "rpc_password"),
            "BA_NTFY_URL": ("ntfy", "url"),
            "BA_NTFY_TOPIC": ("ntfy", "topic"),
            "BA_NTFY_TOKEN": ("ntfy", "token"),
            "BA_NOSTR_SECRET_KEY": ("nostr", "secret_key"),
            "BA_MATRIX_ACCESS_TOKEN": ("matrix", "access_token"),
            "BA_LOG_DIR": ("logging", "log_dir"),
            "BA_LOG_LEVEL": ("logging", "level"),
            "BA_CONSOLE_LEVEL": ("logging", "console_level"),
        }
        for var, (section, key) in string_overrides.items():
            if os.getenv(var):
                self._raw.setdefault(section, {})[key] = os.getenv(var)

        for var, section in (("BA_NTFY_ENABLED", "ntfy"),
                             ("BA_NOSTR_ENABLED", "nostr"),
                             ("BA_MATRIX_ENABLED", "matrix")):
            if os.getenv(var):
                self._raw.setdefault(section, {})["enabled"] = _env_bool(os.getenv(var))

        if os.getenv("BA_DATA_DIR"):
            self._raw["data_dir"] = os.getenv("BA_DATA_DIR")

    def _validate(self):
        """Validate and normalize configuration values."""
        if self.network not in NETWORKS:
            raise ValueError(
                f"Invalid bitcoin network '{self.network}', expected one of: {', '.join(NETWORKS)}"
            )
        if self.storage_backend not in ("sqlite", "json"):
            raise ValueError(f"Unknown storage backend: {self.storage_backend}")
        if self.nostr_config["enabled"] and not self.nostr_config["secret_key"]:
            raise ValueError("nostr.secret_key is required when nostr is enabled")

    @property
    def network(self) -> str:
        return str(self._raw.get("bitcoin", {}).get("network", "bitcoin")).lower()

    @property
    def rpc_url(self) -> str:
        url = self._raw.get("bitcoin", {}).get("rpc_url")
        if url:
            return url
        return f"http://127.0.0.1:{NETWORKS[self.network][1]}"

    @property
    def rpc_user(self) -> str:
        return self._raw.get("bitcoin", {}).get("rpc_user", "bitcoin")

    @property
    def rpc_password(self) -> str:
        return self._raw.get("bitcoin", {}).get("rpc_password", "")

    @property
    def rpc_timeout_secs(self) -> int:
        return int(self._raw.get("bitcoin", {}).get("rpc_timeout_secs", DEFAULT_RPC_TIMEOUT_SECS))

    @property
    def coinstatsindex(self) -> bool:
        return bool(self._raw.get("bitcoin", {}).get("coinstatsindex", False))

    @property
    def data_dir(self) -> Path:
        """Per-network directory holding the store and logs."""
        base = Path(self._raw.get("data_dir") or "~/.bitcoin_alerts").expanduser()
        return base / self.network

    @property
    def storage_backend(self) -> str:
        return self._raw.get("storage", {}).get("backend", "sqlite")

    @property
    def storage_db_path(self) -> str:
        return self._raw.get("storage", {}).get("db_path") or str(self.data_dir / "bitcoin-alerts.db")

    @property
    def storage_json_path(self) -> str:
        return self._raw.get("storage", {}).get("json_path") or str(self.data_dir / "bitcoin-alerts.json")

    @property
    def processor_config(self) -> Dict[str, int]:
        """Get block processor timing configuration with defaults."""
        cfg = self._raw.get("processor", {})
        return {
            "poll_secs": int(cfg.get("poll_secs", DEFAULT_POLL_SECS)),
            "rpc_retry_secs": int(cfg.get("rpc_retry_secs", DEFAULT_RPC_RETRY_SECS)),
            "retry_delay_floor_secs": int(cfg.get("retry_delay_floor_secs", DEFAULT_RETRY_DELAY_FLOOR_SECS)),
            "retry_delay_ceiling_secs": int(cfg.get("retry_delay_ceiling_secs", DEFAULT_RETRY_DELAY_CEILING_SECS)),
            "sync_wait_secs": int(cfg.get("sync_wait_secs", DEFAULT_SYNC_WAIT_SECS)),
            "metrics_log_interval_secs": int(
                cfg.get("metrics_log_interval_secs", DEFAULT_METRICS_LOG_INTERVAL_SECS)
            ),
        }

    @property
    def ruleset(self) -> RuleSet:
        """Build the rule configuration.

        Block milestones and countdown tiers are data, not code: operators
        can replace the curated sets here.
        """
        cfg = self._raw.get("rules", {})
        countdown = cfg.get("countdown", {})
        always = cfg.get("always_notify_blocks")
        if always is None:
            always = self.network == "regtest"

        return RuleSet(
            countdown=CountdownPolicy(
                tiers=tuple(
                    (int(limit), int(every))
                    for limit, every in countdown.get("tiers", DEFAULT_COUNTDOWN_TIERS)
                ),
                boundaries=tuple(int(b) for b in countdown.get("boundaries", DEFAULT_COUNTDOWN_BOUNDARIES)),
                heartbeat_blocks=int(countdown.get("heartbeat_blocks", DEFAULT_COUNTDOWN_HEARTBEAT_BLOCKS)),
            ),
            block_milestones=frozenset(int(h) for h in cfg.get("block_milestones", DEFAULT_BLOCK_MILESTONES)),
            supply_milestones=tuple(sorted(float(s) for s in cfg.get("supply_milestones", DEFAULT_SUPPLY_MILESTONES))),
            supply_refresh_interval=int(cfg.get("supply_refresh_interval", DEFAULT_SUPPLY_REFRESH_INTERVAL)),
            always_notify_blocks=bool(always),
        )

    @property
    def dispatch_config(self) -> Dict[str, int]:
        cfg = self._raw.get("dispatch", {})
        return {
            "interval_secs": int(cfg.get("interval_secs", DEFAULT_DISPATCH_INTERVAL_SECS)),
            "list_retry_secs": int(cfg.get("list_retry_secs", DEFAULT_LIST_RETRY_SECS)),
        }

    @property
    def ntfy_config(self) -> Dict[str, Any]:
        """Get ntfy channel configuration with defaults."""
        cfg = self._raw.get("ntfy", {})
        return {
            "enabled": bool(cfg.get("enabled", False)),
            "url": cfg.get("url", "https://ntfy.sh"),
            "topic": cfg.get("topic", "bitcoin_alerts"),
            "title": cfg.get("title", NOTIFICATION_TITLE),
            "priority": str(cfg.get("priority", "default")),
            "token": cfg.get("token", ""),
            "proxy": cfg.get("proxy"),
            "timeout_secs": int(cfg.get("timeout_secs", DEFAULT_HTTP_TIMEOUT_SECS)),
        }

    @property
    def nostr_config(self) -> Dict[str, Any]:
        """Get Nostr channel configuration with defaults."""
        cfg = self._raw.get("nostr", {})
        return {
            "enabled": bool(cfg.get("enabled", False)),
            "secret_key": cfg.get("secret_key", ""),
            "relays": list(cfg.get("relays", [])),
            "pow_difficulty": int(cfg.get("pow_difficulty", 0)),
            "publish_metadata": bool(cfg.get("publish_metadata", True)),
            "timeout_secs": int(cfg.get("timeout_secs", DEFAULT_HTTP_TIMEOUT_SECS)),
        }

    @property
    def matrix_config(self) -> Dict[str, Any]:
        """Get Matrix channel configuration with defaults."""
        cfg = self._raw.get("matrix", {})
        return {
            "enabled": bool(cfg.get("enabled", False)),
            "homeserver_url": cfg.get("homeserver_url", "https://matrix.org"),
            "access_token": cfg.get("access_token", ""),
            "room_ids": list(cfg.get("room_ids", [])),
            "proxy": cfg.get("proxy"),
            "timeout_secs": int(cfg.get("timeout_secs", DEFAULT_HTTP_TIMEOUT_SECS)),
        }

    @property
    def enabled_targets(self) -> List[Target]:
        """Targets with an enabled channel, in dispatch order."""
        enabled = []
        if self.ntfy_config["enabled"]:
            enabled.append(Target.NTFY)
        if self.nostr_config["enabled"]:
            enabled.append(Target.NOSTR)
        if self.matrix_config["enabled"]:
            enabled.append(Target.MATRIX)
        return enabled

    @property
    def log_level(self) -> str:
        return self._raw.get("logging", {}).get("level", "INFO")

    @property
    def console_level(self) -> str:
        return self._raw.get("logging", {}).get("console_level", "INFO")

    @property
    def log_dir(self) -> str:
        return self._raw.get("logging", {}).get("log_dir") or str(self.data_dir / "logs")

    @property
    def log_rotation(self) -> Dict[str, Any]:
        """Get log rotation configuration with defaults."""
        rotation = self._raw.get("logging", {}).get("rotation", {})
        return {
            "max_bytes": rotation.get("max_bytes", DEFAULT_LOG_MAX_BYTES),
            "backup_count": rotation.get("backup_count", DEFAULT_LOG_BACKUP_COUNT),
            "when": rotation.get("when", "midnight")
        }
