"""
Configuration management and loading.

Reads the engine, storage, keeper and logging settings from a YAML file
with strict validation: unknown keys and out-of-range values are rejected
rather than silently defaulted.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from bill_guard.core.context import DEFAULT_CUSTODY_ACCOUNT, EngineSettings
from bill_guard.core.money import DEFAULT_FEE_PERCENTAGE
from bill_guard.keeper.schedule import parse_cron
from bill_guard.storage.db import DEFAULT_DB_PATH

CONFIG_ENV_VAR = "BILL_GUARD_CONFIG"
DEFAULT_KEEPER_SCHEDULE = "0 12 * * *"
DEFAULT_NOTICE_WINDOW_HOURS = 24

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class StorageConfig:
    """Ledger database location."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.db_path:
            raise ValueError("db_path must not be empty")


@dataclass(frozen=True)
class KeeperConfig:
    """When the keeper sweeps and how far ahead it reports due bills."""
    schedule: str = DEFAULT_KEEPER_SCHEDULE
    notice_window_hours: int = DEFAULT_NOTICE_WINDOW_HOURS
    catch_up_past_due: bool = False

    def __post_init__(self):
        """Validate the cron expression and notice window."""
        parse_cron(self.schedule)
        if self.notice_window_hours <= 0:
            raise ValueError("notice_window_hours must be > 0")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        if self.level not in _LOG_LEVELS:
            raise ValueError(f"logging level must be one of: {list(_LOG_LEVELS)}")

    @property
    def level_number(self) -> int:
        return getattr(logging, self.level)


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    engine: EngineSettings
    storage: StorageConfig = field(default_factory=StorageConfig)
    keeper: KeeperConfig = field(default_factory=KeeperConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def default_config(admin: str, db_path: str = DEFAULT_DB_PATH) -> AppConfig:
    """Build a configuration with default settings and no file."""
    return AppConfig(
        engine=EngineSettings(admin=admin, fee_recipient=admin),
        storage=StorageConfig(db_path=db_path)
    )


def load_config(path: str) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'engine', 'storage', 'keeper', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'engine' not in raw_config:
        raise ValueError("Missing required 'engine' section")

    return AppConfig(
        engine=_parse_engine(_section(raw_config, 'engine')),
        storage=_parse_storage(_section(raw_config, 'storage')),
        keeper=_parse_keeper(_section(raw_config, 'keeper')),
        logging=_parse_logging(_section(raw_config, 'logging'))
    )


def _section(raw_config: Dict, name: str) -> Dict[str, Any]:
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _require_str(data: Dict, key: str, path: str) -> str:
    value = data[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{key}' in {path} must be a non-empty string")
    return value


def _parse_engine(data: Dict) -> EngineSettings:
    """Parse and validate the engine section.

    Raises:
        ValueError: If configuration is invalid
    """
    _check_keys(data, {'admin', 'fee_recipient', 'fee_percentage', 'custody_account'}, "engine")

    if 'admin' not in data:
        raise ValueError("Missing required 'admin' in engine")
    admin = _require_str(data, 'admin', "engine")

    fee_recipient = admin
    if 'fee_recipient' in data:
        fee_recipient = _require_str(data, 'fee_recipient', "engine")

    custody_account = DEFAULT_CUSTODY_ACCOUNT
    if 'custody_account' in data:
        custody_account = _require_str(data, 'custody_account', "engine")

    fee_percentage = data.get('fee_percentage', DEFAULT_FEE_PERCENTAGE)
    if isinstance(fee_percentage, bool) or not isinstance(fee_percentage, int):
        raise ValueError("'fee_percentage' in engine must be an integer (basis points)")

    return EngineSettings(
        admin=admin,
        fee_recipient=fee_recipient,
        fee_percentage=fee_percentage,
        custody_account=custody_account
    )


def _parse_storage(data: Dict) -> StorageConfig:
    _check_keys(data, {'db_path'}, "storage")
    if 'db_path' not in data:
        return StorageConfig()
    return StorageConfig(db_path=_require_str(data, 'db_path', "storage"))


def _parse_keeper(data: Dict) -> KeeperConfig:
    _check_keys(data, {'schedule', 'notice_window_hours', 'catch_up_past_due'}, "keeper")

    schedule = DEFAULT_KEEPER_SCHEDULE
    if 'schedule' in data:
        schedule = _require_str(data, 'schedule', "keeper")

    window = data.get('notice_window_hours', DEFAULT_NOTICE_WINDOW_HOURS)
    if isinstance(window, bool) or not isinstance(window, int):
        raise ValueError("'notice_window_hours' in keeper must be an integer")

    catch_up = data.get('catch_up_past_due', False)
    if not isinstance(catch_up, bool):
        raise ValueError("'catch_up_past_due' in keeper must be true or false")

    return KeeperConfig(
        schedule=schedule,
        notice_window_hours=window,
        catch_up_past_due=catch_up
    )


def _parse_logging(data: Dict) -> LoggingConfig:
    _check_keys(data, {'level'}, "logging")
    level = data.get('level', "INFO")
    if not isinstance(level, str):
        raise ValueError("'level' in logging must be a string")
    return LoggingConfig(level=level.upper())
