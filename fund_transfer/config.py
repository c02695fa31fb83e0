"""
Service configuration

Loaded once at startup from a YAML file and never reloaded.

Example:
    sender_keypair: /etc/automated-fund-transfer/validator-keypair.json
    receiver_pubkey: 9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin
    rpc_provider: https://api.mainnet-beta.solana.com
    slack_webhook: https://hooks.slack.com/services/...
    sol_threshold: 7.0
    poll_interval_seconds: 14400
"""

import json
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional

import yaml
from loguru import logger

from .errors import ConfigError

# 1 week worth of SOL required for voting
DEFAULT_SOL_THRESHOLD = 7.0

# Every 4 hours to keep transfer fees low
DEFAULT_POLL_INTERVAL_SECONDS = 14_400

SECONDS_PER_DAY = 86_400

REQUIRED_KEYS = ('sender_keypair', 'receiver_pubkey', 'rpc_provider')

# loguru's built-in levels
LOG_LEVELS = ('TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass
class ServiceConfig:
    """Configuration for the excess funds transfer service"""
    sender_keypair: str
    receiver_pubkey: str
    rpc_provider: str
    slack_webhook: Optional[str] = None
    sol_threshold: float = DEFAULT_SOL_THRESHOLD
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS

    # Tuning
    confirm_timeout_seconds: float = 120.0
    confirm_poll_interval_seconds: float = 2.0
    submit_max_attempts: int = 5
    submit_base_delay_seconds: float = 1.0
    submit_max_delay_seconds: float = 30.0
    request_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def redacted(self) -> Dict:
        """Config for logging, with the keypair path hidden"""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['sender_keypair'] = "[REDACTED]"
        return data

    def validate(self):
        for f in fields(self):
            if f.type is float and not math.isfinite(getattr(self, f.name)):
                raise ConfigError(f"{f.name} must be a finite number, got {getattr(self, f.name)}")
        if not isinstance(self.log_level, str) or self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")
        if self.sol_threshold < 0:
            raise ConfigError(f"sol_threshold must be non-negative, got {self.sol_threshold}")
        if self.poll_interval_seconds <= 0:
            raise ConfigError(f"poll interval must be positive, got {self.poll_interval_seconds}")
        if self.confirm_timeout_seconds <= 0 or self.confirm_poll_interval_seconds <= 0:
            raise ConfigError("confirmation timeout and poll interval must be positive")
        if self.submit_max_attempts < 1:
            raise ConfigError("submit_max_attempts must be at least 1")


def parse_config(raw: Dict) -> ServiceConfig:
    """
    Build a ServiceConfig from a parsed mapping

    poll_interval_days is accepted as an alternative to poll_interval_seconds.

    Raises:
        ConfigError: missing required keys or invalid values
    """
    if not isinstance(raw, dict):
        raise ConfigError("config must be a mapping")

    missing = [key for key in REQUIRED_KEYS if not raw.get(key)]
    if missing:
        raise ConfigError(f"missing required config keys: {', '.join(missing)}")

    values = dict(raw)
    if 'poll_interval_days' in values:
        if 'poll_interval_seconds' in values:
            raise ConfigError("set either poll_interval_seconds or poll_interval_days, not both")
        days = values.pop('poll_interval_days')
        try:
            values['poll_interval_seconds'] = float(days) * SECONDS_PER_DAY
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid poll_interval_days: {days!r}") from e

    known = {f.name for f in fields(ServiceConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {unknown}")

    # Explicit nulls fall back to defaults
    kwargs = {k: v for k, v in values.items() if k in known and v is not None}
    config = ServiceConfig(**kwargs)
    for f in fields(config):
        if f.type in (float, int):
            value = getattr(config, f.name)
            try:
                setattr(config, f.name, f.type(value))
            except (TypeError, ValueError, OverflowError) as e:
                raise ConfigError(f"invalid value for {f.name}: {value!r}") from e

    config.validate()
    return config


def load_config(path: str) -> ServiceConfig:
    """
    Load configuration from a YAML file

    Raises:
        ConfigError: file unreadable, not YAML, or invalid
    """
    config_file = Path(path)
    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"reading config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing config {path}: {e}") from e

    config = parse_config(raw or {})
    logger.info(f"Loaded configuration:\n{json.dumps(config.redacted(), indent=2)}")
    return config
