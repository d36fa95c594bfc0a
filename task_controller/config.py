"""
Settings

Loaded once at start-up. Precedence (highest first):
    command-line overrides > environment variables > YAML config file > defaults

YAML config file example:

    port: 8080
    telegram_bot_token: "123456:ABC..."
    telegram_user_id: 123456789
    logging_dir: /var/log/maa-tgbot
    devices:
      - id: 2d9c8f0e-...
        name: Phone
      - id: emulator-5554
        name: Emulator
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError
from .registry import DEFAULT_LOCK_TIMEOUT

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
DEFAULT_HOST = "127.0.0.1"
DEFAULT_LOG_LEVEL = "INFO"

# setting name -> environment variable
ENV_VARS = {
    "host": "CONTROLLER_HOST",
    "port": "CONTROLLER_PORT",
    "telegram_bot_token": "TELEGRAM_BOT_TOKEN",
    "telegram_user_id": "TELEGRAM_USER_ID",
    "logging_dir": "LOG_DIR",
    "log_level": "LOG_LEVEL",
    "lock_timeout": "REGISTRY_LOCK_TIMEOUT",
}


@dataclass(frozen=True)
class Settings:
    port: int
    telegram_bot_token: str
    telegram_user_id: int
    host: str = DEFAULT_HOST
    allowed_devices: Optional[Dict[str, str]] = None
    logging_dir: Optional[Path] = None
    log_level: str = DEFAULT_LOG_LEVEL
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a YAML config file into a dict."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Config file not readable: {path}", path=str(path), error=str(e)) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file invalid: {path}", path=str(path), error=str(e)) from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}", path=str(path))
    return data


def parse_allowed_devices(raw: Any) -> Optional[Dict[str, str]]:
    """Turn the `devices` list into an id -> display name allow-list."""
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ConfigError("devices must be a list of {id, name} entries")

    allowed: Dict[str, str] = {}
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise ConfigError("Every devices entry needs an id", entry=str(entry))
        device_id = str(entry["id"])
        allowed[device_id] = str(entry.get("name") or device_id)
    return allowed


def _pick(
    name: str,
    overrides: Mapping[str, Any],
    environ: Mapping[str, str],
    file_config: Mapping[str, Any],
) -> Any:
    value = overrides.get(name)
    if value is not None:
        return value
    env_value = environ.get(ENV_VARS[name])
    if env_value is not None and env_value.strip() != "":
        return env_value
    return file_config.get(name)


def _require(name: str, value: Any) -> Any:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        raise ConfigError(f"{name} not specified", setting=name)
    return value


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}", setting=name) from None


def load_settings(
    config_file: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build Settings from all sources.

    Args:
        config_file: optional YAML file (falls back to $CONFIG_FILE)
        overrides: values from the command line; None entries are ignored
        environ: environment mapping (defaults to os.environ, for testing)

    Raises:
        ConfigError: a required setting is missing or malformed
    """
    overrides = overrides or {}
    environ = os.environ if environ is None else environ

    if config_file is None and environ.get("CONFIG_FILE"):
        config_file = Path(environ["CONFIG_FILE"])
    file_config = load_config_file(Path(config_file)) if config_file else {}

    def pick(name: str) -> Any:
        return _pick(name, overrides, environ, file_config)

    port = _as_int("port", _require("port", pick("port")))
    token = str(_require("telegram_bot_token", pick("telegram_bot_token")))
    user_id = _as_int("telegram_user_id", _require("telegram_user_id", pick("telegram_user_id")))

    logging_dir = pick("logging_dir")
    lock_timeout = pick("lock_timeout")
    try:
        lock_timeout = float(lock_timeout) if lock_timeout is not None else DEFAULT_LOCK_TIMEOUT
    except (TypeError, ValueError):
        raise ConfigError(f"lock_timeout must be a number, got {lock_timeout!r}") from None

    return Settings(
        port=port,
        telegram_bot_token=token,
        telegram_user_id=user_id,
        host=str(pick("host") or DEFAULT_HOST),
        allowed_devices=parse_allowed_devices(file_config.get("devices")),
        logging_dir=Path(logging_dir).expanduser() if logging_dir else None,
        log_level=str(pick("log_level") or DEFAULT_LOG_LEVEL).upper(),
        lock_timeout=lock_timeout,
    )
