"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (~/.portalcli/config.yaml). load_client_settings()
turns the raw values into the typed ClientSettings the client is built from.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Dict

from dotenv import load_dotenv
import yaml

from portalcli.domain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".portalcli"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_CREDENTIAL_DIR = DEFAULT_CONFIG_DIR / "credentials"
ENV_FILE_NAME = ".env"

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values supplied by the caller of get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: ENV VARS take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.debug("Configuration loading process completed.")


def reset_configuration() -> None:
    """Forgets loaded values so the next load_configuration() re-reads sources."""
    global _config, _loaded
    _config = {}
    _loaded = False


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Turns nested YAML mappings into dotted keys ('api.base_url')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def _coerce(value: str) -> Any:
    """Converts common string forms from the environment to Python values."""
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (key upper-cased, dots become underscores)
    3. YAML config
    4. Default value

    Args:
        key: The configuration key
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace('.', '_')
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {sorted(config_dict)}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Typed Client Settings ---

@dataclass(frozen=True)
class ClientSettings:
    """Everything the client needs, resolved from configuration."""
    base_url: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    mock_fallback_permitted: bool = False
    dev_login_fallback: bool = False
    credential_dir: Path = DEFAULT_CREDENTIAL_DIR
    token_leeway_s: int = 0

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000


def _first(*keys: str, default: Any = None) -> Any:
    for key in keys:
        value = get_config(key)
        if value is not None:
            return value
    return default


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('1', 'yes', 'on', 'true'):
        return True
    if isinstance(value, str) and value.lower() in ('0', 'no', 'off', 'false', ''):
        return False
    if isinstance(value, int):
        return bool(value)
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _as_non_negative_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if number < 0:
        raise ConfigurationError(f"{name} must not be negative, got {number}")
    return number


def load_client_settings(base_url: Optional[str] = None) -> ClientSettings:
    """Builds ClientSettings from the layered configuration.

    Args:
        base_url: Explicit base URL overriding configuration.

    Raises:
        ConfigurationError: If the base URL is missing or a value is malformed.
    """
    load_configuration()
    url = base_url or _first('PORTAL_API_URL', 'api.base_url')
    if not url:
        raise ConfigurationError(
            "No API base URL configured. Set PORTAL_API_URL or api.base_url in "
            f"{DEFAULT_CONFIG_FILE}."
        )

    credential_dir = _first('PORTAL_CREDENTIAL_DIR', 'storage.credential_dir', default=DEFAULT_CREDENTIAL_DIR)
    settings = ClientSettings(
        base_url=str(url).rstrip('/'),
        timeout_ms=_as_non_negative_int(
            'timeout_ms', _first('PORTAL_TIMEOUT_MS', 'api.timeout_ms', default=DEFAULT_TIMEOUT_MS)),
        max_retries=_as_non_negative_int(
            'max_retries', _first('PORTAL_MAX_RETRIES', 'api.max_retries', default=DEFAULT_MAX_RETRIES)),
        base_delay_ms=_as_non_negative_int(
            'base_delay_ms', _first('PORTAL_BASE_DELAY_MS', 'api.base_delay_ms', default=DEFAULT_BASE_DELAY_MS)),
        mock_fallback_permitted=_as_bool(
            'mock_fallback', _first('PORTAL_MOCK_FALLBACK', 'api.mock_fallback', default=False)),
        dev_login_fallback=_as_bool(
            'dev_login_fallback', _first('PORTAL_DEV_LOGIN_FALLBACK', 'auth.dev_login_fallback', default=False)),
        credential_dir=Path(str(credential_dir)).expanduser(),
        token_leeway_s=_as_non_negative_int(
            'token_leeway_s', _first('PORTAL_TOKEN_LEEWAY_S', 'auth.token_leeway_s', default=0)),
    )
    logger.debug(
        f"Client settings resolved: base_url={settings.base_url}, timeout={settings.timeout_ms}ms, "
        f"max_retries={settings.max_retries}, base_delay={settings.base_delay_ms}ms, "
        f"mock_fallback={settings.mock_fallback_permitted}"
    )
    return settings
