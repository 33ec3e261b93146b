"""Provides configuration loading and the client configuration objects.

Supports loading from .env files, environment variables, and a dedicated
configuration file (~/.pcopeople/config.yaml). `build_client_config` turns
the loaded settings into a `PcoClientConfig`.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from pcopeople.core.exceptions import ConfigurationError
from pcopeople.domain.models.common import AuthType, TokenResponse

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".pcopeople"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"

DEFAULT_BASE_URL = "https://api.planningcenteronline.com/people/v2"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_FIELD_CACHE_TTL_SECONDS = 300.0

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from the YAML file and a .env file.

    Priority order (highest to lowest):
    1. Test overrides (`set_config_for_testing`)
    2. Environment variables (including those loaded from .env)
    3. YAML configuration file
    4. Defaults passed to `get_config`

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above the current directory.")

    _loaded = True


def _coerce_env_value(value: str) -> Any:
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


def _lookup_nested(key: str) -> Any:
    """Resolves a dotted key ("logging.level") against the loaded YAML."""
    if key in _config:
        return _config[key]
    node: Any = _config
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Dotted keys are looked up in the environment with dots replaced by
    underscores (``logging.level`` -> ``LOGGING_LEVEL``).

    Args:
        key: The configuration key
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    load_configuration()

    env_key = key.upper().replace('.', '_')
    if env_key in os.environ:
        return _coerce_env_value(os.environ[env_key])

    value = _lookup_nested(key)
    if value is not None:
        return value

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    try:
        cwd = Path.cwd()
        for path in [cwd] + list(cwd.parents):
            env_path = path / ENV_FILE_NAME
            if env_path.is_file():
                return env_path
    except OSError as e:
        logger.warning(f"Error searching for .env file: {e}")
    return None


def set_config(key: str, value: Any) -> None:
    """Sets a configuration value for the rest of the process.

    Args:
        key: Configuration key (e.g., 'logging.level')
        value: Value to set
    """
    logger.debug(f"Setting config: {key} = {value}")
    _config[key] = value


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Client configuration objects ---

RefreshCallback = Callable[[TokenResponse], Optional[Awaitable[None]]]
RefreshFailureCallback = Callable[[BaseException], Optional[Awaitable[None]]]


@dataclass
class PersonalAccessTokenAuth:
    """HTTP Basic credentials of a personal access token."""
    app_id: str
    secret: str
    type: AuthType = field(default=AuthType.PERSONAL_ACCESS_TOKEN, init=False)

    def __repr__(self) -> str:
        return f"PersonalAccessTokenAuth(app_id={self.app_id!r}, secret='***')"


@dataclass
class OAuthAuth:
    """OAuth 2.0 bearer credentials, refreshed on 401 when possible."""
    access_token: str
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    on_refresh: Optional[RefreshCallback] = None
    on_refresh_failure: Optional[RefreshFailureCallback] = None
    type: AuthType = field(default=AuthType.OAUTH, init=False)

    def __repr__(self) -> str:
        return f"OAuthAuth(access_token='***', has_refresh_token={self.refresh_token is not None})"


@dataclass
class RateLimitSettings:
    limit: int = 100
    window_seconds: float = 20.0


@dataclass
class RetrySettings:
    enabled: bool = True
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0


@dataclass
class PcoClientConfig:
    """Everything the client needs to talk to the API."""
    auth: Union[PersonalAccessTokenAuth, OAuthAuth]
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    headers: Dict[str, str] = field(default_factory=dict)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    cache_field_definitions: bool = True
    field_cache_ttl_seconds: float = DEFAULT_FIELD_CACHE_TTL_SECONDS
    # Event handlers registered on the client's emitter at construction time
    events: Dict[str, Callable[..., Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        self.base_url = self.base_url.rstrip('/')


def _get_str(*keys: str) -> Optional[str]:
    for key in keys:
        value = get_config(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def build_client_config() -> PcoClientConfig:
    """Builds a `PcoClientConfig` from environment, .env and YAML settings.

    OAuth credentials win over a personal access token when both are set.

    Raises:
        ConfigurationError: If no credentials are configured.
    """
    access_token = _get_str('PCO_ACCESS_TOKEN', 'pco.access_token')
    app_id = _get_str('PCO_APP_ID', 'pco.app_id')
    app_secret = _get_str('PCO_APP_SECRET', 'pco.app_secret')

    auth: Union[PersonalAccessTokenAuth, OAuthAuth]
    if access_token:
        auth = OAuthAuth(
            access_token=access_token,
            refresh_token=_get_str('PCO_REFRESH_TOKEN', 'pco.refresh_token'),
            client_id=_get_str('PCO_CLIENT_ID', 'pco.client_id'),
            client_secret=_get_str('PCO_CLIENT_SECRET', 'pco.client_secret'),
        )
    elif app_id and app_secret:
        auth = PersonalAccessTokenAuth(app_id=app_id, secret=app_secret)
    else:
        raise ConfigurationError(
            "No Planning Center credentials configured. Set PCO_APP_ID and PCO_APP_SECRET "
            "or PCO_ACCESS_TOKEN (environment, .env or ~/.pcopeople/config.yaml)."
        )

    try:
        config = PcoClientConfig(
            auth=auth,
            base_url=_get_str('PCO_BASE_URL', 'pco.base_url') or DEFAULT_BASE_URL,
            timeout_seconds=float(get_config('PCO_TIMEOUT_SECONDS', get_config('pco.timeout_seconds', DEFAULT_TIMEOUT_SECONDS))),
            rate_limit=RateLimitSettings(
                limit=int(get_config('PCO_RATE_LIMIT', get_config('pco.rate_limit', 100))),
                window_seconds=float(get_config('PCO_RATE_WINDOW_SECONDS', get_config('pco.rate_window_seconds', 20.0))),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid client configuration: {e}") from e

    logger.debug(f"Built client config: auth={auth.type.value}, base_url={config.base_url}")
    return config
