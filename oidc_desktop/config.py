"""Config discovery and loading for oidc-desktop."""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv

CONFIG_FILE_NAME = "desktop.config.json"

USER_CONFIG_DIR = Path.home() / ".config" / "oidc-desktop"

# Directories to search for the config file, in priority order
CONFIG_SEARCH_DIRS = [
    Path("."),
    USER_CONFIG_DIR,
]

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    USER_CONFIG_DIR / ".env",
]

EXAMPLE_CONFIG = """{
  "app": {
    "apiBaseUrl": "https://api.example.com/api",
    "debugErrorDetails": false
  },
  "oauth": {
    "authority": "https://login.example.com/oauth2/default",
    "clientId": "${OAUTH_CLIENT_ID}",
    "scope": "openid profile offline_access",
    "loopbackPort": 8001
  }
}"""


class ConfigError(Exception):
    """The configuration file is missing required settings."""

    pass


def _resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} patterns in a string from environment variables.

    Missing vars resolve to empty string.
    """
    if "${" not in value:
        return value

    result = value
    for match in re.finditer(r'\$\{([^}]+)\}', value):
        env_var = match.group(1)
        env_value = os.environ.get(env_var, "")
        result = result.replace(match.group(0), env_value)
    return result


def _resolve(data: Any) -> Any:
    """Resolve ${VAR} references in every string of a JSON value."""
    if isinstance(data, str):
        return _resolve_env_vars(data)
    if isinstance(data, dict):
        return {key: _resolve(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_resolve(item) for item in data]
    return data


@dataclass
class OAuthConfiguration:
    """Settings for the authorization server and this client."""

    authority: str
    client_id: str
    scope: str = "openid profile"
    loopback_port: int = 0  # 0 lets the OS assign a port
    callback_path: str = "/callback"
    callback_timeout: float | None = None  # None waits indefinitely


@dataclass
class AppConfiguration:
    """Settings for the application and its API."""

    api_base_url: str = ""
    debug_error_details: bool = False


@dataclass
class Config:
    """Complete oidc-desktop configuration."""

    oauth: OAuthConfiguration
    app: AppConfiguration = field(default_factory=AppConfiguration)
    config_path: Path | None = None
    env_path: Path | None = None


def find_config_file(explicit_path: Path | None = None) -> Path | None:
    """Find the config file, checking the current directory then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for search_dir in CONFIG_SEARCH_DIRS:
        candidate = search_dir / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _parse_number(data: dict[str, Any], key: str, convert: Callable[[Any], Any]) -> Any:
    """Convert an optional numeric oauth setting, or None when it is unset."""
    value = data.get(key)
    if value is None or value == "":
        return None
    try:
        number = convert(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"oauth.{key} must be a number, got {value!r}") from e
    if number < 0:
        raise ConfigError(f"oauth.{key} must not be negative, got {value!r}")
    return number


def parse_oauth_config(data: dict[str, Any]) -> OAuthConfiguration:
    """Parse the "oauth" section.

    Raises:
        ConfigError: If authority or clientId is missing or empty, or
            loopbackPort or callbackTimeout is not a valid number
    """
    missing = [key for key in ("authority", "clientId") if not data.get(key)]
    if missing:
        raise ConfigError(
            f"The oauth section of the configuration is missing: {', '.join(missing)}"
        )

    port = _parse_number(data, "loopbackPort", int)
    if port is not None and port > 65535:
        raise ConfigError(f"oauth.loopbackPort must be at most 65535, got {port}")
    timeout = _parse_number(data, "callbackTimeout", float)
    return OAuthConfiguration(
        authority=data["authority"],
        client_id=data["clientId"],
        scope=data.get("scope") or "openid profile",
        loopback_port=port or 0,
        callback_path=data.get("callbackPath") or "/callback",
        callback_timeout=timeout or None,
    )


def parse_app_config(data: dict[str, Any]) -> AppConfiguration:
    """Parse the "app" section."""
    debug = data.get("debugErrorDetails", False)
    if isinstance(debug, str):
        debug = debug.strip().lower() in ("1", "true", "yes")
    return AppConfiguration(
        api_base_url=(data.get("apiBaseUrl") or "").rstrip("/"),
        debug_error_details=bool(debug),
    )


def load_config(
    config_path: Path | None = None,
    env_path: Path | None = None,
) -> Config:
    """Load configuration from a discovered or explicit path.

    Args:
        config_path: Explicit path to config file (optional)
        env_path: Explicit path to .env file (optional)

    Returns:
        Config object

    Raises:
        FileNotFoundError: If no config file is found
        json.JSONDecodeError: If the config file is invalid JSON
        ConfigError: If required settings are missing
    """
    # Find and load .env file first so ${VAR} references resolve
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    config_file = find_config_file(config_path)
    if config_file is None:
        searched = ", ".join(str(p) for p in CONFIG_SEARCH_DIRS)
        raise FileNotFoundError(
            f"No {CONFIG_FILE_NAME} found.\n\n"
            f"Searched directories:\n"
            f"  {searched}\n\n"
            f"Create a config file for your authorization server. Example:\n\n"
            f"{EXAMPLE_CONFIG}"
        )

    with open(config_file) as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a JSON object")

    data = _resolve(data)
    return Config(
        oauth=parse_oauth_config(data.get("oauth") or {}),
        app=parse_app_config(data.get("app") or {}),
        config_path=config_file,
        env_path=env_file,
    )
