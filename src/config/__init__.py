"""
Configuration Module for the Blog Syndicator.

This module provides configuration loading and management for the syndicator.
Configuration is loaded from config.yml and supports Docker secrets, with
environment variable fallbacks for platform credentials.

Usage:
    >>> from config import load_config
    >>> config = load_config()
    >>> page_id = config.get("facebook", {}).get("page_id")
"""
import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


logger = logging.getLogger(__name__)
DEFAULT_TIMEZONE = "UTC"
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_TOKEN_CACHE_TTL = 3600
DEFAULT_PUBLISH_TIMEOUT = 120

# Environment variables consulted when a credential is not configured in config.yml
CREDENTIAL_ENV_VARS = {
    ("facebook", "access_token"): "FACEBOOK_ACCESS_TOKEN",
    ("facebook", "page_id"): "FACEBOOK_PAGE_ID",
    ("instagram", "access_token"): "INSTAGRAM_ACCESS_TOKEN",
    ("linkedin", "access_token"): "LINKEDIN_ACCESS_TOKEN",
    ("linkedin", "user_id"): "LINKEDIN_USER_ID",
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from config.yml file.

    Args:
        config_path: Path to config.yml file. If None, looks in current directory
                    and parent directories.

    Returns:
        Dictionary containing configuration settings. Falls back to
        get_default_config() when the file is missing or invalid.

    Example:
        >>> config = load_config()
        >>> ttl = config.get("token_cache_ttl_seconds", 3600)
    """
    if config_path is None:
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            candidate = parent / "config.yml"
            if candidate.exists():
                config_path = str(candidate)
                break

        # If still not found, check the project root (where this file is located)
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            candidate = project_root / "config.yml"
            if candidate.exists():
                config_path = str(candidate)

    if config_path is None:
        logger.warning("config.yml not found, using default configuration")
        return get_default_config()

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
            if not isinstance(config, dict):
                logger.warning("Configuration root must be a mapping, using default configuration")
                return get_default_config()
            config["timezone"] = get_timezone_name(config)
            logger.info(f"Loaded configuration from {config_path}")
            return config
    except FileNotFoundError:
        logger.warning(f"Configuration file not found: {config_path}")
        return get_default_config()
    except yaml.YAMLError as e:
        logger.error(f"Error parsing configuration file: {e}")
        return get_default_config()


def get_default_config() -> Dict[str, Any]:
    """Return default configuration when config.yml is not available.

    Returns:
        Dictionary with default configuration values
    """
    return {
        "timezone": DEFAULT_TIMEZONE,
        "site_url": "http://localhost:8000",
        "database_path": "./data/blogs.db",
        "request_timeout_seconds": DEFAULT_REQUEST_TIMEOUT,
        "token_cache_ttl_seconds": DEFAULT_TOKEN_CACHE_TTL,
        "publish_timeout_seconds": DEFAULT_PUBLISH_TIMEOUT,
        "facebook": {
            "enabled": True,
            "access_token_file": "/run/secrets/facebook_access_token",
            "page_id": None
        },
        "instagram": {
            "enabled": False,
            "access_token_file": "/run/secrets/instagram_access_token",
            "container_delay_seconds": 5
        },
        "linkedin": {
            "enabled": False,
            "access_token_file": "/run/secrets/linkedin_access_token"
        },
        "scheduler": {
            "enabled": False,
            "interval_seconds": 60
        },
        "cors": {
            "enabled": False,
            "origins": []
        },
        "pushover": {
            "enabled": False,
            "app_token_file": "/run/secrets/pushover_app_token",
            "user_key_file": "/run/secrets/pushover_user_key"
        }
    }


def get_timezone_name(config: Dict[str, Any]) -> str:
    """Return a validated timezone name from config, with UTC fallback."""
    tz_name = config.get("timezone", DEFAULT_TIMEZONE)
    if not isinstance(tz_name, str) or not tz_name.strip():
        logger.warning(f"Invalid timezone configuration {tz_name!r}; falling back to {DEFAULT_TIMEZONE}")
        return DEFAULT_TIMEZONE

    tz_name = tz_name.strip()
    try:
        ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning(f"Unknown timezone '{tz_name}'; falling back to {DEFAULT_TIMEZONE}")
        return DEFAULT_TIMEZONE

    return tz_name


def get_timezone(config: Dict[str, Any]) -> ZoneInfo:
    """Return a validated ZoneInfo instance from config."""
    return ZoneInfo(get_timezone_name(config))


def read_secret_file(filepath: str) -> Optional[str]:
    """Read a Docker secret from a file.

    Docker secrets are mounted as files in /run/secrets/ directory.
    This function reads the content of the secret file.

    Args:
        filepath: Path to the secret file

    Returns:
        Content of the secret file (stripped of whitespace), or None if file doesn't exist

    Example:
        >>> token = read_secret_file("/run/secrets/facebook_access_token")
    """
    try:
        with open(filepath, "r") as f:
            return f.read().strip()
    except FileNotFoundError:
        logger.debug(f"Secret file not found: {filepath}")
        return None
    except Exception as e:
        logger.error(f"Error reading secret file {filepath}: {e}")
        return None


def get_platform_setting(config: Dict[str, Any], platform: str, key: str) -> Optional[str]:
    """Resolve a platform credential or identifier.

    Lookup order is: inline value in config.yml, then the ``<key>_file``
    secret, then the matching environment variable.

    Args:
        config: Configuration dictionary from load_config()
        platform: Platform section name (e.g. "facebook")
        key: Setting name (e.g. "access_token", "page_id")

    Returns:
        The setting value, or None when it is not configured anywhere
    """
    section = config.get(platform) or {}
    value = section.get(key)
    if value:
        return str(value)

    secret_file = section.get(f"{key}_file")
    if secret_file:
        value = read_secret_file(secret_file)
        if value:
            return value

    env_var = CREDENTIAL_ENV_VARS.get((platform, key))
    if env_var:
        value = os.environ.get(env_var)
        if value:
            return value

    return None
