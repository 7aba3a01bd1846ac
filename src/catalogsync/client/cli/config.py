"""Configuration utilities for catalogsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import fields
from pathlib import Path

from catalogsync.core.config import ConfigError, ShopConfig, SyncSettings

TOKEN_ENV_VAR = "CATALOGSYNC_ACCESS_TOKEN"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_config_dir() -> Path:
    """Get the configuration directory for catalogsync.

    Returns:
        Path to ~/.catalogsync or equivalent.
    """
    return Path.home() / ".catalogsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the SQLite state database."""
    return get_config_dir() / "state.db"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def setting_names() -> list[str]:
    """Names of the sync settings that can be stored in the config file."""
    return [f.name for f in fields(SyncSettings)]


def build_shop_config(config: dict[str, str]) -> ShopConfig:
    """Build the shop connection settings.

    The access token comes from the environment when set, otherwise from
    the config file.

    Raises:
        ConfigError: If the shop domain or access token is missing.
    """
    domain = config.get("shop_domain", "").strip()
    token = os.environ.get(TOKEN_ENV_VAR) or config.get("access_token", "")
    if not domain:
        raise ConfigError("Shop domain not configured. Run 'catalogsync configure' first.")
    if not token:
        raise ConfigError(
            f"Access token not configured. Run 'catalogsync configure' or set {TOKEN_ENV_VAR}."
        )
    kwargs: dict[str, str] = {}
    if config.get("api_version"):
        kwargs["api_version"] = config["api_version"]
    return ShopConfig(shop_domain=domain, access_token=token, **kwargs)


def build_settings(config: dict[str, str]) -> SyncSettings:
    """Build sync settings from the config file values.

    Raises:
        ConfigError: If a stored value is invalid.
    """
    return SyncSettings.from_mapping(config)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the catalogsync logger.

    Args:
        verbose: Log debug messages instead of info and above.
    """
    root_logger = logging.getLogger("catalogsync")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Replace handlers so repeated invocations don't duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
