"""Shared configuration classes for catalogsync.

This module defines:
- ShopConfig: connection settings for the remote catalog API
- SyncSettings: tunables for the sync core (pacing, retries, cache, safety bounds)
- ConfigError: raised when a configuration value cannot be used
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

# Remote API hard limit for the page size of collection endpoints
MAX_PAGE_SIZE = 250


class ConfigError(ValueError):
    """Invalid configuration value."""


@dataclass
class ShopConfig:
    """Configuration for connecting to a shop's Admin API.

    Attributes:
        shop_domain: Shop domain (e.g., "example.myshopify.com").
        access_token: Admin API access token.
        api_version: Admin API version segment of the URL.
        timeout: Request timeout in seconds.
    """

    shop_domain: str
    access_token: str
    api_version: str = "2023-04"
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Normalize shop domain (strip scheme and trailing slash)."""
        domain = self.shop_domain.strip()
        for prefix in ("https://", "http://"):
            if domain.startswith(prefix):
                domain = domain[len(prefix):]
        self.shop_domain = domain.rstrip("/")

    @property
    def base_url(self) -> str:
        """Get the versioned Admin API base URL."""
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"


@dataclass
class SyncSettings:
    """Tunables for the sync core, resolved once per operation.

    Attributes:
        page_size: Items requested per page (capped at MAX_PAGE_SIZE).
        rate_limit_delay: Minimum seconds between two requests.
        max_retries: Retries after the first attempt of a remote call.
        base_delay: Initial backoff delay in seconds.
        max_delay: Upper bound for any backoff delay in seconds.
        cache_ttl_minutes: Default lifetime of cache entries.
        max_cache_entries: Capacity of the in-process cache tier.
        compression_threshold: Serialized size (bytes) above which durable
            cache values are compressed.
        max_items: Safety ceiling on items fetched by one paginated fetch.
        max_batch_size: Number of write operations per audited batch.
        retry_state_max_age: Seconds after which persisted retry state is stale.
        read_only: Refuse to push changes to the remote API.
        purge_cache_on_finish: Sweep expired durable cache entries after a pass.
    """

    page_size: int = MAX_PAGE_SIZE
    rate_limit_delay: float = 0.5
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    cache_ttl_minutes: float = 30.0
    max_cache_entries: int = 500
    compression_threshold: int = 1000
    max_items: int = 10_000
    max_batch_size: int = 250
    retry_state_max_age: float = 24 * 60 * 60
    read_only: bool = False
    purge_cache_on_finish: bool = False

    @property
    def max_attempts(self) -> int:
        """Total attempts allowed for one remote call."""
        return self.max_retries + 1

    @property
    def effective_page_size(self) -> int:
        """Page size clamped to the remote API maximum."""
        return max(1, min(self.page_size, MAX_PAGE_SIZE))

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: If a value is out of range.
        """
        if self.page_size < 1:
            raise ConfigError("page_size must be at least 1")
        if self.rate_limit_delay < 0:
            raise ConfigError("rate_limit_delay cannot be negative")
        if self.max_retries < 0:
            raise ConfigError("max_retries cannot be negative")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigError("backoff delays cannot be negative")
        if self.max_delay < self.base_delay:
            raise ConfigError("max_delay must be >= base_delay")
        if self.cache_ttl_minutes <= 0:
            raise ConfigError("cache_ttl_minutes must be positive")
        if self.max_cache_entries < 1:
            raise ConfigError("max_cache_entries must be at least 1")
        if self.max_items < 1:
            raise ConfigError("max_items must be at least 1")
        if self.max_batch_size < 1:
            raise ConfigError("max_batch_size must be at least 1")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> SyncSettings:
        """Build settings from a loosely typed mapping (e.g. a config file).

        Unknown keys are ignored; missing or blank values fall back to the
        built-in defaults.

        Args:
            values: Mapping of setting name to raw value (often a string).

        Returns:
            Validated SyncSettings.

        Raises:
            ConfigError: If a value cannot be parsed or is out of range.
        """
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            raw = values.get(f.name)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                continue
            kwargs[f.name] = _coerce(f.name, raw, type(getattr(cls, f.name)))

        settings = cls(**kwargs)
        settings.validate()
        return settings


def _coerce(name: str, raw: Any, target: type) -> Any:
    """Convert a raw config value to the type of its default."""
    if target is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("true", "1", "yes", "on"):
            return True
        if text in ("false", "0", "no", "off"):
            return False
        raise ConfigError(f"Invalid boolean for {name}: {raw!r}")
    try:
        if target is int:
            return int(float(raw))
        return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {raw!r}") from e
