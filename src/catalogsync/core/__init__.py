"""Core module - Shared configuration and types."""

from catalogsync.core.config import (
    MAX_PAGE_SIZE,
    ConfigError,
    ShopConfig,
    SyncSettings,
)
from catalogsync.core.types import AuditEventType, ChangeKind, ErrorCategory

__all__ = [
    # Config
    "MAX_PAGE_SIZE",
    "ConfigError",
    "ShopConfig",
    "SyncSettings",
    # Types
    "AuditEventType",
    "ChangeKind",
    "ErrorCategory",
]
