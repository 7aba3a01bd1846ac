"""Shared fixtures."""

import logging
from collections.abc import Iterator

import pytest

from catalogsync.client.kvstore import MemoryKeyValueStore
from catalogsync.core.config import ShopConfig
from tests.fakes import FakeScheduler


@pytest.fixture
def scheduler() -> FakeScheduler:
    """Manual clock for pacing and backoff."""
    return FakeScheduler()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    """In-memory durable store."""
    return MemoryKeyValueStore()


@pytest.fixture
def shop_config() -> ShopConfig:
    """Connection settings for a test shop."""
    return ShopConfig(shop_domain="test.myshopify.com", access_token="shpat_test")


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Drop handlers installed by CLI invocations."""
    yield
    logger = logging.getLogger("catalogsync")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
