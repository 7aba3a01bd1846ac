"""Tests for the catalogsync HTTP gateway."""

import json

import httpx
import pytest

from catalogsync.client.api import (
    Fatal,
    Ok,
    Retryable,
    ShopClient,
    parse_retry_after,
    unwrap,
)
from catalogsync.client.errors import AuthenticationError, ErrorCode
from catalogsync.client.pacing import RequestPacer
from catalogsync.core.config import ShopConfig
from tests.fakes import FakeScheduler

BASE = "https://test.myshopify.com/admin/api/2023-04"


def make_client(config: ShopConfig, scheduler: FakeScheduler) -> ShopClient:
    """Create a ShopClient paced by a fake scheduler."""
    return ShopClient(config, RequestPacer(0.5, scheduler))


class TestShopClientSuccess:
    """Tests for successful requests."""

    def test_get_returns_ok(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """Should decode the JSON body into an Ok result."""
        httpx_mock.add_response(url=f"{BASE}/shop.json", json={"shop": {"name": "Test"}})

        with make_client(shop_config, scheduler) as client:
            result = client.request("shop.json")

        assert isinstance(result, Ok)
        assert result.ok is True
        assert result.response.data == {"shop": {"name": "Test"}}
        assert result.response.next_cursor is None

    def test_sends_access_token(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """Should authenticate with the access token header."""
        httpx_mock.add_response(url=f"{BASE}/shop.json", json={})

        with make_client(shop_config, scheduler) as client:
            client.request("shop.json")

        request = httpx_mock.get_request()
        assert request.headers["X-Shopify-Access-Token"] == "shpat_test"

    def test_query_params(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """Should send query parameters."""
        httpx_mock.add_response(url=f"{BASE}/products.json?limit=5", json={"products": []})

        with make_client(shop_config, scheduler) as client:
            result = client.request("products.json", params={"limit": 5})

        assert isinstance(result, Ok)

    def test_next_cursor_from_link_header(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """Should extract page_info of the rel=next link."""
        httpx_mock.add_response(
            url=f"{BASE}/products.json",
            json={"products": [{"id": 1}]},
            headers={
                "Link": (
                    f'<{BASE}/products.json?limit=1&page_info=prev123>; rel="previous", '
                    f'<{BASE}/products.json?limit=1&page_info=next456>; rel="next"'
                )
            },
        )

        with make_client(shop_config, scheduler) as client:
            result = client.request("products.json")

        assert isinstance(result, Ok)
        assert result.response.next_cursor == "next456"

    def test_post_sends_json_body(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """POST should send the payload as JSON."""
        httpx_mock.add_response(
            url=f"{BASE}/products.json", method="POST", status_code=201, json={"product": {"id": 7}}
        )

        with make_client(shop_config, scheduler) as client:
            result = client.request(
                "products.json", method="POST", payload={"product": {"title": "Hat"}}
            )

        assert isinstance(result, Ok)
        assert result.response.status_code == 201
        assert json.loads(httpx_mock.get_request().content) == {"product": {"title": "Hat"}}

    def test_requests_are_paced(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """Consecutive requests should wait for the pacing interval."""
        httpx_mock.add_response(url=f"{BASE}/shop.json", json={})
        httpx_mock.add_response(url=f"{BASE}/shop.json", json={})

        with make_client(shop_config, scheduler) as client:
            client.request("shop.json")
            client.request("shop.json")
            assert client.request_count == 2

        assert scheduler.sleeps == [0.5]


class TestShopClientErrors:
    """Tests for failure results."""

    def test_rate_limit_is_retryable(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """429 should be Retryable and carry Retry-After."""
        httpx_mock.add_response(
            url=f"{BASE}/products.json",
            status_code=429,
            headers={"Retry-After": "2.0"},
            json={"errors": "Exceeded 2 calls per second"},
        )

        with make_client(shop_config, scheduler) as client:
            result = client.request("products.json")

        assert isinstance(result, Retryable)
        assert result.error.status_code == 429
        assert result.error.retry_after == 2.0
        assert "Exceeded" in result.error.message

    def test_unauthorized_is_fatal(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """401 should be Fatal."""
        httpx_mock.add_response(
            url=f"{BASE}/shop.json", status_code=401, json={"errors": "Invalid API key"}
        )

        with make_client(shop_config, scheduler) as client:
            result = client.request("shop.json")

        assert isinstance(result, Fatal)
        assert result.error.status_code == 401
        assert result.error.retry_after is None

    def test_server_error_is_retryable(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """5xx should be Retryable."""
        httpx_mock.add_response(url=f"{BASE}/shop.json", status_code=503)

        with make_client(shop_config, scheduler) as client:
            result = client.request("shop.json")

        assert isinstance(result, Retryable)
        assert result.error.code == ErrorCode.HTTP

    def test_connection_error(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """Transport failures should become a NETWORK error."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with make_client(shop_config, scheduler) as client:
            result = client.request("shop.json")

        assert isinstance(result, Retryable)
        assert result.error.code == ErrorCode.NETWORK
        assert result.error.status_code is None

    def test_timeout(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """Timeouts should become a TIMEOUT error."""
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"))

        with make_client(shop_config, scheduler) as client:
            result = client.request("shop.json")

        assert isinstance(result, Retryable)
        assert result.error.code == ErrorCode.TIMEOUT

    def test_invalid_json(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """A non-JSON success body should be an INVALID_RESPONSE error."""
        httpx_mock.add_response(url=f"{BASE}/shop.json", text="<html>oops</html>")

        with make_client(shop_config, scheduler) as client:
            result = client.request("shop.json")

        assert not result.ok
        assert isinstance(result, Retryable)
        assert result.error.code == ErrorCode.INVALID_RESPONSE

    def test_unwrap_raises_typed_exception(self, httpx_mock, shop_config, scheduler) -> None:  # type: ignore[no-untyped-def]
        """unwrap should raise the exception matching the error."""
        httpx_mock.add_response(url=f"{BASE}/shop.json", status_code=401, json={})

        with make_client(shop_config, scheduler) as client:
            result = client.request("shop.json")

        with pytest.raises(AuthenticationError):
            unwrap(result)


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_seconds(self) -> None:
        """Should parse numeric seconds."""
        assert parse_retry_after("3") == 3.0

    def test_missing_or_invalid(self) -> None:
        """Should return None for missing, non-numeric or negative values."""
        assert parse_retry_after(None) is None
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
        assert parse_retry_after("-1") is None
