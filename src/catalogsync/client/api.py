"""HTTP gateway for the shop Admin REST API.

This module provides:
- ShopClient: issues single authenticated, paced requests
- ApiResponse: decoded JSON body plus pagination cursor
- Ok / Retryable / Fatal: typed result of one call (GatewayResult)

The gateway never raises for HTTP or transport failures; it returns a
Retryable or Fatal result carrying a structured GatewayError, and the
retry controller decides what to do with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union

import httpx

from catalogsync.client.errors import (
    ErrorCode,
    GatewayError,
    classify_error,
    to_exception,
)
from catalogsync.client.pacing import RequestPacer
from catalogsync.core.config import ShopConfig

logger = logging.getLogger(__name__)

CURSOR_PARAM = "page_info"


@dataclass(frozen=True)
class ApiResponse:
    """Successful API response.

    Attributes:
        data: Decoded JSON body ({} for empty bodies).
        status_code: HTTP status code.
        next_cursor: Continuation cursor from the Link header, if any.
        headers: Response headers (lower-cased names).
    """

    data: dict[str, Any]
    status_code: int = 200
    next_cursor: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Ok:
    """Call succeeded."""

    response: ApiResponse

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Retryable:
    """Call failed with an error expected to clear up on retry."""

    error: GatewayError

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class Fatal:
    """Call failed with an error that must not be retried."""

    error: GatewayError

    @property
    def ok(self) -> bool:
        return False


GatewayResult = Union[Ok, Retryable, Fatal]


def wrap_error(error: GatewayError) -> Retryable | Fatal:
    """Wrap an error in the result type chosen by the retry policy."""
    if classify_error(error).retryable:
        return Retryable(error)
    return Fatal(error)


def unwrap(result: GatewayResult) -> ApiResponse:
    """Return the response of a successful result.

    Raises:
        APIError: (or a subclass) if the result is a failure.
    """
    if isinstance(result, Ok):
        return result.response
    raise to_exception(result.error)


def parse_next_cursor(response: httpx.Response) -> str | None:
    """Extract the next-page cursor from the Link header.

    Args:
        response: HTTP response.

    Returns:
        The page_info value of the rel="next" link, or None.
    """
    next_link = response.links.get("next")
    if not next_link or not next_link.get("url"):
        return None
    cursor = httpx.URL(next_link["url"]).params.get(CURSOR_PARAM)
    return cursor or None


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        detail = body.get("errors") or body.get("error") or body.get("detail")
        if detail:
            return str(detail)
    return response.reason_phrase


class ShopClient:
    """HTTP client for the shop Admin REST API."""

    def __init__(
        self,
        config: ShopConfig,
        pacer: RequestPacer | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Shop connection configuration.
            pacer: Minimum-interval pacer applied before every request.
            transport: Optional httpx transport (tests).
        """
        self._config = config
        self._pacer = pacer or RequestPacer(0.5)
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            headers={
                "X-Shopify-Access-Token": config.access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            transport=transport,
        )
        self.request_count = 0

    @property
    def config(self) -> ShopConfig:
        """Connection configuration."""
        return self._config

    @property
    def pacer(self) -> RequestPacer:
        """Request pacer."""
        return self._pacer

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> ShopClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> GatewayResult:
        """Issue one paced request.

        Args:
            endpoint: Path relative to the versioned API root (e.g. "products.json").
            method: HTTP method.
            params: Query parameters.
            payload: JSON body for POST/PUT.

        Returns:
            Ok with the decoded response, or Retryable/Fatal with the error.
        """
        method = method.upper()
        self._pacer.wait()
        self.request_count += 1
        logger.debug(f"Making {method} request to: {endpoint}")

        json_body = payload if method in ("POST", "PUT") else None
        try:
            response = self._client.request(
                method, endpoint.lstrip("/"), params=params, json=json_body
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Request to {endpoint} timed out: {e}")
            return wrap_error(GatewayError(str(e) or "timeout", ErrorCode.TIMEOUT))
        except httpx.TransportError as e:
            logger.warning(f"Request to {endpoint} failed: {e}")
            return wrap_error(GatewayError(str(e) or "network error", ErrorCode.NETWORK))

        return self._to_result(endpoint, response)

    def _to_result(self, endpoint: str, response: httpx.Response) -> GatewayResult:
        """Convert an HTTP response to a typed result."""
        status = response.status_code
        if status >= 400:
            error = GatewayError(
                message=_error_detail(response),
                code=ErrorCode.HTTP,
                status_code=status,
                retry_after=(
                    parse_retry_after(response.headers.get("Retry-After"))
                    if status == 429
                    else None
                ),
            )
            logger.info(f"API error on {endpoint}: {error}")
            return wrap_error(error)

        data: dict[str, Any] = {}
        if response.content:
            try:
                body = response.json()
            except ValueError:
                return wrap_error(
                    GatewayError(
                        f"Response from {endpoint} is not valid JSON",
                        ErrorCode.INVALID_RESPONSE,
                        status_code=None,
                    )
                )
            if isinstance(body, dict):
                data = body

        return Ok(
            ApiResponse(
                data=data,
                status_code=status,
                next_cursor=parse_next_cursor(response),
                headers={k.lower(): v for k, v in response.headers.items()},
            )
        )

