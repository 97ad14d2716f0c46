"""HTTP plumbing shared by the Git platform adapters.

Adapters hold a ``RestTransport`` rather than inheriting from a base
class. The transport owns the ``httpx.AsyncClient`` and maps HTTP status
codes and transport failures onto the tamma error taxonomy.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from tamma.core.errors import (
    AuthFailedError,
    InvalidRequestError,
    NotFoundError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    UpstreamError,
)
from tamma.core.http import header, retry_after_from_headers

logger = logging.getLogger(__name__)

_INVALID_STATUSES = frozenset({400, 405, 409, 422})


def _api_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        for key in ("message", "error_description", "error"):
            value = body.get(key)
            if value:
                return str(value)
    return ""


def _rate_limit_exhausted(response: httpx.Response) -> bool:
    remaining = header(response.headers, "x-ratelimit-remaining") or header(
        response.headers, "ratelimit-remaining"
    )
    if remaining is not None and remaining.strip() == "0":
        return True
    return header(response.headers, "retry-after") is not None


def map_status(platform_id: str, response: httpx.Response) -> ProviderError:
    """Map a non-2xx response to exactly one taxonomy error."""
    status = response.status_code
    detail = _api_message(response)
    msg = f"{response.request.method} {response.request.url.path}: HTTP {status}"
    if detail:
        msg = f"{msg} {detail}"

    if status == 429 or (status == 403 and _rate_limit_exhausted(response)):
        return RateLimitedError(
            platform_id, retry_after=retry_after_from_headers(response.headers)
        )
    if status in (401, 403):
        return AuthFailedError(platform_id, msg)
    if status == 404:
        return NotFoundError(platform_id, msg)
    if status in _INVALID_STATUSES:
        return InvalidRequestError(platform_id, msg)
    return UpstreamError(platform_id, msg)


def map_transport_error(platform_id: str, e: httpx.HTTPError) -> ProviderError:
    if isinstance(e, httpx.TimeoutException):
        return ProviderTimeoutError(platform_id, str(e) or "Request timed out")
    return UpstreamError(platform_id, str(e) or type(e).__name__)


class RestTransport:
    """Authenticated JSON-over-HTTP calls against one platform API."""

    def __init__(self, platform_id: str, client: httpx.AsyncClient) -> None:
        self.platform_id = platform_id
        self._client: httpx.AsyncClient | None = client

    @property
    def closed(self) -> bool:
        return self._client is None

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send a request and return the 2xx response.

        Raises:
            ProviderError: Mapped from the status code or transport failure.
        """
        if self._client is None:
            raise UpstreamError(self.platform_id, "Platform client is closed")
        try:
            response = await self._client.request(
                method, path, params=params, json=json
            )
        except httpx.HTTPError as e:
            raise map_transport_error(self.platform_id, e) from e

        if response.is_error:
            error = map_status(self.platform_id, response)
            logger.debug("%s %s failed: %s", method, path, error.code)
            raise error
        return response

    async def get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        response = await self.request("GET", path, params=params)
        return response.json()

    async def send_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self.request(method, path, json=json, params=params)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()


def build_client(
    base_url: str,
    headers: dict[str, str],
    timeout: float,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        headers=headers,
        timeout=timeout,
    )
