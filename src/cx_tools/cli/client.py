"""Async HTTP client helpers for the CLI."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from cx_tools.cli.auth import TokenManager
from cx_tools.cli.config import CliConfig
from cx_tools.cli.errors import CxError, HttpError, NetworkError

logger = logging.getLogger(__name__)

ContentType = Literal["json", "csv", "text"]

REQUEST_TIMEOUT = 30.0
_ACCEPT = "application/json, text/html, text/plain, text/csv, */*"


def create_client(config: CliConfig) -> httpx.AsyncClient:
    """Create an async HTTP client rooted at the configured API base URL."""
    return httpx.AsyncClient(base_url=config.base_url, timeout=REQUEST_TIMEOUT)


@dataclass
class ApiResult:
    """Tagged outcome of an authenticated request."""

    success: bool
    data: Any = None
    content_type: ContentType | None = None
    error: str | None = None
    exception: CxError | None = None

    @classmethod
    def ok(cls, data: Any, content_type: ContentType) -> ApiResult:
        return cls(success=True, data=data, content_type=content_type)

    @classmethod
    def failure(cls, exception: CxError) -> ApiResult:
        return cls(success=False, error=str(exception), exception=exception)

    def unwrap(self) -> Any:
        """Return the payload or raise the carried error."""
        if not self.success:
            raise self.exception or CxError(self.error or "Request failed")
        return self.data


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def decode_response(response: httpx.Response) -> ApiResult:
    """Decode a successful response according to its declared content type."""
    content_type = response.headers.get("content-type", "")
    text = response.text

    if "text/csv" in content_type:
        return ApiResult.ok(text, "csv")
    if "application/json" in content_type or content_type == "":
        if text and _is_json(text):
            return ApiResult.ok(json.loads(text), "json")
        if text:
            return ApiResult.ok(text, "text")
        return ApiResult.ok({}, "json")
    return ApiResult.ok(text, "text")


def error_message(response: httpx.Response) -> str:
    """Build the most useful message for a non-2xx response."""
    content_type = response.headers.get("content-type", "")
    text = response.text
    message = f"HTTP {response.status_code}: {response.reason_phrase}"

    if "application/json" in content_type and text and _is_json(text):
        data = json.loads(text)
        if isinstance(data, dict) and (data.get("error") or data.get("message")):
            message = str(data.get("error") or data.get("message"))
    elif text and "<!DOCTYPE html>" not in text:
        message = text
    return message


class ApiClient:
    """Single choke-point for every call that needs an identity.

    Each request obtains a fresh access token from the token manager, then issues
    the call with a Bearer header. Transport and HTTP failures come back as failed
    ``ApiResult`` values; ``AuthError`` propagates because nothing else can succeed.
    """

    def __init__(self, config: CliConfig, http: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._http = http or create_client(config)
        self.tokens = TokenManager(config, self._http)

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
    ) -> ApiResult:
        """Issue an authenticated request.

        Args:
            endpoint: Path relative to the API base URL
            method: HTTP method
            body: Optional JSON body

        Returns:
            ApiResult with decoded data, or the failure that occurred

        Raises:
            AuthError: If no usable credentials are available
        """
        access_token = await self.tokens.access_token()
        logger.debug("%s %s", method, endpoint)

        try:
            response = await self._http.request(
                method,
                endpoint,
                json=body,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": _ACCEPT,
                },
            )
        except httpx.RequestError as exc:
            return ApiResult.failure(NetworkError(f"Network error: {exc}"))

        if response.is_success:
            return decode_response(response)

        message = error_message(response)
        logger.debug("%s %s failed: %s", method, endpoint, message)
        return ApiResult.failure(HttpError(message, response.status_code))

    async def get(self, endpoint: str) -> ApiResult:
        return await self.request(endpoint, "GET")

    async def post(self, endpoint: str, body: Any) -> ApiResult:
        return await self.request(endpoint, "POST", body)

    async def put(self, endpoint: str, body: Any) -> ApiResult:
        return await self.request(endpoint, "PUT", body)

    async def delete(self, endpoint: str) -> ApiResult:
        return await self.request(endpoint, "DELETE")
