"""Refresh-token lifecycle: decoding, renewal and access-token exchange."""

from __future__ import annotations

import base64
import json
import logging
import platform
import time
from dataclasses import dataclass
from typing import Any

import anyio
import httpx

from cx_tools.cli.config import CliConfig, replace_refresh_token
from cx_tools.cli.errors import (
    AuthError,
    CxError,
    DecodeError,
    HttpError,
    NetworkError,
    TokenExpiredError,
)

logger = logging.getLogger(__name__)

REFRESH_ENDPOINT = "auth/jwt/refresh"
ACCESS_ENDPOINT = "auth/jwt"

SECONDS_PER_DAY = 24 * 60 * 60
REFRESH_TOKEN_LIFETIME = 30 * SECONDS_PER_DAY
RENEWAL_THRESHOLD_DAYS = 15

_RECONFIGURE_HINT = 'Please run "cx configure" to get a new token.'


@dataclass(frozen=True)
class TokenExpiry:
    """Issued-at and expiry claims (epoch seconds) of a token."""

    issued_at: int | None
    expires_at: int | None


@dataclass(frozen=True)
class RenewalStatus:
    """Whether a refresh token should be renewed now."""

    needs_renewal: bool
    days_remaining: int | None


def _decode_base64url(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def decode_claims(token: str) -> dict[str, Any]:
    """Decode the payload segment of a JWT without verifying its signature.

    Raises:
        DecodeError: If the token is not three dot-separated base64url segments
            carrying a JSON object.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise DecodeError("Invalid JWT format")
    try:
        payload = json.loads(_decode_base64url(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecodeError(f"Failed to decode JWT: {exc}") from exc
    if not isinstance(payload, dict):
        raise DecodeError("Failed to decode JWT: payload is not an object")
    return payload


def decode_expiry(token: str) -> TokenExpiry:
    """Return the ``iat``/``exp`` claims of a token."""
    claims = decode_claims(token)

    def _as_int(value: Any) -> int | None:
        return int(value) if isinstance(value, (int, float)) else None

    return TokenExpiry(issued_at=_as_int(claims.get("iat")), expires_at=_as_int(claims.get("exp")))


def needs_renewal(token: str, now: float | None = None) -> RenewalStatus:
    """Check the token against the renewal threshold.

    Malformed tokens are reported as due for renewal with zero days left so the
    renewal path gets a chance to replace them.
    """
    try:
        expiry = decode_expiry(token)
    except DecodeError:
        return RenewalStatus(needs_renewal=True, days_remaining=0)

    if expiry.expires_at is None:
        return RenewalStatus(needs_renewal=False, days_remaining=None)

    current = int(time.time() if now is None else now)
    days_remaining = (expiry.expires_at - current) // SECONDS_PER_DAY
    return RenewalStatus(
        needs_renewal=days_remaining < RENEWAL_THRESHOLD_DAYS,
        days_remaining=max(0, days_remaining),
    )


def machine_audience() -> str:
    """Audience claim binding a refresh token to this machine."""
    return platform.node() or "cx-tools"


def _extract_token(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("token"):
        return str(data["token"])
    raise HttpError("Invalid token response - missing token field", response.status_code)


class TokenManager:
    """Owns the refresh token for one invocation.

    Renewal is serialized with a lock and attempted at most once per process, so
    concurrent requests never race to rewrite the token file.
    """

    def __init__(self, config: CliConfig, http: httpx.AsyncClient) -> None:
        self._config = config
        self._http = http
        self._renew_lock = anyio.Lock()
        self._renewal_attempted = False

    @property
    def config(self) -> CliConfig:
        return self._config

    def get_refresh_token(self) -> str:
        """Return the configured refresh token.

        Raises:
            AuthError: If no token is configured.
        """
        token = self._config.refresh_token
        if not token:
            raise AuthError('No refresh token found. Please run "cx configure" first.')
        return token

    async def current_refresh_token(self) -> str:
        """Return a refresh token, renewing it first when it is close to expiry.

        A failed renewal is logged and the existing token is returned; only a
        rejected (expired) token is fatal.
        """
        token = self.get_refresh_token()
        if not needs_renewal(token).needs_renewal:
            return token

        async with self._renew_lock:
            token = self.get_refresh_token()
            if self._renewal_attempted or not needs_renewal(token).needs_renewal:
                return token
            self._renewal_attempted = True

            status = needs_renewal(token)
            logger.info(
                "Refresh token has %s day(s) remaining. Renewing automatically...",
                status.days_remaining,
            )
            try:
                return await self.renew(token)
            except TokenExpiredError:
                raise
            except CxError as exc:
                logger.warning(
                    "Failed to auto-renew refresh token: %s. Continuing with existing token.",
                    exc,
                )
                return token

    async def renew(self, old_token: str) -> str:
        """Exchange a still-valid refresh token for a new 30-day token and persist it.

        Raises:
            TokenExpiredError: If the server rejects the old token.
            HttpError: On any other non-2xx response.
            NetworkError: On transport failure.
        """
        response = await self._post_refresh(
            {"Authorization": f"Bearer {old_token}"},
        )
        if response.status_code == 401:
            raise TokenExpiredError(f"Refresh token expired or invalid. {_RECONFIGURE_HINT}")
        if not response.is_success:
            raise HttpError(
                f"Failed to renew refresh token: HTTP {response.status_code}",
                response.status_code,
            )

        new_token = _extract_token(response)
        self._config.refresh_token = new_token
        if replace_refresh_token(self._config.env_path, new_token):
            logger.info("Refresh token renewed successfully (valid for 30 more days)")
        return new_token

    async def issue_refresh_token(self, username: str, password: str) -> str:
        """Initial exchange of account credentials for a refresh token.

        Raises:
            AuthError: If the credentials are rejected or the exchange fails.
        """
        credentials = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        try:
            response = await self._post_refresh({"Authorization": f"Basic {credentials}"})
        except NetworkError as exc:
            raise AuthError(str(exc)) from exc

        if response.status_code == 401:
            raise AuthError("Invalid username or password")
        if not response.is_success:
            raise AuthError(f"Failed to obtain refresh token: HTTP {response.status_code}")
        try:
            return _extract_token(response)
        except HttpError as exc:
            raise AuthError(str(exc)) from exc

    async def exchange_for_access_token(self, refresh_token: str) -> str:
        """One-shot exchange of a refresh token for a short-lived access token.

        Raises:
            TokenExpiredError: If the refresh token is rejected.
            AuthError: On any other failure.
        """
        try:
            response = await self._http.get(
                ACCESS_ENDPOINT,
                headers={
                    "Authorization": f"Bearer {refresh_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.RequestError as exc:
            raise AuthError(f"Token request failed: {exc}") from exc

        if response.status_code == 401:
            raise TokenExpiredError(f"Refresh token expired or invalid. {_RECONFIGURE_HINT}")
        if not response.is_success:
            raise AuthError(
                f"Failed to get access token: HTTP {response.status_code}"
            )
        try:
            return _extract_token(response)
        except HttpError as exc:
            raise AuthError(f"Token request failed: {exc}") from exc

    async def access_token(self) -> str:
        """Fresh access token for a single request. Never cached."""
        refresh_token = await self.current_refresh_token()
        return await self.exchange_for_access_token(refresh_token)

    async def _post_refresh(self, headers: dict[str, str]) -> httpx.Response:
        body = {"lifetime_seconds": REFRESH_TOKEN_LIFETIME, "audience": machine_audience()}
        try:
            return await self._http.post(
                REFRESH_ENDPOINT,
                json=body,
                headers={**headers, "Accept": "application/json"},
            )
        except httpx.RequestError as exc:
            raise NetworkError(f"Network error: {exc}") from exc
