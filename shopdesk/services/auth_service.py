"""Password login against Supabase Auth."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from shopdesk.config.supabase_client import SUPABASE_ANON_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)


class AuthenticationError(RuntimeError):
    """Base error raised when the auth flow cannot be completed."""


class InvalidCredentials(AuthenticationError):
    """Raised when Supabase explicitly rejects the credentials."""


@dataclass(frozen=True)
class AuthSession:
    """Session fields returned to dashboard and driver clients."""

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    expires_at: int
    user_id: Optional[str] = None


@dataclass(frozen=True)
class AuthUser:
    """Identity confirmed by Supabase Auth for a bearer token."""

    id: str
    email: Optional[str] = None


async def login_with_password(email: str, password: str) -> AuthSession:
    """Perform a password grant request against Supabase."""

    if not SUPABASE_URL or not SUPABASE_ANON_KEY:
        raise AuthenticationError("Supabase is not configured")

    headers = {
        "apikey": SUPABASE_ANON_KEY,
        "Content-Type": "application/json",
    }
    url = f"{SUPABASE_URL.rstrip('/')}/auth/v1/token?grant_type=password"

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(url, json={"email": email, "password": password}, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network layer
        logger.error("Supabase login unreachable: %s", exc)
        raise AuthenticationError("Authentication service unreachable") from exc

    try:
        data = response.json()
    except ValueError:
        data = None

    if response.status_code in (400, 401):
        message = (data or {}).get("error_description") or "Invalid email or password"
        raise InvalidCredentials(message)

    if response.status_code >= 500:
        logger.error("Supabase login failed (%s): %s", response.status_code, data)
        raise AuthenticationError("Authentication service temporarily unavailable")

    if not response.is_success or not isinstance(data, dict):
        detail = (data or {}).get("error_description") or "Could not verify credentials"
        raise AuthenticationError(detail)

    missing = [field for field in ("access_token", "refresh_token", "expires_in") if field not in data]
    if missing:
        logger.error("Supabase login response missing fields: %s", missing)
        raise AuthenticationError("Invalid response from Supabase")

    try:
        expires_in = int(data.get("expires_in") or 0)
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid session expiry from Supabase")

    raw_expires_at = data.get("expires_at")
    try:
        expires_at = int(raw_expires_at) if raw_expires_at is not None else int(time.time()) + expires_in
    except (TypeError, ValueError):
        expires_at = int(time.time()) + expires_in

    user = data.get("user") if isinstance(data.get("user"), dict) else {}
    return AuthSession(
        access_token=str(data["access_token"]),
        refresh_token=str(data["refresh_token"]),
        token_type=str(data.get("token_type") or "bearer"),
        expires_in=expires_in,
        expires_at=expires_at,
        user_id=str(user["id"]) if user.get("id") else None,
    )


async def fetch_authenticated_user(access_token: str) -> AuthUser:
    """Resolve the user behind an access token through Supabase Auth.

    GoTrue checks the signature and expiry, so a token is trusted only once
    this call succeeds.
    """

    if not SUPABASE_URL or not SUPABASE_ANON_KEY:
        raise AuthenticationError("Supabase is not configured")

    headers = {
        "apikey": SUPABASE_ANON_KEY,
        "Authorization": f"Bearer {access_token}",
    }
    url = f"{SUPABASE_URL.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network layer
        logger.error("Supabase user lookup unreachable: %s", exc)
        raise AuthenticationError("Authentication service unreachable") from exc

    if response.status_code in (401, 403):
        raise InvalidCredentials("Invalid access token")
    if not response.is_success:
        logger.error("Supabase user lookup failed (%s)", response.status_code)
        raise AuthenticationError("Authentication service temporarily unavailable")

    try:
        data = response.json()
    except ValueError:
        data = None
    if not isinstance(data, dict) or not data.get("id"):
        raise InvalidCredentials("Invalid access token")
    return AuthUser(id=str(data["id"]), email=data.get("email"))


__all__ = [
    "AuthSession",
    "AuthUser",
    "AuthenticationError",
    "InvalidCredentials",
    "fetch_authenticated_user",
    "login_with_password",
]
