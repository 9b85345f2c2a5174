"""Shared utilities for talking to Supabase/PostgREST."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from fastapi import HTTPException
from postgrest import APIError as PostgrestAPIError
from postgrest import SyncPostgrestClient

from shopdesk.config.supabase_client import (
    SUPABASE_ANON_KEY,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)

logger = logging.getLogger(__name__)


def extract_bearer_token(header_value: Optional[str]) -> str:
    """Return the Bearer token from an Authorization header."""

    if not header_value:
        raise HTTPException(status_code=401, detail="Unauthorized")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    token = parts[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def create_postgrest_client(
    access_token: str,
    *,
    prefer: Optional[str] = None,
    api_key: Optional[str] = None,
) -> SyncPostgrestClient:
    """Instantiate a PostgREST client authenticated with the provided token."""

    resolved_api_key = api_key or SUPABASE_ANON_KEY
    if not SUPABASE_URL or not resolved_api_key:
        raise HTTPException(status_code=500, detail="Supabase is not configured")

    headers: Dict[str, str] = {
        "apikey": resolved_api_key,
        "Accept": "application/json",
    }
    if prefer:
        headers["Prefer"] = prefer

    client = SyncPostgrestClient(f"{SUPABASE_URL.rstrip('/')}/rest/v1", headers=headers)
    client.auth(access_token)
    return client


def quote_filter_value(value: str) -> str:
    """Double-quote a value for a PostgREST logic filter such as ``or=(...)``.

    Commas, dots and parentheses inside the quotes are taken literally.
    """

    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def service_role_credentials() -> Tuple[str, str]:
    """Return (token, api_key) for calls that bypass row level security.

    Public endpoints (tracking, provider webhooks, the chat widget) have no user
    session, so they run with the service role key.
    """

    if not SUPABASE_SERVICE_ROLE_KEY:
        raise HTTPException(status_code=500, detail="Supabase service role is not configured")
    return SUPABASE_SERVICE_ROLE_KEY, SUPABASE_SERVICE_ROLE_KEY


def raise_postgrest_error(exc: PostgrestAPIError, *, context: str) -> None:
    """Map PostgREST errors to FastAPI HTTP exceptions with logging."""

    status_code = postgrest_status(exc)
    detail = exc.message or "Supabase request failed"
    logger.error("%s failed (%s): %s", context, status_code, detail)
    if status_code == 401:
        raise HTTPException(status_code=401, detail="Supabase authentication required") from exc
    if status_code == 403:
        raise HTTPException(status_code=403, detail="Access to this resource is forbidden") from exc
    if status_code == 404:
        raise HTTPException(status_code=404, detail="Resource not found") from exc
    raise HTTPException(status_code=502, detail="Supabase request failed") from exc


def postgrest_status(exc: PostgrestAPIError) -> int:
    """Best effort extraction of an HTTP status code from the API error."""

    try:
        return int(exc.code) if exc.code else 502
    except (TypeError, ValueError):
        return 502


__all__ = [
    "create_postgrest_client",
    "extract_bearer_token",
    "postgrest_status",
    "quote_filter_value",
    "raise_postgrest_error",
    "service_role_credentials",
]
