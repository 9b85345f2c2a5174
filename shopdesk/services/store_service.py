"""Lookups resolving the store or driver record behind an authenticated user."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

import logging
import time

from httpx import HTTPError as HttpxError

from shopdesk.config.supabase_client import SUPABASE_URL, get_supabase_client

logger = logging.getLogger(__name__)
T = TypeVar("T")

STORE_COLUMNS = "id, name, owner_id, delivery_settings, shipping_settings, chatbot_settings, webhook_secret"
DRIVER_COLUMNS = "id, name, phone, store_id, user_id, status, vehicle_type, current_location"


class SupabaseUnavailable(RuntimeError):
    """Raised when Supabase cannot be reached after retries."""


def _retry_supabase_call(
    operation: Callable[[], T],
    *,
    retries: int = 2,
    backoff_seconds: Sequence[float] = (0.2, 0.5, 1.0),
    label: str,
) -> T:
    """Run a Supabase call with a short retry/backoff strategy."""

    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        start = time.monotonic()
        try:
            result = operation()
            duration_ms = (time.monotonic() - start) * 1000
            logger.debug(
                "Supabase call succeeded",
                extra={"label": label, "duration_ms": round(duration_ms, 2), "supabase_url": SUPABASE_URL},
            )
            return result
        except HttpxError as exc:
            duration_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Supabase call failed",
                extra={
                    "label": label,
                    "attempt": attempt,
                    "duration_ms": round(duration_ms, 2),
                    "supabase_url": SUPABASE_URL,
                    "error": str(exc),
                },
            )
            if attempt >= attempts:
                raise SupabaseUnavailable("Supabase unreachable") from exc
            time.sleep(backoff_seconds[min(attempt - 1, len(backoff_seconds) - 1)])
    raise SupabaseUnavailable("Supabase unreachable")


def _require_client():
    client = get_supabase_client()
    if client is None:
        raise SupabaseUnavailable("Supabase client is not configured")
    return client


def get_store_for_owner(user_id: str) -> Optional[Dict[str, Any]]:
    """Return the store owned by ``user_id`` or None."""

    client = _require_client()

    def _fetch() -> Any:
        return (
            client.table("stores")
            .select(STORE_COLUMNS)
            .eq("owner_id", user_id)
            .order("created_at", desc=False)
            .limit(1)
            .execute()
        )

    response = _retry_supabase_call(_fetch, label="get_store_for_owner")
    rows = response.data or []
    return rows[0] if rows else None


def get_driver_for_user(user_id: str) -> Optional[Dict[str, Any]]:
    """Return the delivery driver record linked to the auth user, if any."""

    client = _require_client()

    def _fetch() -> Any:
        return (
            client.table("delivery_drivers")
            .select(DRIVER_COLUMNS)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )

    response = _retry_supabase_call(_fetch, label="get_driver_for_user")
    rows = response.data or []
    return rows[0] if rows else None


__all__ = [
    "DRIVER_COLUMNS",
    "STORE_COLUMNS",
    "SupabaseUnavailable",
    "get_driver_for_user",
    "get_store_for_owner",
]
