"""FastAPI dependencies resolving the caller and the data access objects."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException

from shopdesk.config.supabase_client import SUPABASE_SERVICE_ROLE_KEY
from shopdesk.services.auth_service import (
    AuthenticationError,
    AuthUser,
    InvalidCredentials,
    fetch_authenticated_user,
)
from shopdesk.services.auth_utils import get_user_id
from shopdesk.services.delivery_dao import SupabaseDeliveryDAO
from shopdesk.services.postgrest_client import extract_bearer_token, service_role_credentials
from shopdesk.services.store_service import (
    SupabaseUnavailable,
    get_driver_for_user,
    get_store_for_owner,
)


async def get_access_token(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> str:
    """Extract the Supabase bearer token from the Authorization header."""

    return extract_bearer_token(authorization)


async def get_authenticated_user(access_token: str = Depends(get_access_token)) -> AuthUser:
    """Verify the bearer token with Supabase Auth before any service-role query runs."""

    claimed_user_id = get_user_id(access_token)
    try:
        user = await fetch_authenticated_user(access_token)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail="Invalid access token") from exc
    except AuthenticationError as exc:
        raise HTTPException(status_code=503, detail="Authentication service unavailable") from exc
    if user.id != claimed_user_id:
        raise HTTPException(status_code=401, detail="Invalid access token")
    return user


async def get_current_store(user: AuthUser = Depends(get_authenticated_user)) -> Dict[str, Any]:
    """Return the store owned by the authenticated user."""

    try:
        store = await asyncio.to_thread(get_store_for_owner, user.id)
    except SupabaseUnavailable as exc:
        raise HTTPException(status_code=503, detail="Supabase is temporarily unreachable") from exc
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    return store


async def get_current_driver(user: AuthUser = Depends(get_authenticated_user)) -> Dict[str, Any]:
    """Return the delivery driver record linked to the authenticated user."""

    try:
        driver = await asyncio.to_thread(get_driver_for_user, user.id)
    except SupabaseUnavailable as exc:
        raise HTTPException(status_code=503, detail="Supabase is temporarily unreachable") from exc
    if not driver:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return driver


def get_actor_label(user: AuthUser = Depends(get_authenticated_user)) -> str:
    """Name written to ``delivery_status_log.changed_by`` for owner actions."""

    return user.email or "store_owner"


def _resolve_postgrest_credentials(access_token: str) -> tuple[str, Optional[str]]:
    """Return the token/api key pair to use with PostgREST."""

    if SUPABASE_SERVICE_ROLE_KEY:
        return SUPABASE_SERVICE_ROLE_KEY, SUPABASE_SERVICE_ROLE_KEY
    return access_token, None


async def get_delivery_dao(
    user: AuthUser = Depends(get_authenticated_user),
    access_token: str = Depends(get_access_token),
) -> SupabaseDeliveryDAO:
    """DAO for dashboard and driver routes; the service role is used only after the token is verified."""

    db_token, api_key = _resolve_postgrest_credentials(access_token)
    return SupabaseDeliveryDAO(db_token, api_key=api_key)


async def get_service_delivery_dao() -> SupabaseDeliveryDAO:
    """DAO for unauthenticated callers (tracking page, provider webhooks)."""

    token, api_key = service_role_credentials()
    return SupabaseDeliveryDAO(token, api_key=api_key)


__all__ = [
    "get_access_token",
    "get_actor_label",
    "get_authenticated_user",
    "get_current_driver",
    "get_current_store",
    "get_delivery_dao",
    "get_service_delivery_dao",
]
