"""Supabase/PostgREST data access for deliveries, drivers and payouts."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar
from uuid import uuid4

from fastapi import HTTPException
from httpx import HTTPError as HttpxError
from postgrest import APIError as PostgrestAPIError

from shopdesk.config.supabase_client import PROOF_PHOTO_BUCKET, get_supabase_client
from shopdesk.services.postgrest_client import create_postgrest_client, quote_filter_value, raise_postgrest_error
from shopdesk.services.status_machine import ACTIVE_DELIVERY_STATUSES

logger = logging.getLogger(__name__)
T = TypeVar("T")

DELIVERY_LIST_COLUMNS = (
    "id, delivery_number, status, delivery_type, provider_name, "
    "delivery_address, customer_name, customer_phone, "
    "estimated_delivery_time, actual_delivery_time, "
    "delivery_fee, notes, failure_reason, created_at, updated_at, "
    "orders(id, order_number, total_amount), "
    "delivery_drivers(id, name, phone, vehicle_type)"
)
DELIVERY_DETAIL_COLUMNS = (
    "*, orders(id, order_number, total_amount, status), "
    "delivery_drivers(id, name, phone, vehicle_type, status)"
)
ANALYTICS_COLUMNS = (
    "id, status, delivery_fee, driver_id, created_at, actual_delivery_time, "
    "delivery_drivers(id, name, avg_rating, rating_count)"
)
CANDIDATE_DRIVER_COLUMNS = "id, name, status, vehicle_type, current_location"
PAYOUT_COLUMNS = "*, delivery_drivers(id, name, phone)"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseDeliveryDAO:
    """DAO relying on Supabase/PostgREST for delivery data.

    Store and driver scoping is passed explicitly to every method so the same
    DAO serves the owner dashboard, the driver portal and the public endpoints.
    """

    def __init__(self, access_token: str, *, api_key: Optional[str] = None):
        self.access_token = access_token
        self.api_key = api_key

    def _client(self, *, prefer: Optional[str] = None):
        return create_postgrest_client(self.access_token, prefer=prefer, api_key=self.api_key)

    async def _run(self, request: Callable[[], T], *, context: str) -> T:
        try:
            return await asyncio.to_thread(request)
        except PostgrestAPIError as exc:  # pragma: no cover - network interaction
            raise_postgrest_error(exc, context=context)
        except HttpxError as exc:  # pragma: no cover - network interaction
            logger.error("Supabase %s unreachable: %s", context, exc)
            raise HTTPException(status_code=503, detail="Supabase is temporarily unreachable") from exc

    async def _first(self, request: Callable[[], Any], *, context: str) -> Optional[Dict[str, Any]]:
        rows = await self._run(lambda: request().data or [], context=context)
        return rows[0] if rows else None

    # Deliveries

    async def list_deliveries(
        self,
        store_id: str,
        *,
        status: Optional[str] = None,
        driver_id: Optional[str] = None,
        delivery_type: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return one page of the store's deliveries, newest first, and the total count."""

        def _request() -> Tuple[List[Dict[str, Any]], int]:
            with self._client() as client:
                query = (
                    client.table("deliveries")
                    .select(DELIVERY_LIST_COLUMNS, count="exact")
                    .eq("store_id", store_id)
                    .order("created_at", desc=True)
                )
                if status:
                    query = query.eq("status", status)
                if driver_id:
                    query = query.eq("driver_id", driver_id)
                if delivery_type:
                    query = query.eq("delivery_type", delivery_type)
                if search:
                    pattern = quote_filter_value(f"%{search}%")
                    query = query.or_(
                        f"delivery_number.ilike.{pattern},customer_name.ilike.{pattern},customer_phone.ilike.{pattern}"
                    )
                response = query.range(offset, offset + limit - 1).execute()
                return response.data or [], response.count or 0

        return await self._run(_request, context="list deliveries")

    async def get_delivery(
        self,
        delivery_id: str,
        *,
        store_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        columns: str = DELIVERY_DETAIL_COLUMNS,
    ) -> Optional[Dict[str, Any]]:
        def _request():
            with self._client() as client:
                query = client.table("deliveries").select(columns).eq("id", delivery_id)
                if store_id:
                    query = query.eq("store_id", store_id)
                if driver_id:
                    query = query.eq("driver_id", driver_id)
                return query.limit(1).execute()

        return await self._first(_request, context="delivery lookup")

    async def get_delivery_by_number(self, delivery_number: str) -> Optional[Dict[str, Any]]:
        def _request():
            with self._client() as client:
                return (
                    client.table("deliveries")
                    .select(
                        "id, store_id, driver_id, delivery_number, status, delivery_address, customer_name, "
                        "estimated_delivery_time, actual_delivery_time, scheduled_date, scheduled_time_slot, "
                        "created_at, delivery_drivers(name, vehicle_type)"
                    )
                    .eq("delivery_number", delivery_number)
                    .limit(1)
                    .execute()
                )

        return await self._first(_request, context="tracking lookup")

    async def get_delivery_by_tracking(self, store_id: str, tracking_id: str) -> Optional[Dict[str, Any]]:
        def _request():
            with self._client() as client:
                return (
                    client.table("deliveries")
                    .select("id, status, driver_id, order_id, delivery_number, delivery_drivers(name)")
                    .eq("store_id", store_id)
                    .eq("provider_tracking_id", tracking_id)
                    .limit(1)
                    .execute()
                )

        return await self._first(_request, context="provider delivery lookup")

    async def list_driver_deliveries(self, driver_id: str, *, status: Optional[str] = None) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                query = (
                    client.table("deliveries")
                    .select(
                        "id, delivery_number, status, delivery_address, customer_name, customer_phone, "
                        "estimated_delivery_time, scheduled_date, scheduled_time_slot, notes, "
                        "delivery_fee, proof_photo_url, created_at, orders(id, order_number, total_amount)"
                    )
                    .eq("driver_id", driver_id)
                    .order("created_at", desc=True)
                )
                if status:
                    query = query.eq("status", status)
                return query.limit(100).execute().data or []

        return await self._run(_request, context="driver deliveries")

    async def insert_delivery(self, row: Dict[str, Any]) -> Dict[str, Any]:
        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                response = client.table("deliveries").insert(row).execute()
                if not response.data:
                    raise HTTPException(status_code=502, detail="Failed to create delivery")
                return response.data[0]

        return await self._run(_request, context="create delivery")

    async def update_delivery(self, delivery_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        payload = {**changes, "updated_at": utc_now_iso()}

        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                response = client.table("deliveries").update(payload).eq("id", delivery_id).execute()
                if not response.data:
                    raise HTTPException(status_code=404, detail="Delivery not found")
                return response.data[0]

        return await self._run(_request, context="update delivery")

    async def fetch_deliveries_since(self, store_id: str, since: datetime) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("deliveries")
                    .select(ANALYTICS_COLUMNS)
                    .eq("store_id", store_id)
                    .gte("created_at", since.isoformat())
                    .order("created_at", desc=False)
                    .execute()
                    .data
                    or []
                )

        return await self._run(_request, context="delivery analytics")

    async def fetch_delivered_for_period(
        self,
        store_id: str,
        period_start: str,
        period_end: str,
        *,
        driver_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                query = (
                    client.table("deliveries")
                    .select("id, driver_id, delivery_fee")
                    .eq("store_id", store_id)
                    .eq("status", "delivered")
                    .not_.is_("driver_id", "null")
                    .gte("created_at", f"{period_start}T00:00:00")
                    .lte("created_at", f"{period_end}T23:59:59")
                )
                if driver_id:
                    query = query.eq("driver_id", driver_id)
                return query.execute().data or []

        return await self._run(_request, context="payout deliveries")

    # Status log

    async def insert_status_log(
        self,
        delivery_id: str,
        status: str,
        *,
        changed_by: str,
        notes: Optional[str] = None,
        location: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append a status log row. A failed insert never fails the status change."""

        row = {
            "delivery_id": delivery_id,
            "status": status,
            "changed_by": changed_by,
            "notes": notes,
            "location": location,
        }

        def _request() -> None:
            with self._client(prefer="return=minimal") as client:
                client.table("delivery_status_log").insert(row).execute()

        try:
            await asyncio.to_thread(_request)
        except (PostgrestAPIError, HttpxError) as exc:  # pragma: no cover - network interaction
            logger.warning(
                "Status log insert failed",
                extra={"delivery_id": delivery_id, "status": status, "error": str(exc)},
            )

    async def fetch_status_log(self, delivery_id: str, *, newest_first: bool = True) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("delivery_status_log")
                    .select("id, status, changed_by, notes, location, created_at")
                    .eq("delivery_id", delivery_id)
                    .order("created_at", desc=newest_first)
                    .execute()
                    .data
                    or []
                )

        return await self._run(_request, context="delivery status log")

    # Orders

    async def get_order(self, order_id: str, store_id: str) -> Optional[Dict[str, Any]]:
        def _request():
            with self._client() as client:
                return (
                    client.table("orders")
                    .select("id, order_number, status")
                    .eq("id", order_id)
                    .eq("store_id", store_id)
                    .limit(1)
                    .execute()
                )

        return await self._first(_request, context="order lookup")

    async def update_order_status(self, order_id: str, status: str) -> None:
        payload = {"status": status, "updated_at": utc_now_iso()}

        def _request() -> None:
            with self._client(prefer="return=minimal") as client:
                client.table("orders").update(payload).eq("id", order_id).execute()

        await self._run(_request, context="update order status")

    # Drivers

    async def get_driver(self, driver_id: str, *, store_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        def _request():
            with self._client() as client:
                query = (
                    client.table("delivery_drivers")
                    .select("id, name, phone, store_id, status, vehicle_type, avg_rating, rating_count")
                    .eq("id", driver_id)
                )
                if store_id:
                    query = query.eq("store_id", store_id)
                return query.limit(1).execute()

        return await self._first(_request, context="driver lookup")

    async def update_driver(self, driver_id: str, changes: Dict[str, Any]) -> None:
        payload = {**changes, "updated_at": utc_now_iso()}

        def _request() -> None:
            with self._client(prefer="return=minimal") as client:
                client.table("delivery_drivers").update(payload).eq("id", driver_id).execute()

        await self._run(_request, context="update driver")

    async def count_active_deliveries(self, driver_id: str, *, exclude_id: Optional[str] = None) -> int:
        def _request() -> int:
            with self._client() as client:
                query = (
                    client.table("deliveries")
                    .select("id", count="exact")
                    .eq("driver_id", driver_id)
                    .in_("status", list(ACTIVE_DELIVERY_STATUSES))
                )
                if exclude_id:
                    query = query.neq("id", exclude_id)
                response = query.execute()
                return response.count if response.count is not None else len(response.data or [])

        return await self._run(_request, context="active delivery count")

    async def list_candidate_drivers(self, store_id: str) -> List[Dict[str, Any]]:
        """Return the store's own drivers plus drivers shared with it, de-duplicated."""

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                own = (
                    client.table("delivery_drivers")
                    .select(CANDIDATE_DRIVER_COLUMNS)
                    .eq("store_id", store_id)
                    .in_("status", ["active", "on_delivery"])
                    .execute()
                    .data
                    or []
                )
                shared = (
                    client.table("driver_store_assignments")
                    .select(f"driver_id, delivery_drivers({CANDIDATE_DRIVER_COLUMNS})")
                    .eq("store_id", store_id)
                    .eq("status", "active")
                    .execute()
                    .data
                    or []
                )
                return _merge_drivers(own, (row.get("delivery_drivers") for row in shared))

        return await self._run(_request, context="candidate drivers")

    async def driver_outcome_counts(self, driver_ids: Sequence[str]) -> Dict[str, Dict[str, int]]:
        """Return ``{driver_id: {"delivered": n, "failed": n, "active": n}}``."""

        if not driver_ids:
            return {}

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("deliveries")
                    .select("driver_id, status")
                    .in_("driver_id", list(driver_ids))
                    .in_("status", ["delivered", "failed", *ACTIVE_DELIVERY_STATUSES])
                    .execute()
                    .data
                    or []
                )

        rows = await self._run(_request, context="driver history")
        counts = {driver_id: {"delivered": 0, "failed": 0, "active": 0} for driver_id in driver_ids}
        for row in rows:
            bucket = counts.get(str(row.get("driver_id")))
            if bucket is None:
                continue
            status = row.get("status")
            if status in ACTIVE_DELIVERY_STATUSES:
                bucket["active"] += 1
            elif status in bucket:
                bucket[status] += 1
        return counts

    # Stores

    async def get_store(self, store_id: str) -> Optional[Dict[str, Any]]:
        def _request():
            with self._client() as client:
                return (
                    client.table("stores")
                    .select("id, name, webhook_secret, delivery_settings, shipping_settings")
                    .eq("id", store_id)
                    .limit(1)
                    .execute()
                )

        return await self._first(_request, context="store lookup")

    # Payouts

    async def fetch_open_payouts(
        self, store_id: str, period_start: str, period_end: str, statuses: Sequence[str]
    ) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("driver_payouts")
                    .select("driver_id, period_start, period_end, status")
                    .eq("store_id", store_id)
                    .eq("period_start", period_start)
                    .eq("period_end", period_end)
                    .in_("status", list(statuses))
                    .execute()
                    .data
                    or []
                )

        return await self._run(_request, context="existing payouts")

    async def insert_payouts(self, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        payload = list(rows)

        def _request() -> List[Dict[str, Any]]:
            with self._client(prefer="return=representation") as client:
                created = client.table("driver_payouts").insert(payload).execute().data or []
                ids = [row["id"] for row in created if row.get("id")]
                if not ids:
                    return created
                return (
                    client.table("driver_payouts")
                    .select(PAYOUT_COLUMNS)
                    .in_("id", ids)
                    .order("created_at", desc=True)
                    .execute()
                    .data
                    or []
                )

        return await self._run(_request, context="create payouts")

    async def get_payout(self, payout_id: str, store_id: str) -> Optional[Dict[str, Any]]:
        def _request():
            with self._client() as client:
                return (
                    client.table("driver_payouts")
                    .select("id, status, driver_id, store_id")
                    .eq("id", payout_id)
                    .eq("store_id", store_id)
                    .limit(1)
                    .execute()
                )

        return await self._first(_request, context="payout lookup")

    async def update_payout(self, payout_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        payload = {**changes, "updated_at": utc_now_iso()}

        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                response = client.table("driver_payouts").update(payload).eq("id", payout_id).execute()
                if not response.data:
                    raise HTTPException(status_code=404, detail="Payout not found")
                return response.data[0]

        return await self._run(_request, context="update payout")

    # Ratings

    async def get_rating(self, delivery_id: str) -> Optional[Dict[str, Any]]:
        def _request():
            with self._client() as client:
                return (
                    client.table("driver_ratings")
                    .select("id, rating")
                    .eq("delivery_id", delivery_id)
                    .limit(1)
                    .execute()
                )

        return await self._first(_request, context="rating lookup")

    async def insert_rating(self, row: Dict[str, Any]) -> Dict[str, Any]:
        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                response = client.table("driver_ratings").insert(row).execute()
                if not response.data:
                    raise HTTPException(status_code=502, detail="Failed to save rating")
                return response.data[0]

        return await self._run(_request, context="create rating")

    async def fetch_driver_ratings(self, driver_id: str) -> List[int]:
        def _request() -> List[int]:
            with self._client() as client:
                rows = client.table("driver_ratings").select("rating").eq("driver_id", driver_id).execute().data or []
                return [int(row["rating"]) for row in rows if row.get("rating") is not None]

        return await self._run(_request, context="driver ratings")

    # Storage

    async def upload_proof_photo(self, store_id: str, delivery_id: str, content: bytes, content_type: str, extension: str) -> str:
        """Upload a proof-of-delivery photo and return its public URL."""

        client = get_supabase_client()
        if client is None:
            raise HTTPException(status_code=500, detail="Supabase is not configured")
        path = f"{store_id}/{delivery_id}/{uuid4()}.{extension}"

        def _request() -> str:
            bucket = client.storage.from_(PROOF_PHOTO_BUCKET)
            bucket.upload(path, content, {"content-type": content_type})
            return bucket.get_public_url(path)

        try:
            return await asyncio.to_thread(_request)
        except HttpxError as exc:  # pragma: no cover - network interaction
            raise HTTPException(status_code=503, detail="Supabase is temporarily unreachable") from exc
        except Exception as exc:  # pragma: no cover - storage client errors
            logger.error("Proof photo upload failed: %s", exc, extra={"delivery_id": delivery_id})
            raise HTTPException(status_code=502, detail="Failed to upload photo") from exc


def _merge_drivers(
    own: Iterable[Optional[Dict[str, Any]]], shared: Iterable[Optional[Dict[str, Any]]]
) -> List[Dict[str, Any]]:
    seen = set()
    merged: List[Dict[str, Any]] = []
    for driver in [*own, *shared]:
        if not driver or driver.get("id") in seen:
            continue
        if driver.get("status") not in ("active", "on_delivery"):
            continue
        seen.add(driver.get("id"))
        merged.append(driver)
    return merged


__all__ = ["SupabaseDeliveryDAO", "utc_now_iso"]
