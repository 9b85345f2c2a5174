"""Storefront order intake."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from fastapi import HTTPException
from httpx import HTTPError as HttpxError
from postgrest import APIError as PostgrestAPIError

from shopdesk.schemas import OrderCreatePayload, OrderItemPayload
from shopdesk.services import notifications, postgrest_client
from shopdesk.services.delivery_fee import ShippingSettings, calculate_shipping

logger = logging.getLogger(__name__)

DEFAULT_BUSY_MESSAGE = "Дэлгүүр одоогоор захиалга авахгүй байна"
ORDER_RETURN_COLUMNS = "id, order_number, total_amount, shipping_amount, status, payment_status, order_type, created_at"


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    shipping_amount: float
    total_amount: float


def build_order_totals(
    items: Sequence[OrderItemPayload],
    shipping_zone: Optional[str],
    settings: ShippingSettings,
    *,
    order_type: str = "delivery",
) -> OrderTotals:
    """Subtotal from the line items plus shipping; only delivery orders pay shipping."""

    subtotal = sum(item.unit_price * (item.quantity or 1) for item in items)
    shipping = calculate_shipping(subtotal, shipping_zone, settings) if order_type == "delivery" else 0
    return OrderTotals(subtotal=subtotal, shipping_amount=shipping, total_amount=subtotal + shipping)


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}"


class SupabaseOrderDAO:
    """Writes storefront orders with the service role; customers have no session."""

    def __init__(self, access_token: str, *, api_key: Optional[str] = None):
        self.access_token = access_token
        self.api_key = api_key

    def _client(self, *, prefer: Optional[str] = None):
        return postgrest_client.create_postgrest_client(self.access_token, prefer=prefer, api_key=self.api_key)

    async def get_store(self, store_id: str) -> Optional[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                response = (
                    client.table("stores")
                    .select("id, shipping_settings, busy_mode, busy_message, estimated_wait_minutes")
                    .eq("id", store_id)
                    .limit(1)
                    .execute()
                )
                return response.data or []

        try:
            rows = await asyncio.to_thread(_request)
        except PostgrestAPIError as exc:  # pragma: no cover - network interaction
            postgrest_client.raise_postgrest_error(exc, context="store lookup")
        except HttpxError as exc:  # pragma: no cover - network interaction
            raise HTTPException(status_code=503, detail="Supabase is temporarily unreachable") from exc
        return rows[0] if rows else None

    async def insert_order(self, order: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Insert the order then its lines, returning the created order."""

        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                response = client.table("orders").insert(order).execute()
                if not response.data:
                    raise HTTPException(status_code=502, detail="Failed to create order")
                record = response.data[0]
                lines = [{**item, "order_id": record["id"]} for item in items]
                client.table("order_items").insert(lines).execute()
                return record

        try:
            return await asyncio.to_thread(_request)
        except PostgrestAPIError as exc:  # pragma: no cover - network interaction
            postgrest_client.raise_postgrest_error(exc, context="order creation")
        except HttpxError as exc:  # pragma: no cover - network interaction
            raise HTTPException(status_code=503, detail="Supabase is temporarily unreachable") from exc


async def place_order(dao, payload: OrderCreatePayload) -> Dict[str, Any]:
    """Create a pending order with its items and notify the store."""

    store_id = str(payload.store_id)
    store = await dao.get_store(store_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    if store.get("busy_mode"):
        raise HTTPException(
            status_code=503,
            detail={
                "error": store.get("busy_message") or DEFAULT_BUSY_MESSAGE,
                "busy": True,
                "estimated_wait_minutes": store.get("estimated_wait_minutes"),
            },
        )

    settings = ShippingSettings.from_store(store.get("shipping_settings"))
    totals = build_order_totals(payload.items, payload.shipping_zone, settings, order_type=payload.order_type)
    order = {
        "store_id": store_id,
        "customer_id": str(payload.customer_id) if payload.customer_id else None,
        "order_number": generate_order_number(),
        "status": "pending",
        "payment_status": "pending",
        "order_type": payload.order_type,
        "total_amount": totals.total_amount,
        "shipping_amount": totals.shipping_amount,
        "shipping_address": payload.shipping_address,
        "notes": payload.notes,
    }
    items = [
        {
            "product_id": str(item.product_id),
            "variant_id": str(item.variant_id) if item.variant_id else None,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
        }
        for item in payload.items
    ]
    record = await dao.insert_order(order, items)
    logger.info("Order created", extra={"store_id": store_id, "order_id": record.get("id")})

    await notifications.dispatch_notification(
        store_id,
        "new_order",
        {
            "order_id": record.get("id"),
            "order_number": record.get("order_number"),
            "total_amount": record.get("total_amount"),
        },
    )
    return {
        "order_id": record.get("id"),
        "order_number": record.get("order_number"),
        "order_type": record.get("order_type", payload.order_type),
        "subtotal": totals.subtotal,
        "shipping_amount": record.get("shipping_amount", totals.shipping_amount),
        "total_amount": record.get("total_amount", totals.total_amount),
        "status": record.get("status", "pending"),
        "payment_status": record.get("payment_status", "pending"),
        "created_at": record.get("created_at"),
    }


__all__ = ["OrderTotals", "SupabaseOrderDAO", "build_order_totals", "place_order"]
