"""Owner dashboard endpoints for deliveries."""

from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from shopdesk.api.dependencies import get_actor_label, get_current_store, get_delivery_dao
from shopdesk.schemas import (
    AssignDeliveryPayload,
    DeliveryCreatePayload,
    DeliveryStatus,
    DeliveryUpdatePayload,
    FeeQuoteRequest,
)
from shopdesk.security.guards import rate_limit
from shopdesk.services import delivery_service
from shopdesk.services.delivery_dao import SupabaseDeliveryDAO
from shopdesk.services.delivery_fee import ShippingSettings, calculate_delivery_fee

router = APIRouter(prefix="/api/deliveries", tags=["deliveries"])


@router.get("")
async def list_deliveries(
    status: Optional[DeliveryStatus] = Query(default=None),
    driver_id: Optional[UUID] = Query(default=None),
    delivery_type: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    store: Dict[str, Any] = Depends(get_current_store),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    limit = min(max(limit, 1), 100)
    offset = max(offset, 0)
    rows, count = await dao.list_deliveries(
        str(store["id"]),
        status=status,
        driver_id=str(driver_id) if driver_id else None,
        delivery_type=delivery_type,
        search=search.strip() if search else None,
        limit=limit,
        offset=offset,
    )
    return {"deliveries": rows, "count": count, "limit": limit, "offset": offset}


@router.post("", status_code=201, dependencies=[Depends(rate_limit("deliveries"))])
async def create_delivery(
    payload: DeliveryCreatePayload,
    store: Dict[str, Any] = Depends(get_current_store),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    delivery = await delivery_service.create_delivery(dao, store, payload)
    return {"delivery": delivery}


@router.post("/calculate-fee")
async def calculate_fee(
    payload: FeeQuoteRequest,
    store: Dict[str, Any] = Depends(get_current_store),
) -> Dict[str, Any]:
    """Preview the delivery fee the store's zones would charge for an address."""

    settings = ShippingSettings.from_store(store.get("shipping_settings"))
    quote = calculate_delivery_fee(payload.address, settings, payload.subtotal)
    return quote.model_dump()


@router.post("/assign", dependencies=[Depends(rate_limit("deliveries"))])
async def assign_delivery(
    payload: AssignDeliveryPayload,
    store: Dict[str, Any] = Depends(get_current_store),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    return await delivery_service.auto_assign_delivery(dao, store, str(payload.delivery_id))


@router.get("/{delivery_id}")
async def get_delivery(
    delivery_id: UUID,
    store: Dict[str, Any] = Depends(get_current_store),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    delivery = await dao.get_delivery(str(delivery_id), store_id=str(store["id"]))
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    delivery["delivery_status_log"] = await dao.fetch_status_log(str(delivery_id), newest_first=True)
    return {"delivery": delivery}


@router.patch("/{delivery_id}", dependencies=[Depends(rate_limit("deliveries"))])
async def update_delivery(
    delivery_id: UUID,
    payload: DeliveryUpdatePayload,
    store: Dict[str, Any] = Depends(get_current_store),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
    actor: str = Depends(get_actor_label),
) -> Dict[str, Any]:
    updated = await delivery_service.update_delivery(dao, store, str(delivery_id), payload, changed_by=actor)
    return {"delivery": updated}
