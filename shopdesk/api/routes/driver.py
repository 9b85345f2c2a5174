"""Driver portal endpoints: own deliveries, status updates, proof photos, location."""

from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from shopdesk.api.dependencies import get_current_driver, get_delivery_dao
from shopdesk.schemas import DeliveryStatus, DriverStatusPayload, GeoPoint
from shopdesk.security.guards import rate_limit
from shopdesk.services import delivery_service
from shopdesk.services.delivery_dao import SupabaseDeliveryDAO

router = APIRouter(prefix="/api/driver", tags=["driver"], dependencies=[Depends(rate_limit("driver"))])

PROOF_CONTENT_TYPES = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}
MAX_PROOF_BYTES = 5 * 1024 * 1024
PROOF_STATUSES = ("picked_up", "in_transit", "delayed", "delivered")


@router.get("/deliveries")
async def list_my_deliveries(
    status: Optional[DeliveryStatus] = Query(default=None),
    driver: Dict[str, Any] = Depends(get_current_driver),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    deliveries = await dao.list_driver_deliveries(str(driver["id"]), status=status)
    return {"deliveries": deliveries}


@router.get("/deliveries/{delivery_id}")
async def get_my_delivery(
    delivery_id: UUID,
    driver: Dict[str, Any] = Depends(get_current_driver),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    delivery = await dao.get_delivery(str(delivery_id), driver_id=str(driver["id"]))
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    delivery["status_log"] = await dao.fetch_status_log(str(delivery_id), newest_first=True)
    return {"delivery": delivery}


@router.patch("/deliveries/{delivery_id}")
async def update_my_delivery(
    delivery_id: UUID,
    payload: DriverStatusPayload,
    driver: Dict[str, Any] = Depends(get_current_driver),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    return await delivery_service.driver_update_status(dao, driver, str(delivery_id), payload)


@router.post("/deliveries/{delivery_id}/proof")
async def upload_proof_photo(
    delivery_id: UUID,
    file: UploadFile = File(...),
    driver: Dict[str, Any] = Depends(get_current_driver),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    extension = PROOF_CONTENT_TYPES.get(file.content_type or "")
    if extension is None:
        raise HTTPException(status_code=400, detail="Only JPEG, PNG or WebP images are accepted")
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_PROOF_BYTES:
        raise HTTPException(status_code=400, detail="Image exceeds 5 MB")

    delivery = await dao.get_delivery(
        str(delivery_id),
        driver_id=str(driver["id"]),
        columns="id, store_id, status",
    )
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    if delivery.get("status") not in PROOF_STATUSES:
        raise HTTPException(status_code=400, detail="Proof photos can only be added once the parcel is picked up")

    url = await dao.upload_proof_photo(
        str(delivery.get("store_id")), str(delivery_id), content, file.content_type, extension
    )
    await dao.update_delivery(str(delivery_id), {"proof_photo_url": url})
    return {"proof_photo_url": url}


@router.patch("/location")
async def update_location(
    payload: GeoPoint,
    driver: Dict[str, Any] = Depends(get_current_driver),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    await dao.update_driver(str(driver["id"]), {"current_location": payload.model_dump()})
    return {"success": True, "location": payload.model_dump()}
