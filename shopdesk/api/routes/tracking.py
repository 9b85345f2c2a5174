"""Public delivery tracking page data and customer ratings."""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, Path

from shopdesk.api.dependencies import get_service_delivery_dao
from shopdesk.schemas import RatingPayload
from shopdesk.services import delivery_service
from shopdesk.services.delivery_dao import SupabaseDeliveryDAO

router = APIRouter(prefix="/api/track", tags=["tracking"])

DeliveryNumber = Annotated[str, Path(min_length=1, max_length=64)]


@router.get("/{delivery_number}")
async def track_delivery(
    delivery_number: DeliveryNumber,
    dao: SupabaseDeliveryDAO = Depends(get_service_delivery_dao),
) -> Dict[str, Any]:
    return await delivery_service.tracking_payload(dao, delivery_number)


@router.post("/{delivery_number}/rate", status_code=201)
async def rate_delivery(
    payload: RatingPayload,
    delivery_number: DeliveryNumber,
    dao: SupabaseDeliveryDAO = Depends(get_service_delivery_dao),
) -> Dict[str, Any]:
    return await delivery_service.rate_delivery(dao, delivery_number, payload)
