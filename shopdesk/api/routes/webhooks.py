"""Callbacks from external delivery providers."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header

from shopdesk.api.dependencies import get_service_delivery_dao
from shopdesk.schemas import ProviderWebhookPayload
from shopdesk.services import delivery_service
from shopdesk.services.delivery_dao import SupabaseDeliveryDAO

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])


@router.post("/delivery")
async def provider_delivery_update(
    payload: ProviderWebhookPayload,
    x_webhook_secret: Optional[str] = Header(default=None, alias="X-Webhook-Secret"),
    dao: SupabaseDeliveryDAO = Depends(get_service_delivery_dao),
) -> Dict[str, Any]:
    return await delivery_service.apply_provider_update(dao, payload, webhook_secret=x_webhook_secret)
