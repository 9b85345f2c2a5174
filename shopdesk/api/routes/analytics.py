from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from shopdesk.api.dependencies import get_current_store, get_delivery_dao
from shopdesk.services.delivery_analytics import build_delivery_analytics, period_start
from shopdesk.services.delivery_dao import SupabaseDeliveryDAO

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/delivery")
async def delivery_analytics(
    period: Optional[str] = Query(default="30d"),
    store: Dict[str, Any] = Depends(get_current_store),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    rows = await dao.fetch_deliveries_since(str(store["id"]), period_start(period))
    return build_delivery_analytics(rows)
