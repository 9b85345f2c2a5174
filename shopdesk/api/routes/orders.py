from typing import Any, Dict

from fastapi import APIRouter, Depends

from shopdesk.schemas import OrderCreatePayload
from shopdesk.security.guards import rate_limit
from shopdesk.services.orders_service import SupabaseOrderDAO, place_order
from shopdesk.services.postgrest_client import service_role_credentials

router = APIRouter(prefix="/api/orders", tags=["orders"])


async def get_order_dao() -> SupabaseOrderDAO:
    token, api_key = service_role_credentials()
    return SupabaseOrderDAO(token, api_key=api_key)


@router.post("", dependencies=[Depends(rate_limit("orders"))])
async def create_order(
    payload: OrderCreatePayload,
    dao: SupabaseOrderDAO = Depends(get_order_dao),
) -> Dict[str, Any]:
    return await place_order(dao, payload)
