"""Storefront chat widget endpoint."""

from fastapi import APIRouter, Depends

from shopdesk.schemas import WidgetChatRequest, WidgetChatResponse
from shopdesk.security.guards import rate_limit
from shopdesk.services.chat_service import SupabaseChatDAO, handle_widget_message
from shopdesk.services.postgrest_client import service_role_credentials

router = APIRouter(prefix="/api/chat", tags=["chat"])


async def get_chat_dao() -> SupabaseChatDAO:
    token, api_key = service_role_credentials()
    return SupabaseChatDAO(token, api_key=api_key)


@router.post(
    "/widget",
    response_model=WidgetChatResponse,
    dependencies=[Depends(rate_limit("chat_widget"))],
)
async def widget_chat(
    payload: WidgetChatRequest,
    dao: SupabaseChatDAO = Depends(get_chat_dao),
) -> WidgetChatResponse:
    return await handle_widget_message(dao, payload)
