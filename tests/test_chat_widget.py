import asyncio
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from shopdesk.api.routes.chat import get_chat_dao
from shopdesk.main import app
from shopdesk.security.guards import reset_rate_limits
from shopdesk.services import chat_service
from shopdesk.services.chat_intents import detect_category, normalize_text
from shopdesk.services.chat_service import (
    SupabaseChatDAO,
    continue_order,
    detect_language,
    extract_order_number,
    extract_phone,
    is_affirmative,
    start_order,
)
from shopdesk.services.conversation_state import OrderDraft, StoredProduct, state_from_metadata

SNEAKER_ID = str(uuid4())
BOOT_ID = str(uuid4())


class FakeChatDAO(SupabaseChatDAO):
    def __init__(self, store: Dict[str, Any]):
        super().__init__("test-token")
        self.store = store
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.messages: List[Dict[str, Any]] = []
        self.products = [
            {"id": SNEAKER_ID, "name": "Nike пүүз", "category": "shoes", "base_price": 150000},
            {"id": BOOT_ID, "name": "Арьсан гутал", "category": "shoes", "base_price": 120000},
        ]
        self.variants: Dict[str, List[Dict[str, Any]]] = {}
        self.orders: List[Dict[str, Any]] = []
        self.store_orders: List[Dict[str, Any]] = []
        self.order_searches: List[Dict[str, Any]] = []

    async def get_store(self, store_id):
        return dict(self.store) if store_id == self.store["id"] else None

    async def get_conversation(self, conversation_id, store_id):
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation["store_id"] != store_id:
            return None
        return dict(conversation)

    async def create_conversation(self, store_id, customer_name):
        conversation_id = str(uuid4())
        self.conversations[conversation_id] = {
            "id": conversation_id,
            "store_id": store_id,
            "status": "active",
            "metadata": {"customer_name": customer_name} if customer_name else {},
            "escalation_score": 0,
        }
        return dict(self.conversations[conversation_id])

    async def insert_message(self, conversation_id, content, *, is_from_customer, is_ai_response, metadata=None):
        self.messages.append(
            {
                "conversation_id": conversation_id,
                "content": content,
                "is_from_customer": is_from_customer,
                "is_ai_response": is_ai_response,
                "metadata": metadata or {},
            }
        )

    async def fetch_recent_messages(self, conversation_id, limit=10):
        rows = [row for row in self.messages if row["conversation_id"] == conversation_id]
        return rows[-limit:]

    async def get_escalation_score(self, conversation_id):
        return int(self.conversations[conversation_id].get("escalation_score") or 0)

    async def update_conversation(self, conversation_id, changes):
        self.conversations[conversation_id].update(changes)

    async def read_state(self, conversation_id):
        metadata = self.conversations[conversation_id].get("metadata") or {}
        return state_from_metadata(metadata), metadata

    async def search_products(self, store_id, query, *, limit=5):
        category = detect_category(query)
        if category:
            return [dict(p) for p in self.products if p["category"] == category][:limit]
        words = normalize_text(query).split()
        return [dict(p) for p in self.products if any(w in p["name"].lower() for w in words)][:limit]

    async def search_orders(self, store_id, query, *, customer_id=None, exact=False):
        self.order_searches.append({"query": query, "customer_id": customer_id, "exact": exact})
        if not customer_id and not exact:
            return []
        rows = [row for row in self.store_orders if customer_id is None or row["customer_id"] == customer_id]
        if exact:
            rows = [row for row in rows if row["order_number"] == query]
        return [dict(row) for row in rows][:5]

    async def fetch_in_stock_variants(self, product_id):
        return [dict(v) for v in self.variants.get(product_id, [])]

    async def create_chat_order(self, store_id, draft):
        order = {
            "id": str(uuid4()),
            "order_number": "ORD-1001",
            "total_amount": draft.unit_price * draft.quantity,
            "shipping_address": draft.address,
            "phone": draft.phone,
            "product_id": draft.product_id,
            "variant_id": draft.variant_id,
        }
        self.orders.append(order)
        return dict(order)


@pytest.fixture(name="chat_dao")
def chat_dao_fixture(monkeypatch, sent_notifications):
    monkeypatch.setattr(chat_service, "get_openai_client", lambda: None)
    reset_rate_limits()
    dao = FakeChatDAO({"id": str(uuid4()), "name": "Гэрэл дэлгүүр", "chatbot_settings": {}})

    async def override_dao():
        return dao

    app.dependency_overrides[get_chat_dao] = override_dao
    yield dao
    app.dependency_overrides.clear()


@pytest.fixture(name="client")
def client_fixture(chat_dao):
    with TestClient(app) as client:
        yield client


def _send(client, dao, message, conversation_id: Optional[str] = None):
    body = {"store_id": dao.store["id"], "message": message}
    if conversation_id:
        body["conversation_id"] = conversation_id
    response = client.post("/api/chat/widget", json=body)
    assert response.status_code == 200, response.text
    return response.json()


def test_product_search_then_order_through_chat(client, chat_dao, sent_notifications):
    first = _send(client, chat_dao, "Гутал харуулна уу")
    conversation_id = first["conversation_id"]
    assert first["intent"] == "product_search"
    assert "Арьсан гутал" in first["reply"]

    detail = _send(client, chat_dao, "2", conversation_id)
    assert detail["intent"] == "product_detail"
    assert "Арьсан гутал" in detail["reply"]

    confirm = _send(client, chat_dao, "авъя", conversation_id)
    assert confirm["intent"] == "order_collection"
    assert "120 000₮" in confirm["reply"]

    address = _send(client, chat_dao, "Тийм", conversation_id)
    assert "хаяг" in address["reply"]

    phone = _send(client, chat_dao, "Баянгол дүүрэг 3-р хороо", conversation_id)
    assert "Утасны дугаар" in phone["reply"]

    done = _send(client, chat_dao, "9911 2233", conversation_id)
    assert done["intent"] == "order_created"
    assert "ORD-1001" in done["reply"]

    order = chat_dao.orders[0]
    assert order["product_id"] == BOOT_ID
    assert order["shipping_address"] == "Баянгол дүүрэг 3-р хороо"
    assert order["phone"] == "99112233"
    assert sent_notifications[-1]["event"] == "new_order"

    state = state_from_metadata(chat_dao.conversations[conversation_id]["metadata"])
    assert state.order_draft is None
    assert state.turn_count == 6


def test_declining_confirmation_cancels_draft(client, chat_dao):
    first = _send(client, chat_dao, "Гутал харуулна уу")
    conversation_id = first["conversation_id"]
    _send(client, chat_dao, "1", conversation_id)
    _send(client, chat_dao, "авъя", conversation_id)

    declined = _send(client, chat_dao, "Үгүй ээ", conversation_id)

    assert "цуцлагдлаа" in declined["reply"]
    state = state_from_metadata(chat_dao.conversations[conversation_id]["metadata"])
    assert state.order_draft is None
    assert chat_dao.orders == []


def test_messages_are_stored_with_reply_metadata(client, chat_dao):
    result = _send(client, chat_dao, "Гутал харуулна уу")

    customer, reply = chat_dao.messages
    assert customer["is_from_customer"] is True
    assert reply["is_ai_response"] is True
    assert reply["metadata"] == {"intent": "product_search", "products_found": 2, "follow_up": None}
    assert reply["content"] == result["reply"]


def test_handoff_keywords_escalate_to_manager(client, chat_dao, sent_notifications):
    chat_dao.store["chatbot_settings"] = {"auto_handoff": True, "handoff_keywords": "менежер, хүн"}

    result = _send(client, chat_dao, "Менежертэй ярих уу")

    assert result["intent"] == "handoff"
    assert result["escalated"] is True
    assert chat_dao.conversations[result["conversation_id"]]["status"] == "escalated"
    assert sent_notifications[-1]["event"] == "escalation"


def test_unknown_store_and_conversation(client, chat_dao):
    unknown_store = client.post("/api/chat/widget", json={"store_id": str(uuid4()), "message": "сайн уу"})
    unknown_conversation = client.post(
        "/api/chat/widget",
        json={"store_id": chat_dao.store["id"], "message": "сайн уу", "conversation_id": str(uuid4())},
    )

    assert unknown_store.status_code == 404
    assert unknown_conversation.status_code == 404


def test_blank_message_is_rejected(client, chat_dao):
    response = client.post("/api/chat/widget", json={"store_id": chat_dao.store["id"], "message": "   "})

    assert response.status_code == 400


def test_variant_menu_then_selection(chat_dao):
    chat_dao.variants[SNEAKER_ID] = [
        {"id": "v-40", "size": "40", "color": "хар", "price": 150000},
        {"id": "v-42", "size": "42", "color": "цагаан", "price": 155000},
    ]
    product = StoredProduct(id=SNEAKER_ID, name="Nike пүүз", base_price=150000)

    draft, menu = asyncio.run(start_order(chat_dao, product))
    assert draft.step == "variant"
    assert "1. 40 / хар / 150 000₮" in menu

    draft, reply, intent = asyncio.run(continue_order(chat_dao, draft, "2", "store-1"))
    assert intent == "order_collection"
    assert draft.step == "confirm"
    assert draft.variant_id == "v-42"
    assert draft.unit_price == 155000
    assert "Хувилбар: 42/цагаан" in reply


def test_single_variant_is_chosen_automatically(chat_dao):
    chat_dao.variants[BOOT_ID] = [{"id": "v-1", "size": "38", "color": None, "price": None}]
    product = StoredProduct(id=BOOT_ID, name="Арьсан гутал", base_price=120000)

    draft, reply = asyncio.run(start_order(chat_dao, product))

    assert draft.step == "confirm"
    assert draft.variant_id == "v-1"
    assert draft.unit_price == 120000


def test_invalid_phone_keeps_asking(chat_dao):
    draft = OrderDraft(product_id=BOOT_ID, product_name="Арьсан гутал", unit_price=120000, step="phone", address="Хан-Уул")

    next_draft, reply, intent = asyncio.run(continue_order(chat_dao, draft, "утас алга", "store-1"))

    assert next_draft == draft
    assert intent == "order_collection"
    assert chat_dao.orders == []


def _seed_orders(dao):
    dao.store_orders = [
        {"order_number": "ORD-2002", "customer_id": "cust-other", "status": "shipped",
         "total_amount": 90000, "tracking_number": "TRK-OTHER", "created_at": "2024-05-01T10:00:00+00:00"},
        {"order_number": "ORD-3003", "customer_id": "cust-me", "status": "pending",
         "total_amount": 45000, "tracking_number": None, "created_at": "2024-05-02T10:00:00+00:00"},
    ]


def test_anonymous_visitor_does_not_see_store_orders(client, chat_dao):
    _seed_orders(chat_dao)

    result = _send(client, chat_dao, "Захиалга хаана байна")

    assert result["intent"] == "order_status"
    assert "ORD-2002" not in result["reply"]
    assert "TRK-OTHER" not in result["reply"]
    assert "олдсонгүй" in result["reply"]


def test_order_status_is_scoped_to_the_conversation_customer(client, chat_dao):
    _seed_orders(chat_dao)
    first = _send(client, chat_dao, "сайн байна уу")
    chat_dao.conversations[first["conversation_id"]]["customer_id"] = "cust-me"

    result = _send(client, chat_dao, "Захиалга хаана байна", first["conversation_id"])

    assert "ORD-3003" in result["reply"]
    assert "ORD-2002" not in result["reply"]
    assert chat_dao.order_searches[-1]["customer_id"] == "cust-me"


def test_quoted_order_number_is_matched_exactly(client, chat_dao):
    _seed_orders(chat_dao)

    result = _send(client, chat_dao, "ord-2002 захиалга хаана байна")

    assert chat_dao.order_searches[-1] == {"query": "ORD-2002", "customer_id": None, "exact": True}
    assert "ORD-2002" in result["reply"]
    assert "ORD-3003" not in result["reply"]


def test_order_search_without_customer_or_number_skips_the_query():
    dao = SupabaseChatDAO("test-token")

    assert asyncio.run(dao.search_orders("store-1", "")) == []
    assert asyncio.run(dao.search_orders("store-1", "2002")) == []


def test_chat_helpers():
    assert detect_language("Сайн байна уу, гутал үзье")[0] == "mn"
    assert detect_language("")[0] == "mn"
    assert extract_phone("утас 8811-2233") is None
    assert extract_phone("утас 8811 2233") == "88112233"
    assert extract_order_number("ord-1001 хаана байна") == "ORD-1001"
    assert extract_order_number("захиалга хаана байна") is None
    assert is_affirmative("за")
    assert is_affirmative("Тийм ээ")
    assert not is_affirmative("үгүй")
