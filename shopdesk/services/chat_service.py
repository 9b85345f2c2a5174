"""Storefront chat widget: conversation storage, follow-ups, order capture and replies."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from fastapi import HTTPException
from httpx import HTTPError as HttpxError
from langdetect import DetectorFactory, LangDetectException, detect
from openai import OpenAIError
from postgrest import APIError as PostgrestAPIError

from shopdesk.config.openai_client import OPENAI_MODEL, get_openai_client
from shopdesk.schemas import WidgetChatRequest, WidgetChatResponse
from shopdesk.services import notifications
from shopdesk.services.chat_intents import (
    LOW_CONFIDENCE_THRESHOLD,
    classify_intent_with_confidence,
    detect_category,
    extract_search_terms,
    format_price,
    generate_response,
    matches_handoff_keywords,
    normalize_text,
)
from shopdesk.services.conversation_state import (
    ConversationState,
    FollowUpResult,
    OrderDraft,
    StoredProduct,
    merge_state_into_metadata,
    resolve_follow_up,
    state_from_metadata,
    update_state,
)
from shopdesk.services.escalation import process_escalation
from shopdesk.services.postgrest_client import create_postgrest_client, quote_filter_value, raise_postgrest_error

logger = logging.getLogger(__name__)
T = TypeVar("T")

DetectorFactory.seed = 0  # make language detection deterministic

DEFAULT_STORE_NAME = "Манай дэлгүүр"
DEFAULT_LANGUAGE_CODE = "mn"
DEFAULT_HANDOFF_MESSAGE = "Таны хүсэлтийг менежерт шилжүүллээ. Удахгүй тантай холбогдох болно. 🙏"
HISTORY_LIMIT = 6
PRODUCT_COLUMNS = "id, name, description, category, base_price, images, sales_script, product_faqs"

LANGUAGE_LABELS = {
    "mn": "монгол",
    "en": "англи",
    "ru": "орос",
    "zh-cn": "хятад",
    "ko": "солонгос",
    "ja": "япон",
}

# langdetect has no Mongolian profile; these letters only occur in Mongolian Cyrillic.
_MONGOLIAN_LETTERS_RE = re.compile(r"[өүӨҮ]")
_PHONE_RE = re.compile(r"(\d{8})")
_LEADING_NUMBER_RE = re.compile(r"^(\d+)")
_ORDER_NUMBER_RE = re.compile(r"\bORD-\d+\b", re.IGNORECASE)

AFFIRMATIVE_WORDS = ("тийм", "за", "зүгээр", "болно", "тийм ээ", "зөв", "ok", "ок", "yes")
ORDER_INTENT_WORDS = (
    "авъя", "авья", "авна", "авах", "авйа", "ави", "авь",
    "захиалъя", "захиалья", "захиалах", "захиалмаар",
)
PRODUCT_SEARCH_INTENTS = ("product_search", "general", "size_info")
CONTEXT_TOPIC_INTENTS = {"delivery": "shipping", "payment": "payment", "order": "order_status"}

SYSTEM_PROMPT_TEMPLATE = (
    'Та "{store_name}" ecommerce дэлгүүрийн чатбот.\n'
    "Богино, эелдэг, мэргэжлийн байдлаар {language_label} хэлээр хариулна.\n"
    "Зөвхөн өгөгдсөн мэдээллийг ашиглана — зохиож болохгүй.\n"
    "Хэрэглэгч жин, өндөр хэлсэн бол бүтээгдэхүүний size_fit мэдээлэлд тулгуурлан размер зөвлө; "
    "яг тохирохыг баталгаажуулахын тулд менежерээс лавлахыг сануул.\n"
    "Үнийг ₮ тэмдэгтэйгээр бич."
)


class SupabaseChatDAO:
    """Chat data access with the service role; widget visitors have no session."""

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

    async def get_store(self, store_id: str) -> Optional[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                response = (
                    client.table("stores")
                    .select("id, name, chatbot_settings")
                    .eq("id", store_id)
                    .limit(1)
                    .execute()
                )
                return response.data or []

        rows = await self._run(_request, context="chat store lookup")
        return rows[0] if rows else None

    async def get_conversation(self, conversation_id: str, store_id: str) -> Optional[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                response = (
                    client.table("conversations")
                    .select("id, status, metadata, escalation_score, customer_id")
                    .eq("id", conversation_id)
                    .eq("store_id", store_id)
                    .limit(1)
                    .execute()
                )
                return response.data or []

        rows = await self._run(_request, context="conversation lookup")
        return rows[0] if rows else None

    async def create_conversation(self, store_id: str, customer_name: Optional[str]) -> Dict[str, Any]:
        row = {
            "store_id": store_id,
            "status": "active",
            "channel": "web",
            "unread_count": 0,
            "metadata": {"customer_name": customer_name} if customer_name else {},
        }

        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                response = client.table("conversations").insert(row).execute()
                if not response.data:
                    raise HTTPException(status_code=502, detail="Failed to create conversation")
                return response.data[0]

        return await self._run(_request, context="create conversation")

    async def insert_message(
        self,
        conversation_id: str,
        content: str,
        *,
        is_from_customer: bool,
        is_ai_response: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        row = {
            "conversation_id": conversation_id,
            "content": content,
            "is_from_customer": is_from_customer,
            "is_ai_response": is_ai_response,
            "metadata": metadata or {},
        }

        def _request() -> None:
            with self._client(prefer="return=minimal") as client:
                client.table("messages").insert(row).execute()

        await self._run(_request, context="save message")

    async def fetch_recent_messages(self, conversation_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Last ``limit`` messages in chronological order."""

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                response = (
                    client.table("messages")
                    .select("content, is_from_customer, is_ai_response, created_at")
                    .eq("conversation_id", conversation_id)
                    .order("created_at", desc=True)
                    .limit(limit)
                    .execute()
                )
                return list(reversed(response.data or []))

        return await self._run(_request, context="recent messages")

    async def get_escalation_score(self, conversation_id: str) -> int:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("conversations")
                    .select("escalation_score")
                    .eq("id", conversation_id)
                    .limit(1)
                    .execute()
                    .data
                    or []
                )

        rows = await self._run(_request, context="escalation score")
        score = rows[0].get("escalation_score") if rows else 0
        return int(score or 0)

    async def update_conversation(self, conversation_id: str, changes: Dict[str, Any]) -> None:
        payload = {**changes, "updated_at": datetime.now(timezone.utc).isoformat()}

        def _request() -> None:
            with self._client(prefer="return=minimal") as client:
                client.table("conversations").update(payload).eq("id", conversation_id).execute()

        await self._run(_request, context="update conversation")

    async def read_state(self, conversation_id: str) -> Tuple[ConversationState, Dict[str, Any]]:
        """Return the stored conversation state and the raw metadata it lives in."""

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("conversations")
                    .select("metadata")
                    .eq("id", conversation_id)
                    .limit(1)
                    .execute()
                    .data
                    or []
                )

        rows = await self._run(_request, context="read conversation state")
        metadata = rows[0].get("metadata") if rows else None
        metadata = metadata if isinstance(metadata, dict) else {}
        return state_from_metadata(metadata), metadata

    async def write_state(self, conversation_id: str, metadata: Mapping[str, Any], state: ConversationState) -> None:
        await self.update_conversation(conversation_id, {"metadata": merge_state_into_metadata(metadata, state)})

    async def search_products(self, store_id: str, query: str, *, limit: int = 5) -> List[Dict[str, Any]]:
        """Active products by mapped category, else by any search word in name or description."""

        category = detect_category(query)
        words = extract_search_terms(query).split()

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                request = (
                    client.table("products")
                    .select(PRODUCT_COLUMNS)
                    .eq("store_id", store_id)
                    .eq("status", "active")
                )
                if category:
                    request = request.eq("category", category)
                elif words:
                    conditions = ",".join(
                        condition
                        for word in words
                        for condition in (
                            f"name.ilike.{quote_filter_value(f'%{word}%')}",
                            f"description.ilike.{quote_filter_value(f'%{word}%')}",
                        )
                    )
                    request = request.or_(conditions)
                return request.limit(limit).execute().data or []

        return await self._run(_request, context="product search")

    async def search_orders(
        self,
        store_id: str,
        query: str,
        *,
        customer_id: Optional[str] = None,
        exact: bool = False,
    ) -> List[Dict[str, Any]]:
        """Orders of one customer, or the single order whose number was quoted exactly."""

        if not customer_id and not (exact and query):
            return []

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                request = (
                    client.table("orders")
                    .select("id, order_number, status, total_amount, tracking_number, created_at")
                    .eq("store_id", store_id)
                    .order("created_at", desc=True)
                )
                if customer_id:
                    request = request.eq("customer_id", customer_id)
                if exact:
                    request = request.eq("order_number", query)
                elif query:
                    request = request.ilike("order_number", f"%{query}%")
                return request.limit(5).execute().data or []

        return await self._run(_request, context="order search")

    async def fetch_in_stock_variants(self, product_id: str) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("product_variants")
                    .select("id, size, color, price, stock_quantity")
                    .eq("product_id", product_id)
                    .gt("stock_quantity", 0)
                    .execute()
                    .data
                    or []
                )

        return await self._run(_request, context="product variants")

    async def create_chat_order(self, store_id: str, draft: OrderDraft) -> Dict[str, Any]:
        order = {
            "store_id": store_id,
            "order_number": f"ORD-{int(time.time() * 1000)}",
            "status": "pending",
            "total_amount": draft.unit_price * draft.quantity,
            "shipping_amount": 0,
            "payment_status": "pending",
            "shipping_address": draft.address,
            "order_type": "delivery",
            "notes": f"Чатаар захиалсан. Утас: {draft.phone}",
        }

        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                response = client.table("orders").insert(order).execute()
                if not response.data:
                    raise HTTPException(status_code=502, detail="Failed to create order")
                record = response.data[0]
                client.table("order_items").insert(
                    {
                        "order_id": record["id"],
                        "product_id": draft.product_id,
                        "variant_id": draft.variant_id,
                        "quantity": draft.quantity,
                        "unit_price": draft.unit_price,
                        "variant_label": draft.variant_label,
                    }
                ).execute()
                return record

        return await self._run(_request, context="chat order")


def detect_language(message: str) -> Tuple[str, str]:
    """Return ``(code, label)`` of the language the customer writes in."""

    cleaned = (message or "").strip()
    if not cleaned or _MONGOLIAN_LETTERS_RE.search(cleaned):
        code = DEFAULT_LANGUAGE_CODE
    else:
        try:
            code = detect(cleaned)
        except LangDetectException:
            code = DEFAULT_LANGUAGE_CODE
    return code, LANGUAGE_LABELS.get(code, code)


def is_affirmative(message: str) -> bool:
    normalized = normalize_text(message).strip()
    return any(
        normalized == normalize_text(word) or normalized.startswith(normalize_text(word) + " ")
        for word in AFFIRMATIVE_WORDS
    )


def extract_phone(message: str) -> Optional[str]:
    match = _PHONE_RE.search(re.sub(r"\s+", "", message))
    return match.group(1) if match else None


def extract_order_number(message: str) -> Optional[str]:
    match = _ORDER_NUMBER_RE.search(message)
    return match.group(0).upper() if match else None


def has_order_intent(message: str) -> bool:
    words = normalize_text(message).split()
    return any(word in words for word in (normalize_text(w) for w in ORDER_INTENT_WORDS))


def resolve_variant(message: str, variants: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """Pick a variant by list number or by size/colour mentioned in the message."""

    if not variants:
        return None
    normalized = normalize_text(message).strip()
    match = _LEADING_NUMBER_RE.match(normalized)
    if match:
        index = int(match.group(1)) - 1
        if 0 <= index < len(variants):
            return variants[index]
    for variant in variants:
        for key in ("size", "color"):
            value = variant.get(key)
            if value and normalize_text(str(value)) in normalized:
                return variant
    return None


def _variant_label(variant: Mapping[str, Any]) -> str:
    return "/".join(str(variant[key]) for key in ("size", "color") if variant.get(key))


def build_confirm_message(draft: OrderDraft) -> str:
    lines = [f"📦 {draft.product_name}"]
    if draft.variant_label:
        lines.append(f"Хувилбар: {draft.variant_label}")
    lines.append(f"Тоо: {draft.quantity} ширхэг")
    lines.append(f"Үнэ: {format_price(draft.unit_price * draft.quantity)}")
    lines.append("\nЗахиалга баталгаажуулах уу? (Тийм/Үгүй)")
    return "\n".join(lines)


def _variant_menu(product_name: str, variants: Sequence[Mapping[str, Any]], base_price: float) -> str:
    rows = []
    for index, variant in enumerate(variants, start=1):
        parts = [str(variant[key]) for key in ("size", "color") if variant.get(key)]
        parts.append(format_price(variant.get("price") if variant.get("price") is not None else base_price))
        rows.append(f"{index}. {' / '.join(parts)}")
    return f"📦 {product_name} захиалга\n\nАль хувилбарыг сонгох вэ?\n" + "\n".join(rows) + "\n\nДугаараа бичнэ үү:"


async def start_order(dao, product: StoredProduct, message: str = "") -> Tuple[OrderDraft, str]:
    """Open an order draft for ``product``; asks for a variant when several are in stock."""

    variants = await dao.fetch_in_stock_variants(product.id)
    draft = OrderDraft(product_id=product.id, product_name=product.name, unit_price=product.base_price)
    if len(variants) == 1:
        chosen = variants[0]
    else:
        chosen = resolve_variant(message, variants) if message else None
    if len(variants) > 1 and chosen is None:
        return draft, _variant_menu(product.name, variants, product.base_price)
    if chosen is not None:
        draft = draft.model_copy(
            update={
                "variant_id": str(chosen["id"]),
                "variant_label": _variant_label(chosen) or None,
                "unit_price": chosen.get("price") if chosen.get("price") is not None else product.base_price,
            }
        )
    draft = draft.model_copy(update={"step": "confirm"})
    return draft, build_confirm_message(draft)


async def continue_order(dao, draft: OrderDraft, message: str, store_id: str) -> Tuple[Optional[OrderDraft], str, str]:
    """Advance the order draft by one step. Returns (draft or None, reply, intent)."""

    if draft.step == "variant":
        variants = await dao.fetch_in_stock_variants(draft.product_id)
        chosen = resolve_variant(message, variants)
        if chosen is None:
            return draft, "Аль хувилбарыг сонгохоо дугаараар бичнэ үү:", "order_collection"
        draft = draft.model_copy(
            update={
                "variant_id": str(chosen["id"]),
                "variant_label": _variant_label(chosen) or None,
                "unit_price": chosen.get("price") if chosen.get("price") is not None else draft.unit_price,
                "step": "confirm",
            }
        )
        return draft, build_confirm_message(draft), "order_collection"

    if draft.step == "confirm":
        if is_affirmative(message):
            return (
                draft.model_copy(update={"step": "address"}),
                "📍 Хүргэлтийн хаяг бичнэ үү (дүүрэг, хороо, байр, тоот):",
                "order_collection",
            )
        return None, "❌ Захиалга цуцлагдлаа. Өөр асуух зүйл байвал бичнэ үү!", "order_collection"

    if draft.step == "address":
        return (
            draft.model_copy(update={"address": message.strip(), "step": "phone"}),
            "📱 Утасны дугаар бичнэ үү (жишээ: 99112233):",
            "order_collection",
        )

    phone = extract_phone(message)
    if not phone:
        return draft, "8 оронтой утасны дугаар бичнэ үү (жишээ: 99112233):", "order_collection"
    draft = draft.model_copy(update={"phone": phone})
    order = await dao.create_chat_order(store_id, draft)
    await notifications.dispatch_notification(
        store_id,
        "new_order",
        {
            "order_id": order.get("id"),
            "order_number": order.get("order_number"),
            "total_amount": order.get("total_amount"),
        },
    )
    variant = f" ({draft.variant_label})" if draft.variant_label else ""
    reply = (
        "✅ Захиалга амжилттай!\n\n"
        f"📋 Захиалгын дугаар: {order.get('order_number')}\n"
        f"📦 {draft.product_name}{variant} x{draft.quantity}\n"
        f"💰 Нийт: {format_price(order.get('total_amount'))}\n"
        f"📍 Хаяг: {draft.address}\n"
        f"📱 Утас: {phone}\n\n"
        "Менежер тантай холбогдож баталгаажуулна. Баярлалаа! 🙏"
    )
    return None, reply, "order_created"


def _build_system_prompt(
    store_name: str,
    language_label: str,
    products: Sequence[Mapping[str, Any]],
    orders: Sequence[Mapping[str, Any]],
    settings: Mapping[str, Any],
) -> str:
    prompt = SYSTEM_PROMPT_TEMPLATE.format(store_name=store_name, language_label=language_label)
    if products:
        prompt += "\n\nБүтээгдэхүүнүүд:\n"
        for index, product in enumerate(products, start=1):
            prompt += f"{index}. {product.get('name')} — {format_price(product.get('base_price'))}"
            if product.get("description"):
                prompt += f" | {str(product['description'])[:150]}"
            prompt += "\n"
            faqs = product.get("product_faqs")
            if isinstance(faqs, dict):
                for key, value in faqs.items():
                    if value:
                        prompt += f"   {key}: {value}\n"
    if orders:
        prompt += "\n\nЗахиалгууд:\n"
        for order in orders:
            prompt += f"• {order.get('order_number')} — {order.get('status')} — {format_price(order.get('total_amount'))}\n"
    if settings.get("return_policy"):
        prompt += f"\n\nБУЦААЛТ/СОЛИЛТЫН БОДЛОГО:\n{settings['return_policy']}\n"
    else:
        prompt += '\nБуцаалт/солилтын тухай асуувал "менежерээс лавлана уу" гэж хариулна.\n'
    return prompt


def _request_completion(client: Any, messages: List[Dict[str, str]]) -> Optional[str]:
    completion = client.chat.completions.create(model=OPENAI_MODEL, max_tokens=500, messages=messages)
    if completion.choices:
        return completion.choices[0].message.content or None
    return None


async def generate_reply(
    intent: str,
    products: Sequence[Mapping[str, Any]],
    orders: Sequence[Mapping[str, Any]],
    store_name: str,
    message: str,
    settings: Mapping[str, Any],
    history: Optional[Sequence[Mapping[str, Any]]] = None,
) -> str:
    """Contextual OpenAI reply when configured and there is history; template otherwise."""

    client = get_openai_client()
    if client is not None and history:
        _, language_label = detect_language(message)
        messages = [{"role": "system", "content": _build_system_prompt(store_name, language_label, products, orders, settings)}]
        messages += [
            {"role": "user" if row.get("is_from_customer") else "assistant", "content": str(row.get("content") or "")}
            for row in history
        ]
        messages.append({"role": "user", "content": message})
        try:
            reply = await asyncio.to_thread(_request_completion, client, messages)
        except OpenAIError as exc:  # pragma: no cover - depends on network
            logger.error("Contextual chat reply failed, using template: %s", exc)
            reply = None
        if reply:
            return reply
    return generate_response(intent, products, orders, store_name, settings)


def _stored_products(products: Sequence[Mapping[str, Any]]) -> List[StoredProduct]:
    return [
        StoredProduct(id=str(p["id"]), name=str(p.get("name") or ""), base_price=float(p.get("base_price") or 0))
        for p in products
        if p.get("id")
    ]


async def _answer(
    dao,
    *,
    store_id: str,
    store_name: str,
    conversation_id: str,
    customer_id: Optional[str],
    message: str,
    state: ConversationState,
    follow_up: Optional[FollowUpResult],
    settings: Mapping[str, Any],
) -> Tuple[str, float, List[Dict[str, Any]], str, Optional[OrderDraft]]:
    """Return (intent, confidence, products, reply, order_draft) for one customer turn."""

    max_products = int(settings.get("max_products") or 5)
    draft = state.order_draft
    products: List[Dict[str, Any]] = []
    orders: List[Dict[str, Any]] = []

    async def history() -> List[Dict[str, Any]]:
        if get_openai_client() is None:
            return []
        rows = await dao.fetch_recent_messages(conversation_id, limit=HISTORY_LIMIT + 1)
        return rows[:-1]

    async def lookup_orders(query: str) -> List[Dict[str, Any]]:
        order_number = extract_order_number(message)
        if order_number:
            return await dao.search_orders(store_id, order_number, customer_id=customer_id, exact=True)
        return await dao.search_orders(store_id, query, customer_id=customer_id)

    if follow_up is not None:
        if follow_up.type == "order_step_input" and draft is not None:
            draft, reply, intent = await continue_order(dao, draft, message, store_id)
            return intent, 1.0, products, reply, draft
        if follow_up.type == "order_intent" and follow_up.product is not None:
            draft, reply = await start_order(dao, follow_up.product)
            return "order_collection", 1.0, products, reply, draft
        if follow_up.type in ("number_reference", "select_single") and follow_up.product is not None:
            product = follow_up.product
            reply = (
                f"**{product.name}**\n💰 {format_price(product.base_price)}\n\n"
                "Энэ бүтээгдэхүүнийг захиалмаар байвал бичнэ үү!"
            )
            return "product_detail", 1.0, [product.model_dump()], reply, draft
        if follow_up.type == "price_question" and follow_up.products:
            price_list = "\n".join(
                f"{index}. {p.name} — {format_price(p.base_price)}"
                for index, p in enumerate(follow_up.products, start=1)
            )
            return "price_info", 1.0, [p.model_dump() for p in follow_up.products], f"Үнийн мэдээлэл:\n\n{price_list}", draft
        if follow_up.type == "query_refinement" and follow_up.refined_query:
            products = await dao.search_products(store_id, follow_up.refined_query, limit=max_products)
            reply = await generate_reply(
                "product_search", products, orders, store_name, follow_up.refined_query, settings, await history()
            )
            return "product_search", 1.0, products, reply, draft
        if follow_up.type in ("size_question", "contextual_question"):
            intent = "size_info" if follow_up.type == "size_question" else CONTEXT_TOPIC_INTENTS.get(
                follow_up.context_topic or "", "general"
            )
            products = [p.model_dump() for p in state.last_products]
            if intent == "order_status":
                orders = await lookup_orders("")
            reply = await generate_reply(intent, products, orders, store_name, message, settings, await history())
            return intent, 1.0, products, reply, draft

    classified = classify_intent_with_confidence(message)
    intent = classified.intent
    terms = extract_search_terms(message)
    if intent in PRODUCT_SEARCH_INTENTS:
        products = await dao.search_products(store_id, terms or message, limit=max_products)
    if intent == "order_status":
        orders = await lookup_orders(terms)
    if intent == "general" and classified.confidence < LOW_CONFIDENCE_THRESHOLD:
        intent = "low_confidence" if not products else "product_suggestions"

    if products and has_order_intent(message):
        draft, reply = await start_order(dao, _stored_products(products)[0], message)
        return "order_collection", classified.confidence, products, reply, draft

    reply = await generate_reply(intent, products, orders, store_name, message, settings, await history())
    return intent, classified.confidence, products, reply, draft


async def handle_widget_message(dao, payload: WidgetChatRequest) -> WidgetChatResponse:
    """Process one customer message from the storefront widget."""

    store_id = str(payload.store_id)
    message = payload.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message cannot be empty")

    store = await dao.get_store(store_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    settings = store.get("chatbot_settings") if isinstance(store.get("chatbot_settings"), dict) else {}
    store_name = store.get("name") or DEFAULT_STORE_NAME

    if payload.conversation_id:
        conversation = await dao.get_conversation(str(payload.conversation_id), store_id)
        if not conversation:
            raise HTTPException(status_code=404, detail="Conversation not found")
    else:
        conversation = await dao.create_conversation(store_id, payload.customer_name)
    conversation_id = str(conversation["id"])

    await dao.insert_message(conversation_id, message, is_from_customer=True, is_ai_response=False)

    if matches_handoff_keywords(message, settings):
        reply = settings.get("handoff_message") or DEFAULT_HANDOFF_MESSAGE
        await dao.update_conversation(
            conversation_id,
            {"status": "escalated", "escalated_at": datetime.now(timezone.utc).isoformat()},
        )
        await dao.insert_message(
            conversation_id, reply, is_from_customer=False, is_ai_response=True, metadata={"type": "handoff"}
        )
        await notifications.dispatch_notification(
            store_id,
            "escalation",
            {"conversation_id": conversation_id, "level": "high", "signals": "handoff_keywords"},
        )
        return WidgetChatResponse(
            reply=reply, intent="handoff", confidence=1.0, conversation_id=conversation_id, escalated=True
        )

    outcome = await process_escalation(dao, conversation_id, message, store_id, settings)
    if outcome.escalated:
        return WidgetChatResponse(
            reply=outcome.escalation_message or "",
            intent="escalation",
            confidence=1.0,
            conversation_id=conversation_id,
            escalated=True,
        )

    state, metadata = await dao.read_state(conversation_id)
    follow_up = resolve_follow_up(message, state)
    intent, confidence, products, reply, draft = await _answer(
        dao,
        store_id=store_id,
        store_name=store_name,
        conversation_id=conversation_id,
        customer_id=conversation.get("customer_id"),
        message=message,
        state=state,
        follow_up=follow_up,
        settings=settings,
    )

    await dao.insert_message(
        conversation_id,
        reply,
        is_from_customer=False,
        is_ai_response=True,
        metadata={
            "intent": intent,
            "products_found": len(products),
            "follow_up": follow_up.type if follow_up else None,
        },
    )
    next_state = update_state(state, intent, _stored_products(products), message).model_copy(
        update={"order_draft": draft}
    )
    await dao.write_state(conversation_id, metadata, next_state)
    logger.info(
        "Widget message answered",
        extra={"store_id": store_id, "conversation_id": conversation_id, "intent": intent},
    )
    return WidgetChatResponse(
        reply=reply,
        intent=intent,
        confidence=round(confidence, 2),
        conversation_id=conversation_id,
        escalated=False,
    )


__all__ = [
    "SupabaseChatDAO",
    "build_confirm_message",
    "continue_order",
    "detect_language",
    "extract_order_number",
    "extract_phone",
    "generate_reply",
    "handle_widget_message",
    "has_order_intent",
    "is_affirmative",
    "resolve_variant",
    "start_order",
]
