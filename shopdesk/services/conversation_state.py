"""Conversation memory for the chat widget.

State lives in ``conversations.metadata.conversation_state`` and lets the
widget understand follow-ups ("2", "энийг авъя", "үнэ хэд?") without a model
call.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from shopdesk.services.chat_intents import neutralize_vowels, normalize_text

MAX_STORED_PRODUCTS = 10


class StoredProduct(BaseModel):
    id: str
    name: str
    base_price: float = 0


class OrderDraft(BaseModel):
    product_id: str
    product_name: str
    variant_id: Optional[str] = None
    variant_label: Optional[str] = None
    unit_price: float = 0
    quantity: int = 1
    step: Literal["variant", "confirm", "address", "phone"] = "variant"
    address: Optional[str] = None
    phone: Optional[str] = None


class ConversationState(BaseModel):
    last_intent: str = ""
    last_products: List[StoredProduct] = Field(default_factory=list)
    last_query: str = ""
    turn_count: int = 0
    order_draft: Optional[OrderDraft] = None


FollowUpType = Literal[
    "number_reference",
    "select_single",
    "order_intent",
    "order_step_input",
    "price_question",
    "size_question",
    "contextual_question",
    "query_refinement",
    "prefer_llm",
]

ContextTopic = Literal["delivery", "order", "payment", "material", "warranty", "stock", "detail"]


class FollowUpResult(BaseModel):
    type: FollowUpType
    product: Optional[StoredProduct] = None
    products: Optional[List[StoredProduct]] = None
    refined_query: Optional[str] = None
    reason: Optional[Literal["emotional", "repeated_low_confidence"]] = None
    context_topic: Optional[ContextTopic] = None


def state_from_metadata(metadata: Any) -> ConversationState:
    """Extract the stored state from a conversation's metadata column."""

    if not isinstance(metadata, Mapping):
        return ConversationState()
    raw = metadata.get("conversation_state")
    if not isinstance(raw, Mapping):
        return ConversationState()

    products: List[StoredProduct] = []
    raw_products = raw.get("last_products")
    if isinstance(raw_products, list):
        for item in raw_products[:MAX_STORED_PRODUCTS]:
            try:
                products.append(StoredProduct.model_validate(item))
            except ValidationError:
                continue

    draft: Optional[OrderDraft] = None
    if isinstance(raw.get("order_draft"), Mapping):
        try:
            draft = OrderDraft.model_validate(raw["order_draft"])
        except ValidationError:
            draft = None

    turn_count = raw.get("turn_count")
    return ConversationState(
        last_intent=raw["last_intent"] if isinstance(raw.get("last_intent"), str) else "",
        last_products=products,
        last_query=raw["last_query"] if isinstance(raw.get("last_query"), str) else "",
        turn_count=turn_count if isinstance(turn_count, int) and not isinstance(turn_count, bool) else 0,
        order_draft=draft,
    )


def merge_state_into_metadata(metadata: Any, state: ConversationState) -> Dict[str, Any]:
    existing = dict(metadata) if isinstance(metadata, Mapping) else {}
    existing["conversation_state"] = state.model_dump(mode="json")
    return existing


ORDINALS: Dict[str, int] = {
    "эхнийх": 0, "эхний": 0, "нэг дэх": 0, "нэгдүгээр": 0, "1": 0,
    "хоёр дахь": 1, "хоёрдугаар": 1, "2": 1,
    "гурав дахь": 2, "гуравдугаар": 2, "3": 2,
    "дөрөв дэх": 3, "дөрөвдүгээр": 3, "4": 3,
    "тав дахь": 4, "тавдугаар": 4, "5": 4,
    "сүүлийнх": -1, "сүүлийн": -1,
}

ORDER_WORD_STEMS = ["захиал", "авъ", "авь"]
ORDER_EXACT_WORDS = ["авна", "авах", "авйа", "ави", "авмаар", "тийм", "за", "зүгээр", "болно"]

SELECT_WORDS = [
    "энийг", "авъя", "авья", "энийг авъя", "энийг авья", "үүнийг",
    "энэ", "энийгээ", "үүнийгээ", "авна", "авах",
    "авйа",
    "энийг авч", "захиалъя", "захиалья",
]

PRICE_WORDS = [
    "үнэ", "хэд", "хэдтэй", "үнэтэй", "ямар үнэ", "үнийг",
    "хэдвэ", "хэд вэ", "үнэнь", "үнэ нь", "хэдэн төг", "хэдэн төгрөг",
    "ямар үнэтэй", "хямдруулна",
]

EMOTIONAL_WORDS = [
    "яагаад", "яагаа", "ойлгохгүй", "ойлгосонгүй", "бухимдсан", "бухимдаа",
    "уурласан", "уурлаа", "сэтгэл ханамжгүй",
    "хэцүү", "ядарсан", "итгэхгүй", "гомдсон", "гомдоо", "харамсалтай",
    "яаж ингэж", "яаж болж", "юу болсон", "ямар учиртай",
    "тусалж", "тусална уу", "гуйж", "гуйя",
    "юубэ", "юу бэ", "яавал", "ойлгохгуй", "ойлгсонгуй",
    "алга болчих", "хариу өг", "хариу огоч",
]

REFINEMENT_WORDS = [
    "улаан", "хөх", "ногоон", "хар", "цагаан", "шар", "ягаан", "бор", "саарал",
    "том", "жижиг", "дунд", "урт", "богино", "өргөн", "нарийн",
    "s", "m", "l", "xl", "xxl",
]

SIZE_QUESTION_WORDS = [
    "размер", "хэмжээ", "хэмжээг", "хэмжээ нь", "тохирох", "тохирно", "тохирох уу",
    "таарах", "таарна", "таарах уу",
    "али нь", "алинийг", "сайз", "сайзаа",
    "али ни",
    "size", "fit", "measurement",
    "хэмжээнь", "размераа", "сайзаар", "ямар размер",
    "багтах", "багтана", "багтах уу",
]

CONTEXT_KEYWORDS: List[tuple] = [
    ("delivery", [
        "хүргэлт", "хүргэх", "хүргэнэ", "хэзээ ирэх", "хэдэн өдөр",
        "шуудан", "хаяг", "хүргүүлэх",
        "delivery", "deliver", "shipping",
        "аймаг", "сум", "дүүрэг", "хороо", "хөдөө", "орон нутаг",
        "хүргүүлмээр", "хүрч", "хүрнэ", "хүрэх",
    ]),
    ("order", [
        "захиалах", "захиалга", "захиалмаар", "захиалъя", "захиалья",
        "яаж авах", "хэрхэн авах", "худалдаж авах",
        "order", "buy", "purchase",
        "захялах", "захялга",
    ]),
    ("payment", [
        "төлбөр", "төлөх", "шилжүүлэг", "карт", "данс",
        "qpay", "монпэй", "socialpay", "дансаар",
        "payment", "pay",
        "кюпэй", "сошиал пэй", "хипэй", "hipay",
        "хуваалцаа", "хуваах", "хуваан", "зээлээр", "лизинг",
        "шилжүүлэх", "төлье", "төлъе",
    ]),
    ("material", [
        "материал", "даавуу", "бүтэц", "бүрдэл", "найрлага",
        "ноос", "торго", "арьс", "хөвөн", "ноолуур",
        "material", "fabric", "cotton", "cashmere",
        "кашемир", "тэмээний", "ноосон", "ноолууран",
        "чанар", "зэрэг", "хөөсөн", "нэхмэл",
    ]),
    ("warranty", [
        "баталгаа", "баталгаат", "буцаах боломж", "солих боломж",
        "warranty", "guarantee", "return policy",
        "буцаалт", "буцаах", "солих", "солилцоо",
    ]),
    ("stock", [
        "нөөц", "үлдэгдэл", "байгаа юу", "бий юу", "бэлэн байна",
        "stock", "available", "availability",
        "дууссан уу", "дуусчихсан уу",
    ]),
    ("detail", [
        "дэлгэрэнгүй", "мэдээлэл", "тайлбар", "илүү", "дэлгэрэнгүй мэдээлэл",
        "detail", "details", "info", "more info",
    ]),
]

BODY_MEASUREMENT_RE = re.compile(r"\d+\s*(?:кг|см|kg|cm)", re.IGNORECASE)
_LEADING_NUMBER_RE = re.compile(r"^(\d+)")
_SELECTION_SUFFIX_RE = re.compile(r"^(г|ийг|дугаарыг|дугаар|дэх|дахь|ыг)$")
_PRICE_RE = re.compile(r"(\d[\d,]*)\s*(?:к|k|ийнхийг|ынхийг|инхиг|ийг|ыг|₮)?", re.IGNORECASE)
_PRICE_CONTEXT_RE = re.compile(r"сонирх|авъя|авья|авах|авна|энийг|үүнийг|ийнхийг|ынхийг|инхиг|ийг|₮", re.IGNORECASE)
_PRICE_CONTEXT_NORMALIZED_RE = re.compile(r"сонирх|авйа|авах|авна|энийг|үүнийг", re.IGNORECASE)

ORDER_TRIGGER_INTENTS = ("product_detail", "product_search", "product_suggestions")
PRESERVE_INTENTS = (
    "greeting", "thanks", "size_info",
    "delivery_info", "order_info", "payment_info", "warranty_info", "stock_info",
)
SAVE_PRODUCT_INTENTS = ("product_search", "low_confidence", "product_suggestions", "product_detail")


def _padded_includes(padded_normalized: str, keyword: str) -> bool:
    normalized_keyword = normalize_text(keyword)
    if f" {normalized_keyword} " in padded_normalized:
        return True
    return f" {neutralize_vowels(normalized_keyword)} " in neutralize_vowels(padded_normalized)


def _any_word(padded: str, words: List[str]) -> bool:
    return any(_padded_includes(padded, word) for word in words)


def _match_product_name(message: str, products: List[StoredProduct]) -> Optional[StoredProduct]:
    lower_message = message.lower()
    for product in products:
        name_words = [word for word in product.name.lower().split() if len(word) >= 3]
        matches = sum(1 for word in name_words if word in lower_message)
        if matches >= 2 or (len(name_words) == 1 and matches == 1):
            return product
    return None


def _match_price_selection(
    message: str, normalized: str, products: List[StoredProduct]
) -> Optional[StoredProduct]:
    match = _PRICE_RE.search(message)
    if not match:
        return None
    raw_number = int(match.group(1).replace(",", ""))
    matched = next((p for p in products if p.base_price == raw_number), None)
    # "145" is shorthand for 145 000
    if matched is None and raw_number < 10000:
        matched = next((p for p in products if p.base_price == raw_number * 1000), None)
    if matched is None:
        return None
    if _PRICE_CONTEXT_RE.search(message) or _PRICE_CONTEXT_NORMALIZED_RE.search(normalized):
        return matched
    return None


def resolve_follow_up(message: str, state: ConversationState) -> Optional[FollowUpResult]:
    """Detect whether ``message`` refers back to the previous turn.

    Returns None when the message should go through normal classification.
    """

    if state.turn_count == 0:
        return None
    if state.order_draft is not None:
        return FollowUpResult(type="order_step_input")

    normalized = normalize_text(message)
    padded = f" {normalized} "
    products = state.last_products

    if products:
        for pattern, index in ORDINALS.items():
            if normalized == pattern:
                resolved = len(products) - 1 if index == -1 else index
                if 0 <= resolved < len(products):
                    return FollowUpResult(type="number_reference", product=products[resolved])

        number_match = _LEADING_NUMBER_RE.match(normalized)
        if number_match:
            rest = normalized[number_match.end():].strip()
            # "5 сартай" (five months old) is not a product pick.
            if rest == "" or _SELECTION_SUFFIX_RE.match(rest):
                index = int(number_match.group(1)) - 1
                if 0 <= index < len(products):
                    return FollowUpResult(type="number_reference", product=products[index])

    if len(products) > 1:
        named = _match_product_name(message, products)
        if named is not None:
            return FollowUpResult(type="number_reference", product=named)
        priced = _match_price_selection(message, normalized, products)
        if priced is not None:
            return FollowUpResult(type="number_reference", product=priced)

    if state.last_intent in ORDER_TRIGGER_INTENTS and products:
        stems = [normalize_text(stem) for stem in ORDER_WORD_STEMS]
        for word in normalized.split():
            if any(word.startswith(stem) for stem in stems) or _any_word(f" {word} ", ORDER_EXACT_WORDS):
                return FollowUpResult(type="order_intent", product=products[0])

    if len(products) == 1 and _any_word(padded, SELECT_WORDS):
        return FollowUpResult(type="select_single", product=products[0])

    if products:
        # Size before price: "хэмжээ хэд" asks for a size, not a price.
        if BODY_MEASUREMENT_RE.search(normalized) or BODY_MEASUREMENT_RE.search(message):
            return FollowUpResult(type="size_question", products=products)
        if _any_word(padded, SIZE_QUESTION_WORDS):
            return FollowUpResult(type="size_question", products=products)

        for topic, words in CONTEXT_KEYWORDS:
            if _any_word(padded, words):
                return FollowUpResult(type="contextual_question", products=products, context_topic=topic)

        if _any_word(padded, PRICE_WORDS):
            return FollowUpResult(type="price_question", products=products)

    if state.last_intent == "product_search" and state.last_query and _any_word(padded, REFINEMENT_WORDS):
        return FollowUpResult(type="query_refinement", refined_query=f"{state.last_query} {normalized}")

    if _any_word(padded, EMOTIONAL_WORDS):
        return FollowUpResult(type="prefer_llm", reason="emotional")

    if state.last_intent == "low_confidence":
        return FollowUpResult(type="prefer_llm", reason="repeated_low_confidence")

    return None


def update_state(
    current: ConversationState,
    intent: str,
    products: List[StoredProduct],
    query: str,
) -> ConversationState:
    """Next state after a turn; small talk keeps the products from the previous turn."""

    saves_products = intent in SAVE_PRODUCT_INTENTS
    preserves = intent in PRESERVE_INTENTS

    if saves_products and products:
        next_products = list(products[:MAX_STORED_PRODUCTS])
    elif preserves:
        next_products = current.last_products
    else:
        next_products = []

    if saves_products and query:
        next_query = query
    elif preserves:
        next_query = current.last_query
    else:
        next_query = ""

    return ConversationState(
        last_intent=current.last_intent if preserves else intent,
        last_products=next_products,
        last_query=next_query,
        turn_count=current.turn_count + 1,
        order_draft=current.order_draft,
    )


__all__ = [
    "ConversationState",
    "FollowUpResult",
    "OrderDraft",
    "StoredProduct",
    "merge_state_into_metadata",
    "resolve_follow_up",
    "state_from_metadata",
    "update_state",
]
