"""Rule-based intent classification and reply templates for the chat widget.

Customers write in Cyrillic Mongolian, in Latin transliteration, or in a mix of
both. Every message and keyword goes through :func:`normalize_text` so both
forms meet on the same Cyrillic spelling before matching.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

# Longest first: digraphs must be replaced before single letters.
LATIN_DIGRAPHS: Tuple[Tuple[str, str], ...] = (
    ("ts", "ц"), ("sh", "ш"), ("ch", "ч"),
    ("kh", "х"), ("zh", "ж"), ("yu", "ю"),
    ("ya", "я"), ("yo", "ё"), ("ye", "е"),
)

LATIN_TO_CYRILLIC: Dict[str, str] = {
    "a": "а", "b": "б", "c": "с", "d": "д", "e": "е", "f": "ф",
    "g": "г", "h": "х", "i": "и", "j": "ж", "k": "к", "l": "л",
    "m": "м", "n": "н", "o": "о", "p": "п", "r": "р", "s": "с",
    "t": "т", "u": "у", "v": "в", "w": "в", "x": "х", "y": "й", "z": "з",
}

_LATIN_RE = re.compile(r"[a-z]")
_NON_WORD_RE = re.compile(r"[^\u0400-\u04ff\u0600-\u06ff\d\s]")
_SPACES_RE = re.compile(r"\s+")
_VOWEL_TABLE = str.maketrans({"э": "е", "ү": "у", "ө": "о", "й": "и"})


def normalize_text(text: str) -> str:
    """Lowercase, transliterate Latin to Cyrillic, drop punctuation."""

    result = text.lower()
    for latin, cyrillic in LATIN_DIGRAPHS:
        result = result.replace(latin, cyrillic)
    result = _LATIN_RE.sub(lambda match: LATIN_TO_CYRILLIC.get(match.group(0), match.group(0)), result)
    result = _NON_WORD_RE.sub(" ", result)
    return _SPACES_RE.sub(" ", result).strip()


def neutralize_vowels(text: str) -> str:
    """Fold Mongolian-only vowels onto their Latin-typed counterparts.

    ``neutralize_vowels("хемжее") == neutralize_vowels("хэмжээ")``
    """

    return text.translate(_VOWEL_TABLE)


INTENT_KEYWORDS: Dict[str, List[str]] = {
    "product_search": [
        "бүтээгдэхүүн", "бараа", "ямар", "хувцас", "гутал", "цүнх",
        "пүүз", "аксессуар", "хайх", "харуулна уу",
        "үнэ", "үнэтэй", "хямд", "шинэ", "сонирхож", "авмаар", "худалдаж",
        "зарна", "зарах", "категори", "төрөл",
        "цамц", "даашинз", "өмд", "куртка", "пальто", "хүрэм", "дээл",
        "малгай", "кашемир", "ноолуур", "ноолууран",
        "оймс", "бээлий", "ороолт", "цүнхний",
        "загвар", "загварууд", "өнгө", "өнгөөр", "өнгөтэй",
        "тирко", "турсик", "леевчик", "боолт", "боолтууд",
        "бензэн", "комд", "дотортой", "шилэн", "гуятай", "гуягүй",
        "product", "products", "item", "buy", "purchase", "shop", "catalog",
        "price", "cheap", "expensive", "new arrival", "show me", "browse",
        "search", "find", "looking for", "want to buy", "how much",
        "available", "in stock",
        "бутээгдэхүүн", "бутээгдхүүн", "бүтээгдхүүн",
        "барааа", "бараагаа",
        "хувцаас", "хувцс",
        "гуталаа", "гутлаа",
        "цунх", "цүнхээ",
        "пууз", "пүүзээ",
        "аксесуар", "аксесор",
        "унэ", "унэтэй", "үнээ",
        "хямдхан", "хямдралтай", "хямдрал", "хямдарсан", "үнэгүй",
        "шинэхэн", "шинээр",
        "авах", "авъя", "авья", "авмааар",
        "хайж", "хайна", "хайлт",
        "харуул", "үзүүл", "үзүүлнэ үү",
        "каталог", "жагсаалт",
        "сонирхож", "сонирхоод", "сонирхох", "сонирхи", "сонирх",
        "авий", "авии", "ави", "авья",
        "авбал", "авлаа", "авсан",
        "захиалъя", "захиалья", "захиалах", "захиалая",
        # "бну" is left out so the slang greeting "сн бну" stays a greeting
        "байгаа юу", "бий юу", "бга юу", "бгаа юу",
        "байна уу",
        "бга ю", "бгаа", "бга", "бий", "плаж",
        "хэд", "хэдээр",
        "умд", "цамц",
    ],
    "order_status": [
        "захиалга", "хаана", "илгээсэн", "явсан",
        "статус", "трэк", "дугаар", "хэзээ", "захиалсан", "хүлээж",
        "order", "order status", "tracking", "track", "where is", "shipped",
        "delivery status", "when will", "my order", "order number",
        "захялга", "захиалг", "захиалаа", "захиалгаа",
        "ирэхүү", "ирэх үү", "ирэхгүй",
        "илгээсэнүү", "явуулсан",
        "трэкинг",
        "дугаараа", "дугаарыг",
        "хүлээсэн", "хүлээлгэ",
        "шалгах", "шалгана", "шалгамаар",
        "хэзээ ирэх",
        "маргааш ирэх", "өглөө ирэх", "өнөөдөр ирэх", "орой ирэх",
    ],
    "greeting": [
        "сайн байна", "сайн уу", "байна уу", "сайхан",
        "өглөөний мэнд", "мэнд",
        "hello", "hi", "hey", "good morning", "good evening", "greetings",
        "сайн бн", "сн бн уу", "сайн бна", "сайнуу", "сайн уу",
        "юу байна", "сонин юу байна",
        "мэндээ", "мэнд хүргэе",
        "амар", "амрагтай",
        "оройн мэнд",
        "бнау", "бна уу", "сбну", "сайн уу",
        "сн бну", "сн бнуу", "сн бн",
        "сайнбну", "сайнбнуу", "сн уу",
    ],
    "thanks": [
        "баярлалаа", "гайхалтай", "сайхан", "маш сайн", "рахмат", "харин",
        "thanks", "thank", "thank you", "appreciate", "great", "awesome",
        "perfect", "wonderful",
        "баярлаа", "баярласан", "баярлсан", "баярлж", "баяртай",
        "гоё", "гое", "гое байна",
        "сайн байна лээ", "зүгээр", "за",
        "маш гоё", "маш зөв",
        "рахмэт",
        "мерси",
    ],
    "complaint": [
        "гомдол", "асуудал", "муу", "буруу", "алдаа", "сэтгэл ханамжгүй",
        "чанар",
        "complaint", "problem", "issue", "broken", "damaged", "defective",
        "wrong", "bad", "terrible",
        "not working", "disappointed", "unhappy", "angry",
        "гомдоллох", "гомдолтой", "гомдоол",
        "асуудалтай", "асуудал гарсан", "проблем",
        "муухай", "маш муу", "хэрэггүй",
        "буруутай", "буруугаар",
        "алдаатай",
        "чанаргүй", "чанар муу",
        "эвдэрсэн", "гэмтсэн", "гэмтэл",
        "уурласан", "бухимдсан",
        "хариуцлага", "хариуцлагагүй",
    ],
    "return_exchange": [
        "буцаах", "буцаалт", "солих", "солилт", "солиулах",
        "буцаан", "буцааж", "буцаагдах",
        # suffixed forms score a full match instead of a prefix half point
        "буцаалтын", "солилтын", "солиулж", "буцаагдсан",
        "хураамж",
        "буцаах бодлого", "буцаах нөхцөл", "буцаалтын нөхцөл",
        "солих боломж", "буцаах боломж",
        "тохирохгүй", "өөр хэмжээ", "өөр өнгө", "өөрчлөх",
        "return", "return policy", "exchange", "refund",
        "can i return", "exchange policy", "swap",
        "want to exchange", "want to return",
        "буцааж болох", "солиулж болох", "буцаалт хийх",
        "буцааж өгөх", "солиулж өгөх",
        "буцааx", "солиулаx",
    ],
    "size_info": [
        "размер", "хэмжээ", "size", "том", "жижиг", "дунд",
        "xl", "xxl",
        "size chart", "size guide", "what size", "fit", "measurement",
        "small", "medium", "large",
        "размераа", "размерийн", "сайз", "сайзаа",
        "хэмжээтэй", "хэмжээний", "хэмжээгээ",
        "томхон", "жижигхэн", "дундаж",
        "тохирох", "тохируулах",
        "урт", "богино", "өргөн", "нарийн",
        "кг", "см", "kg", "cm",
        "жин", "жинтэй", "өндөр", "өндөртэй",
        "биеийн", "бие", "али нь", "алинийг",
        "тохирно", "тохирох уу", "таарах", "таарна",
    ],
    "payment": [
        "төлбөр", "төлөх", "данс", "шилжүүлэг", "qpay", "карт",
        "бэлэн", "зээл", "хуваах",
        "payment", "pay", "how to pay", "bank transfer", "card", "cash",
        "installment", "credit", "invoice",
        "төлбөрөө", "төлье", "төлъе", "төлсөн",
        "дансаар", "дансруу", "данс руу",
        "шилжүүлэх", "шилжүүлье",
        "картаар", "картаа",
        "бэлнээр", "бэлэнээр",
        "зээлээр", "хуваалаа",
        "хэрхэн төлөх", "яаж төлөх",
        "мөнгө", "мөнгөө",
        "кюпэй", "сошиал пэй", "socialpay", "монпэй", "monpay",
        "хипэй", "hipay", "лэнд", "лизинг", "хуваан төлөх",
        "сторпэй", "storepay",
    ],
    "shipping": [
        "хүргэлт", "хүргэх", "хаяг", "хотод", "хөдөө", "шуудан",
        "унаа", "өдөр", "хоног", "ирэх",
        "shipping", "delivery", "deliver", "address", "express",
        "how long", "when arrive", "ship to", "courier",
        "хүргүүлэх", "хүргээд", "хүргэнэ үү", "хүргэлтийн",
        "хаягаа", "хаягийн", "хаягаар",
        "хотруу", "хот руу",
        "хөдөөрүү", "хөдөө рүү",
        "шууданаар",
        "хэдэн өдөр", "хэдэн хоног",
        "хурдан", "яаралтай хүргэлт",
        "өнөөдөр хүргэх", "маргааш",
        "хургелт", "хургэлт",
        "аймаг", "сум", "дүүрэг", "хороо", "орон нутаг",
        "хан уул", "баянгол", "сүхбаатар", "чингэлтэй", "баянзүрх",
        "сонгинохайрхан", "налайх", "багануур",
        "байр", "баир", "давхар", "тоот", "орц", "хотхон", "хороолол",
    ],
}

NORMALIZED_INTENT_KEYWORDS: Dict[str, List[str]] = {
    intent: [normalize_text(keyword) for keyword in keywords]
    for intent, keywords in INTENT_KEYWORDS.items()
}

MIN_PREFIX_LEN = 4
LOW_CONFIDENCE_THRESHOLD = 0.5

SIZE_PATTERNS = (
    re.compile(r"\d+\s*кг"),
    re.compile(r"\d+\s*см"),
    re.compile(r"\d+\s*kg", re.IGNORECASE),
    re.compile(r"\d+\s*cm", re.IGNORECASE),
)


@dataclass(frozen=True)
class IntentResult:
    intent: str
    confidence: float


def _prefix_match_word(normalized_message: str, keyword: str) -> Optional[str]:
    if len(keyword) < MIN_PREFIX_LEN:
        return None
    for word in normalized_message.split(" "):
        if word.startswith(keyword) or (keyword.startswith(word) and len(word) >= MIN_PREFIX_LEN):
            return word
    return None


def has_body_measurement(message: str, normalized: Optional[str] = None) -> bool:
    normalized = normalize_text(message) if normalized is None else normalized
    return any(pattern.search(normalized) or pattern.search(message) for pattern in SIZE_PATTERNS)


def classify_intent_with_confidence(message: str) -> IntentResult:
    """Score every intent against the message and return the best one.

    A keyword surrounded by word boundaries scores 1, the same after vowel
    folding scores 1, and a prefix overlap of at least four letters scores 0.5
    unless that message word already produced a full match.
    """

    normalized = normalize_text(message)
    padded = f" {normalized} "
    neutral_padded = f" {neutralize_vowels(normalized)} "

    best_intent = "general"
    best_score = 0.0
    for intent, keywords in NORMALIZED_INTENT_KEYWORDS.items():
        score = 0.0
        fully_matched = set()
        for keyword in keywords:
            neutral_keyword = neutralize_vowels(keyword)
            if f" {keyword} " in padded:
                score += 1
                fully_matched.update(keyword.split(" "))
            elif f" {neutral_keyword} " in neutral_padded:
                score += 1
                fully_matched.update(neutral_keyword.split(" "))
            else:
                matching_word = _prefix_match_word(normalized, keyword)
                if matching_word and matching_word not in fully_matched:
                    score += 0.5

        if intent == "size_info" and has_body_measurement(message, normalized):
            score += 2

        if score > best_score:
            best_score = score
            best_intent = intent

    return IntentResult(intent=best_intent, confidence=best_score)


def classify_intent(message: str) -> str:
    return classify_intent_with_confidence(message).intent


STOP_WORDS = frozenset([
    "байна", "уу", "юу", "та", "нар", "надад", "энэ", "тэр", "ямар",
    "ямар нэг", "нэг", "хэд", "хэдэн", "чи", "бид", "тэд", "манай",
    "танай", "миний", "маш", "их", "бага", "мөн", "бас", "ба", "болон",
    "гэж", "гэсэн", "гэдэг", "гэхэд", "харуулна", "харуул", "хайх",
    "сайн", "өглөөний", "мэнд", "сонирхож", "авмаар", "байгаа",
    "бараа", "бара", "барааа", "бараагаа",
    "бүтээгдэхүүн", "бутээгдэхүүн", "бутээгдхүүн", "бүтээгдхүүн",
    "худалдаж", "зарна", "зарах", "авах", "авъя", "авья",
    "үзүүл", "үзүүлнэ", "ймар", "бн", "ве", "вэ",
])

CATEGORY_MAP: Dict[str, str] = {
    "хувцас": "clothing", "хувцаас": "clothing", "хувцс": "clothing",
    "кийим": "clothing", "өмсөх": "clothing",
    "цамц": "clothing", "даашинз": "clothing", "өмд": "clothing",
    "куртка": "clothing", "пальто": "clothing", "хүрэм": "clothing",
    "дээл": "clothing", "малгай": "clothing",
    "кашемир": "clothing", "ноолуур": "clothing", "ноолууран": "clothing",
    "гутал": "shoes", "гуталаа": "shoes", "гутлаа": "shoes",
    "пүүз": "shoes", "пууз": "shoes", "пүүзээ": "shoes",
    "шаахай": "shoes",
    "цүнх": "bags", "цунх": "bags", "цүнхээ": "bags",
    "уут": "bags",
    "аксессуар": "accessories", "аксесуар": "accessories", "аксесор": "accessories",
    "бүс": "accessories", "бүсээ": "accessories",
    "зүүлт": "accessories", "бөгж": "accessories", "бугуйвч": "accessories",
}


def extract_search_terms(message: str) -> str:
    words = normalize_text(message).split()
    return " ".join(word for word in words if len(word) > 1 and word not in STOP_WORDS)


def detect_category(query: str) -> Optional[str]:
    """Return the catalogue category named in ``query``, if any."""

    normalized = normalize_text(query)
    for word, category in CATEGORY_MAP.items():
        if word in normalized:
            return category
    return None


def matches_handoff_keywords(message: str, settings: Mapping[str, Any]) -> bool:
    """True when the store enabled auto handoff and a handoff keyword appears."""

    raw_keywords = settings.get("handoff_keywords")
    if not settings.get("auto_handoff") or not raw_keywords:
        return False
    keywords = [normalize_text(keyword.strip()) for keyword in str(raw_keywords).split(",")]
    normalized = normalize_text(message)
    return any(keyword and keyword in normalized for keyword in keywords)


def format_price(price: Any) -> str:
    try:
        amount = round(float(price))
    except (TypeError, ValueError):
        amount = 0
    return f"{amount:,}".replace(",", " ") + "₮"


ORDER_STATUS_LABELS = {
    "pending": "⏳ Хүлээгдэж байна",
    "confirmed": "✅ Баталгаажсан",
    "processing": "🔧 Бэлтгэж байна",
    "shipped": "🚚 Илгээсэн",
    "delivered": "✅ Хүргэгдсэн",
    "cancelled": "❌ Цуцлагдсан",
}


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _format_date(value: Any) -> str:
    if not value:
        return ""
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).strftime("%Y.%m.%d")
    except ValueError:
        return str(value)


def _product_lines(
    products: Iterable[Mapping[str, Any]],
    *,
    show_prices: bool,
    description_limit: int,
    include_script: bool = False,
) -> str:
    lines = ""
    for index, product in enumerate(products, start=1):
        lines += f"{index}. **{product.get('name')}**\n"
        if show_prices:
            lines += f"   💰 {format_price(product.get('base_price'))}\n"
        description = product.get("description")
        if description:
            lines += f"   📝 {_truncate(str(description), description_limit)}\n"
        if include_script and product.get("sales_script"):
            lines += f"   ✨ {product['sales_script']}\n"
        lines += "\n"
    return lines


def generate_response(
    intent: str,
    products: Sequence[Mapping[str, Any]],
    orders: Sequence[Mapping[str, Any]],
    store_name: str,
    settings: Optional[Mapping[str, Any]] = None,
) -> str:
    """Build the deterministic Mongolian reply for an intent."""

    settings = settings or {}
    show_prices = settings.get("show_prices") is not False

    if intent == "greeting":
        return settings.get("welcome_message") or (
            f"Сайн байна уу! 👋 {store_name}-д тавтай морил. Танд юугаар туслах вэ?\n\n"
            "Би танд бүтээгдэхүүний мэдээлэл, захиалгын статус, хүргэлтийн мэдээлэл зэргийг хэлж өгөх боломжтой."
        )

    if intent == "thanks":
        return "Баярлалаа! 😊 Бусад асуулт байвал чөлөөтэй бичээрэй. Бид үргэлж тусалхад бэлэн!"

    if intent == "product_search":
        if not products:
            return (
                "Уучлаарай, таны хайсан бүтээгдэхүүн одоогоор олдсонгүй. 😔\n\n"
                'Та бүтээгдэхүүний нэр эсвэл төрлөөр хайж үзнэ үү. Жишээ нь: "гутал", "хувцас", "цүнх"'
            )
        return (
            "Танд тохирох бүтээгдэхүүнүүд:\n\n"
            + _product_lines(products, show_prices=show_prices, description_limit=80, include_script=True)
            + "Аль бүтээгдэхүүний талаар дэлгэрэнгүй мэдээлэл авмаар байна?"
        )

    if intent == "order_status":
        if not orders:
            return (
                "Уучлаарай, захиалгын мэдээлэл олдсонгүй. 🔍\n\n"
                "Захиалгын дугаараа оруулна уу, эсвэл бид танд тусалж мэдээлэл шалгах боломжтой."
            )
        response = "Таны захиалгын мэдээлэл:\n\n"
        for order in orders:
            status = order.get("status")
            response += f"📦 **{order.get('order_number')}**\n"
            response += f"   Статус: {ORDER_STATUS_LABELS.get(status, status)}\n"
            response += f"   Дүн: {format_price(order.get('total_amount'))}\n"
            if order.get("tracking_number"):
                response += f"   Трэкинг: {order['tracking_number']}\n"
            response += f"   Огноо: {_format_date(order.get('created_at'))}\n\n"
        return response

    if intent == "complaint":
        return (
            "Уучлаарай таны санал хүсэлтийг хүлээн авлаа. 🙏\n\n"
            "Бидний менежер тантай холбогдож асуудлыг шийдвэрлэнэ. Та утасны дугаараа үлдээнэ үү, "
            "эсвэл бид энэ чатаар дамжуулан тусалъя.\n\nТаны сэтгэл ханамж бидний хувьд маш чухал!"
        )

    if intent == "return_exchange":
        if settings.get("return_policy"):
            return (
                f"🔄 **Буцаалт/Солилтын бодлого:**\n\n{settings['return_policy']}\n\n"
                "Нэмэлт асуулт байвал бичнэ үү!"
            )
        return (
            "🔄 Буцаалт/солилтын талаар менежерээс лавлана уу.\n\n"
            "Манай менежер тантай холбогдож дэлгэрэнгүй мэдээлэл өгнө. Та утасны дугаараа үлдээнэ үү!"
        )

    if intent == "size_info":
        if products:
            return (
                "📏 **Размерийн мэдээлэл:**\n\nТаны биеийн хэмжээнд тулгуурлан манай бүтээгдэхүүнүүд:\n\n"
                + _product_lines(products, show_prices=show_prices, description_limit=150)
                + "Тодорхой бүтээгдэхүүний размерийн талаар дэлгэрэнгүй асуувал бичнэ үү!"
            )
        return (
            "📏 **Размерийн мэдээлэл:**\n\n• S - Жижиг (36-38)\n• M - Дунд (38-40)\n• L - Том (40-42)\n"
            "• XL - Маш том (42-44)\n• XXL - Нэмэлт том (44-46)\n\n"
            "Тодорхой бүтээгдэхүүний размерийн хүснэгтийг авмаар бол бүтээгдэхүүний нэрийг бичнэ үү."
        )

    if intent == "payment":
        return (
            "Төлбөрийн мэдээлэл:\n\n💳 **Бид дараах төлбөрийн хэлбэрүүдийг хүлээн авна:**\n"
            "• QPay - QR код уншуулж төлөх\n• Дансаар шилжүүлэг\n• Бэлнээр (хүргэлтийн үед)\n\n"
            "Төлбөрийн талаар нэмэлт асуулт байвал бичнэ үү."
        )

    if intent == "shipping":
        return (
            "Хүргэлтийн мэдээлэл:\n\n🚚 **Хүргэлтийн нөхцөл:**\n• Улаанбаатар хот: 1-2 ажлын өдөр\n"
            "• Хөдөө орон нутаг: 3-5 ажлын өдөр\n• Хүргэлтийн төлбөр захиалгын дүнгээс хамаарна\n\n"
            "Та хаягаа бичвэл бид хүргэлтийн төлбөрийг тооцоолж хэлж өгье."
        )

    if intent == "product_suggestions":
        return (
            "Уучлаарай, таны хайсан бүтээгдэхүүн олдсонгүй. Гэхдээ манай дэлгүүрт дараах бүтээгдэхүүнүүд байна:\n\n"
            + _product_lines(products, show_prices=show_prices, description_limit=80)
            + "Аль бүтээгдэхүүний талаар дэлгэрэнгүй мэдмээр байна?"
        )

    if intent == "low_confidence":
        if products:
            return (
                "Таны хайлтад тохирох бүтээгдэхүүнүүд:\n\n"
                + _product_lines(products, show_prices=show_prices, description_limit=80)
                + "Аль бүтээгдэхүүний талаар дэлгэрэнгүй мэдмээр байна?"
            )
        return (
            "Уучлаарай, таны асуултыг бүрэн ойлгосонгүй. 🤔\n\nТа доорх сэдвүүдээс сонгоно уу:\n"
            "• 🛍 Бүтээгдэхүүн хайх\n• 📦 Захиалга шалгах\n• 🚚 Хүргэлтийн мэдээлэл\n"
            "• 💳 Төлбөрийн мэдээлэл\n• 📏 Размерийн зөвлөгөө\n• 👤 Менежертэй холбогдох\n\n"
            "Эсвэл асуултаа дахин бичнэ үү!"
        )

    if products:
        response = "Баярлалаа мессеж бичсэнд! Танд дараах бүтээгдэхүүнүүд байна:\n\n"
        for index, product in enumerate(products[:3], start=1):
            response += f"{index}. {product.get('name')} - {format_price(product.get('base_price'))}\n"
        return response + "\nДэлгэрэнгүй мэдээлэл авмаар бол бичнэ үү!"

    return (
        "Баярлалаа мессеж бичсэнд! 😊\n\nБи танд дараах зүйлсээр тусалж чадна:\n"
        "• 🛍 Бүтээгдэхүүний мэдээлэл\n• 📦 Захиалгын статус\n• 🚚 Хүргэлтийн мэдээлэл\n"
        "• 💳 Төлбөрийн мэдээлэл\n• 📏 Размерийн зөвлөгөө\n\nТа юуны талаар мэдмээр байна?"
    )


__all__ = [
    "CATEGORY_MAP",
    "INTENT_KEYWORDS",
    "IntentResult",
    "LOW_CONFIDENCE_THRESHOLD",
    "classify_intent",
    "classify_intent_with_confidence",
    "detect_category",
    "extract_search_terms",
    "format_price",
    "generate_response",
    "has_body_measurement",
    "matches_handoff_keywords",
    "neutralize_vowels",
    "normalize_text",
]
