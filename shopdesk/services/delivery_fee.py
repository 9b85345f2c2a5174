"""Delivery zone detection and fee calculation.

Stores configure shipping zones in ``stores.shipping_settings``; zones saved
from the dashboard carry a name, a price, an ETA label and an enabled flag.
Zone detection matches the delivery address against per-zone place names.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shopdesk.services.chat_intents import neutralize_vowels, normalize_text

logger = logging.getLogger(__name__)


class ShippingZone(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    price: float = Field(default=0, ge=0)
    estimated_days: str = Field(default="", alias="estimatedDays")
    enabled: bool = True
    keywords: List[str] = Field(default_factory=list)


class ShippingSettings(BaseModel):
    free_shipping_enabled: bool = False
    free_shipping_minimum: float = 0
    zones: List[ShippingZone] = Field(default_factory=list)

    @classmethod
    def from_store(cls, raw: Any) -> "ShippingSettings":
        """Parse a ``stores.shipping_settings`` value, tolerating bad data."""

        if not isinstance(raw, Mapping):
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed shipping settings: %s", exc.errors()[:3])
            return cls()


class FeeQuote(BaseModel):
    zone: Optional[str] = None
    fee: float = 0
    estimated_days: Optional[str] = None
    free_shipping: bool = False
    matched_keyword: Optional[str] = None


UB_CENTER_KEYWORDS = [
    "улаанбаатар", "уб", "сүхбаатар дүүрэг", "сүхбаатар", "чингэлтэй", "баянгол",
    "баянзүрх", "хан уул", "сонгинохайрхан", "сбд", "чд", "бгд", "худ", "бзд", "схд",
    "ulaanbaatar", "sukhbaatar", "chingeltei", "bayangol", "bayanzurkh", "khan uul",
    "songinokhairkhan",
]
UB_OUTER_KEYWORDS = [
    "налайх", "багануур", "багахангай", "захын", "nalaikh", "baganuur", "bagakhangai",
]
DARKHAN_ERDENET_KEYWORDS = [
    "дархан", "эрдэнэт", "орхон", "сэлэнгэ", "darkhan", "erdenet", "orkhon",
]
OTHER_AIMAG_KEYWORDS = [
    "аймаг", "сум", "орон нутаг", "хөдөө", "архангай", "баянхонгор", "баян өлгий",
    "булган", "говь алтай", "говьсүмбэр", "дорноговь", "дорнод", "дундговь",
    "завхан", "өвөрхангай", "өмнөговь", "увс", "ховд", "хөвсгөл", "хэнтий",
]

DEFAULT_ZONES: List[ShippingZone] = [
    ShippingZone(
        name="Улаанбаатар хот (төв)", price=5000, estimated_days="1-2 өдөр",
        enabled=True, keywords=UB_CENTER_KEYWORDS,
    ),
    ShippingZone(
        name="Улаанбаатар хот (захын дүүрэг)", price=7000, estimated_days="1-3 өдөр",
        enabled=True, keywords=UB_OUTER_KEYWORDS,
    ),
    ShippingZone(
        name="Дархан, Эрдэнэт", price=10000, estimated_days="2-4 өдөр",
        enabled=True, keywords=DARKHAN_ERDENET_KEYWORDS,
    ),
    ShippingZone(
        name="Бусад аймаг", price=15000, estimated_days="3-7 өдөр",
        enabled=False, keywords=OTHER_AIMAG_KEYWORDS,
    ),
]

_DEFAULT_KEYWORDS: Dict[str, List[str]] = {zone.name: zone.keywords for zone in DEFAULT_ZONES}

# City-wide names appear in almost every full address.
GENERIC_CITY_KEYWORDS = ["улаанбаатар", "уб", "ulaanbaatar"]
MAX_ABBREVIATION_LENGTH = 3


def _match_key(text: str) -> str:
    return neutralize_vowels(normalize_text(text))


_GENERIC_KEYS = {_match_key(keyword) for keyword in GENERIC_CITY_KEYWORDS}


def _zone_keywords(zone: ShippingZone) -> List[str]:
    if zone.keywords:
        return zone.keywords
    if zone.name in _DEFAULT_KEYWORDS:
        return _DEFAULT_KEYWORDS[zone.name]
    # Custom zones without keywords match on the words of their own name.
    return [word for word in normalize_text(zone.name).split() if len(word) >= 4]


def resolve_zones(settings: Optional[ShippingSettings]) -> List[ShippingZone]:
    if settings is None or not settings.zones:
        return list(DEFAULT_ZONES)
    return settings.zones


def calculate_shipping(subtotal: float, zone_name: Optional[str], settings: ShippingSettings) -> float:
    """Shipping charged for an order placed with an explicit zone name."""

    if not zone_name or not settings.zones:
        return 0
    zone = next((z for z in settings.zones if z.name == zone_name and z.enabled), None)
    if zone is None:
        return 0
    if settings.free_shipping_enabled and subtotal >= (settings.free_shipping_minimum or 0):
        return 0
    return zone.price


def detect_zone(
    address: str, settings: Optional[ShippingSettings] = None
) -> Optional[Tuple[ShippingZone, str]]:
    """Return the enabled zone whose place name starts a word of the address.

    District and town names win over city-wide names, so
    "Улаанбаатар хот, Налайх дүүрэг" resolves to the Налайх zone.
    """

    padded = f" {_match_key(address)} "
    if not padded.strip():
        return None
    enabled = [zone for zone in resolve_zones(settings) if zone.enabled]
    for generic_pass in (False, True):
        for zone in enabled:
            for keyword in _zone_keywords(zone):
                if (_match_key(keyword) in _GENERIC_KEYS) != generic_pass:
                    continue
                if _keyword_in(keyword, padded):
                    return zone, keyword
    return None


def _keyword_in(keyword: str, padded: str) -> bool:
    key = _match_key(keyword)
    if not key:
        return False
    # Abbreviations such as "ХУД" must stand alone.
    if len(key) <= MAX_ABBREVIATION_LENGTH:
        return f" {key} " in padded
    # Mongolian adds case suffixes, so "дарханд" still matches "дархан".
    return f" {key}" in padded


def calculate_delivery_fee(
    address: str,
    settings: Optional[ShippingSettings] = None,
    subtotal: Optional[float] = None,
) -> FeeQuote:
    """Quote the delivery fee for an address.

    Falls back to the first enabled zone when no place name matches, and
    quotes nothing when every zone is disabled.
    """

    zones = resolve_zones(settings)
    detected = detect_zone(address, settings)
    matched_keyword: Optional[str] = None
    if detected is not None:
        zone, matched_keyword = detected
    else:
        zone = next((z for z in zones if z.enabled), None)
        if zone is None:
            return FeeQuote()

    fee = zone.price
    free_shipping = False
    if settings is not None and settings.free_shipping_enabled and subtotal is not None:
        if subtotal >= (settings.free_shipping_minimum or 0):
            fee = 0
            free_shipping = True

    return FeeQuote(
        zone=zone.name,
        fee=max(fee, 0),
        estimated_days=zone.estimated_days or None,
        free_shipping=free_shipping,
        matched_keyword=matched_keyword,
    )


__all__ = [
    "DEFAULT_ZONES",
    "FeeQuote",
    "ShippingSettings",
    "ShippingZone",
    "calculate_delivery_fee",
    "calculate_shipping",
    "detect_zone",
    "resolve_zones",
]
