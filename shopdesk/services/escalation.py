"""Escalation scoring that hands a chat conversation over to a human.

Each customer message can only raise the conversation score. Once the score
crosses the store threshold the conversation is marked ``escalated`` and the
owner is notified. A human agent taking over resets the score elsewhere.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Literal, Mapping, Optional, Sequence

from shopdesk.services import notifications

logger = logging.getLogger(__name__)

EscalationLevel = Literal["low", "medium", "high", "critical"]

COMPLAINT_KEYWORDS = [
    "гомдол", "асуудал", "муу", "буруу", "алдаа",
    "сэтгэл ханамжгүй", "чанар муу", "эвдэрсэн", "гэмтсэн",
    "хуурамч", "луйвар", "тохиромжгүй",
]

FRUSTRATION_KEYWORDS = [
    "яагаад", "яаж ийм", "битгий", "хэрэггүй",
    "уурласан", "бухимдсан", "залхсан", "ичмээр",
    "ямар ч", "хариулахгүй", "хэзээ ч",
]

RETURN_EXCHANGE_KEYWORDS = [
    "буцаах", "буцаалт", "солих", "солилцох",
    "буцааж өгөх", "мөнгө буцаах",
]

PAYMENT_DISPUTE_KEYWORDS = [
    "төлбөр буруу", "давхар төлсөн", "мөнгө ирээгүй",
    "залилсан", "хуурсан", "төлбөр төлсөн ч",
]

WEIGHTS = {
    "complaint": 25,
    "frustration": 20,
    "return_exchange": 20,
    "payment_dispute": 25,
    "repeated_message": 15,
    "ai_fail_to_resolve": 15,
    "long_unresolved": 10,
}

DEFAULT_THRESHOLD = 60
DEFAULT_ESCALATION_MESSAGE = (
    "Таны хүсэлтийг бид хүлээн авлаа. Манай менежер тантай удахгүй холбогдоно. Түр хүлээнэ үү!"
)
REPEAT_SIMILARITY = 0.8

_STRIP_RE = re.compile(r"[^\w\s]|_")


@dataclass(frozen=True)
class EscalationConfig:
    enabled: bool = True
    threshold: int = DEFAULT_THRESHOLD

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "EscalationConfig":
        threshold = settings.get("escalation_threshold")
        return cls(
            enabled=settings.get("escalation_enabled") is not False,
            threshold=int(threshold) if isinstance(threshold, (int, float)) else DEFAULT_THRESHOLD,
        )


@dataclass(frozen=True)
class RecentMessage:
    content: str
    is_from_customer: bool
    is_ai_response: bool = False


@dataclass(frozen=True)
class EscalationResult:
    new_score: int
    level: EscalationLevel
    should_escalate: bool
    signals: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class EscalationOutcome:
    escalated: bool
    level: EscalationLevel
    escalation_message: Optional[str] = None


def score_to_level(score: int) -> EscalationLevel:
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 30:
        return "medium"
    return "low"


def _word_set(text: str) -> set:
    return set(_STRIP_RE.sub("", text.lower()).split())


def detect_repeated_message(message: str, recent_customer_messages: Iterable[str]) -> bool:
    """True when the message is at least 80% similar (Jaccard) to a recent one."""

    words = _word_set(message)
    if not words:
        return False
    for previous in recent_customer_messages:
        previous_words = _word_set(previous)
        if not previous_words:
            continue
        if len(words & previous_words) / len(words | previous_words) >= REPEAT_SIMILARITY:
            return True
    return False


def count_consecutive_customer_messages(messages: Sequence[RecentMessage]) -> int:
    """Trailing customer messages that got no reply at all."""

    count = 0
    for message in reversed(messages):
        if not message.is_from_customer:
            break
        count += 1
    return count


def evaluate_escalation(
    current_score: int,
    message: str,
    recent_messages: Sequence[RecentMessage],
    config: EscalationConfig,
) -> EscalationResult:
    """Add the weights of every signal found in the new message.

    ``recent_messages`` is chronological and already contains the current
    message as its last customer entry.
    """

    if not config.enabled:
        return EscalationResult(current_score, score_to_level(current_score), False, [])

    lower = message.lower()
    signals: List[str] = []
    for signal, keywords in (
        ("complaint", COMPLAINT_KEYWORDS),
        ("frustration", FRUSTRATION_KEYWORDS),
        ("return_exchange", RETURN_EXCHANGE_KEYWORDS),
        ("payment_dispute", PAYMENT_DISPUTE_KEYWORDS),
    ):
        if any(keyword in lower for keyword in keywords):
            signals.append(signal)

    customer_messages = [m.content for m in recent_messages if m.is_from_customer]
    if detect_repeated_message(message, customer_messages[:-1][-5:]):
        signals.append("repeated_message")

    if count_consecutive_customer_messages(recent_messages) >= 5:
        signals.append("ai_fail_to_resolve")

    has_human_reply = any(not m.is_from_customer and not m.is_ai_response for m in recent_messages)
    if len(customer_messages) >= 6 and not has_human_reply:
        signals.append("long_unresolved")

    new_score = min(current_score + sum(WEIGHTS[signal] for signal in signals), 100)
    return EscalationResult(
        new_score=new_score,
        level=score_to_level(new_score),
        should_escalate=current_score < config.threshold <= new_score,
        signals=signals,
    )


async def process_escalation(
    dao: Any,
    conversation_id: str,
    message: str,
    store_id: str,
    settings: Mapping[str, Any],
) -> EscalationOutcome:
    """Score the new message, persist the score and escalate when needed.

    ``dao`` is the chat data access object (see ``chat_service.SupabaseChatDAO``).
    """

    config = EscalationConfig.from_settings(settings)
    if not config.enabled:
        return EscalationOutcome(escalated=False, level="low")

    current_score = await dao.get_escalation_score(conversation_id)
    rows = await dao.fetch_recent_messages(conversation_id, limit=10)
    recent = [
        RecentMessage(
            content=str(row.get("content") or ""),
            is_from_customer=bool(row.get("is_from_customer")),
            is_ai_response=bool(row.get("is_ai_response")),
        )
        for row in rows
    ]
    result = evaluate_escalation(current_score, message, recent, config)

    changes = {"escalation_score": result.new_score, "escalation_level": result.level}
    if result.should_escalate:
        changes["escalated_at"] = datetime.now(timezone.utc).isoformat()
        changes["status"] = "escalated"
    await dao.update_conversation(conversation_id, changes)

    if not result.should_escalate:
        return EscalationOutcome(escalated=False, level=result.level)

    escalation_message = settings.get("escalation_message") or DEFAULT_ESCALATION_MESSAGE
    await dao.insert_message(
        conversation_id,
        escalation_message,
        is_from_customer=False,
        is_ai_response=True,
        metadata={
            "type": "escalation",
            "signals": result.signals,
            "score": result.new_score,
            "level": result.level,
        },
    )
    logger.info(
        "Conversation escalated",
        extra={"conversation_id": conversation_id, "store_id": store_id, "score": result.new_score},
    )
    await notifications.dispatch_notification(
        store_id,
        "escalation",
        {
            "conversation_id": conversation_id,
            "level": result.level,
            "score": result.new_score,
            "signals": ", ".join(result.signals),
        },
    )
    return EscalationOutcome(escalated=True, level=result.level, escalation_message=escalation_message)


__all__ = [
    "DEFAULT_ESCALATION_MESSAGE",
    "EscalationConfig",
    "EscalationOutcome",
    "EscalationResult",
    "RecentMessage",
    "count_consecutive_customer_messages",
    "detect_repeated_message",
    "evaluate_escalation",
    "process_escalation",
    "score_to_level",
]
