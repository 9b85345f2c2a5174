"""Driver assignment engine for pending deliveries.

Ranking uses OpenAI when a client is configured and falls back to a
deterministic weighted score otherwise, or whenever the model call fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence

from openai import OpenAIError
from pydantic import BaseModel, Field, ValidationError

from shopdesk.config.openai_client import OPENAI_MODEL, get_openai_client

logger = logging.getLogger(__name__)

PriorityRule = Literal["least_loaded", "closest_driver", "vehicle_match", "rating_first", "round_robin"]

VEHICLE_SCORES = {"car": 1.0, "motorcycle": 0.8, "bicycle": 0.5, "on_foot": 0.3}


class DriverCandidate(BaseModel):
    id: str
    name: str
    location: Optional[Dict[str, float]] = None
    active_delivery_count: int = 0
    vehicle_type: Optional[str] = None
    completion_rate: float = 100


class DeliveryContext(BaseModel):
    address: str = ""
    customer_zone: Optional[str] = None
    items_count: Optional[int] = None


class WorkingHours(BaseModel):
    start: str = Field(pattern=r"^\d{2}:\d{2}$")
    end: str = Field(pattern=r"^\d{2}:\d{2}$")


class AssignmentRules(BaseModel):
    assignment_mode: Literal["auto", "suggest", "manual"] = "manual"
    priority_rules: List[PriorityRule] = Field(default_factory=lambda: ["least_loaded", "closest_driver"])
    max_concurrent_deliveries: int = Field(default=3, ge=1, le=20)
    assignment_radius_km: float = Field(default=10, ge=1, le=100)
    working_hours: Optional[WorkingHours] = None

    @classmethod
    def from_store(cls, raw: Any) -> "AssignmentRules":
        """Parse ``stores.delivery_settings``; unusable settings yield defaults."""

        if not isinstance(raw, dict):
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed delivery settings: %s", exc.errors()[:3])
            return cls()


class RankedDriver(BaseModel):
    driver_id: str
    driver_name: str = ""
    score: int = 0
    reasons: List[str] = Field(default_factory=list)


class AssignmentResult(BaseModel):
    recommended_driver_id: Optional[str] = None
    ranked_drivers: List[RankedDriver] = Field(default_factory=list)
    confidence: int = 0
    method: Literal["ai", "deterministic"] = "deterministic"


class _AIRanking(BaseModel):
    recommended_driver_id: Optional[str] = None
    ranked_drivers: List[RankedDriver] = Field(default_factory=list)
    confidence: int = Field(default=0, ge=0, le=100)


def _empty_result() -> AssignmentResult:
    return AssignmentResult()


def deterministic_assign(
    delivery: DeliveryContext,
    drivers: Sequence[DriverCandidate],
    rules: AssignmentRules,
    *,
    rng: Callable[[], float] = random.random,
) -> AssignmentResult:
    """Score drivers by the store's priority rules, earlier rules weighing more."""

    eligible = [d for d in drivers if d.active_delivery_count < rules.max_concurrent_deliveries]
    if not eligible:
        return _empty_result()

    total_rules = len(rules.priority_rules)
    weights = {rule: (total_rules - index) / total_rules for index, rule in enumerate(rules.priority_rules)}
    max_load = rules.max_concurrent_deliveries

    scored: List[RankedDriver] = []
    for driver in eligible:
        score = 0.0
        reasons: List[str] = []

        if "least_loaded" in weights:
            score += (max_load - driver.active_delivery_count) / max_load * weights["least_loaded"]
            if driver.active_delivery_count == 0:
                reasons.append("Чөлөөтэй")
            else:
                reasons.append(f"{driver.active_delivery_count} идэвхтэй хүргэлт")

        # Only the presence of a location is known here, not the distance.
        if "closest_driver" in weights and driver.location:
            score += 0.5 * weights["closest_driver"]
            reasons.append("Байршил ойр")

        if "vehicle_match" in weights:
            score += VEHICLE_SCORES.get(driver.vehicle_type or "motorcycle", 0.5) * weights["vehicle_match"]
            reasons.append(f"Тээвэр: {driver.vehicle_type or 'тодорхойгүй'}")

        if "rating_first" in weights:
            score += driver.completion_rate / 100 * weights["rating_first"]
            if driver.completion_rate >= 90:
                reasons.append("Өндөр амжилт")

        if "round_robin" in weights:
            score += rng() * 0.3 * weights["round_robin"]
            reasons.append("Ээлжлэн")

        scored.append(
            RankedDriver(driver_id=driver.id, driver_name=driver.name, score=round(score * 100), reasons=reasons)
        )

    scored.sort(key=lambda ranked: ranked.score, reverse=True)
    confidence = 85 if len(scored) >= 2 and scored[0].score > scored[1].score + 10 else 60
    return AssignmentResult(
        recommended_driver_id=scored[0].driver_id,
        ranked_drivers=scored[:5],
        confidence=confidence,
        method="deterministic",
    )


def _build_ai_prompt(delivery: DeliveryContext, drivers: Sequence[DriverCandidate], rules: AssignmentRules):
    system_prompt = (
        "You are a delivery assignment optimizer for a Mongolian ecommerce platform.\n"
        "Given a delivery and available drivers, rank the best driver to assign.\n\n"
        f"Rules (in priority order): {', '.join(rules.priority_rules)}\n"
        f"Max concurrent deliveries per driver: {rules.max_concurrent_deliveries}\n\n"
        'Return JSON: {"recommended_driver_id": "uuid", '
        '"ranked_drivers": [{"driver_id": "uuid", "score": 0-100, "reasons": ["reason1"]}], '
        '"confidence": 0-100}\n\n'
        "Reasons should be in Mongolian. Keep them short (2-4 words each)."
    )
    user_content = json.dumps(
        {
            "delivery": {
                "address": delivery.address,
                "zone": delivery.customer_zone or "тодорхойгүй",
                "items": delivery.items_count or 1,
            },
            "drivers": [
                {
                    "id": d.id,
                    "name": d.name,
                    "active": d.active_delivery_count,
                    "vehicle": d.vehicle_type,
                    "completion_rate": d.completion_rate,
                    "has_location": bool(d.location),
                }
                for d in drivers
            ],
        },
        ensure_ascii=False,
    )
    return system_prompt, user_content


async def ai_assign(
    client: Any,
    delivery: DeliveryContext,
    drivers: Sequence[DriverCandidate],
    rules: AssignmentRules,
) -> AssignmentResult:
    """Ask the model for a ranking; any failure falls back to deterministic scoring."""

    system_prompt, user_content = _build_ai_prompt(delivery, drivers, rules)
    try:
        completion = await asyncio.to_thread(
            client.chat.completions.create,
            model=OPENAI_MODEL,
            temperature=0.2,
            max_tokens=300,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
        )
        ranking = _AIRanking.model_validate(json.loads(completion.choices[0].message.content or ""))
    except (
        OpenAIError,
        json.JSONDecodeError,
        ValidationError,
        # Unexpected completion shapes.
        AttributeError,
        IndexError,
        KeyError,
        TypeError,
    ) as exc:
        logger.error("AI driver assignment failed, falling back to deterministic: %s", exc)
        return deterministic_assign(delivery, drivers, rules)

    names = {d.id: d.name for d in drivers}
    if ranking.recommended_driver_id is not None and ranking.recommended_driver_id not in names:
        logger.warning("AI recommended unknown driver %s", ranking.recommended_driver_id)
        return deterministic_assign(delivery, drivers, rules)

    ranked = [
        ranked.model_copy(update={"driver_name": ranked.driver_name or names[ranked.driver_id]})
        for ranked in ranking.ranked_drivers
        if ranked.driver_id in names
    ]
    return AssignmentResult(
        recommended_driver_id=ranking.recommended_driver_id,
        ranked_drivers=ranked,
        confidence=ranking.confidence,
        method="ai",
    )


def within_working_hours(rules: AssignmentRules, now: datetime) -> bool:
    if rules.working_hours is None:
        return True
    current = now.strftime("%H:%M")
    return rules.working_hours.start <= current <= rules.working_hours.end


async def assign_driver(
    delivery: DeliveryContext,
    drivers: Sequence[DriverCandidate],
    rules: AssignmentRules,
    *,
    now: Optional[datetime] = None,
) -> AssignmentResult:
    """Pick the best driver for a delivery according to the store rules.

    Manual mode and requests outside the configured working hours return an
    empty result. Working hours compare against server-local time.
    """

    if rules.assignment_mode == "manual":
        return _empty_result()
    if not within_working_hours(rules, now or datetime.now()):
        return _empty_result()

    client = get_openai_client()
    if client is not None and drivers:
        return await ai_assign(client, delivery, drivers, rules)
    return deterministic_assign(delivery, drivers, rules)


__all__ = [
    "AssignmentResult",
    "AssignmentRules",
    "DeliveryContext",
    "DriverCandidate",
    "RankedDriver",
    "ai_assign",
    "assign_driver",
    "deterministic_assign",
    "within_working_hours",
]
