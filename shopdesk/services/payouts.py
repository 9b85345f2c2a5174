"""Driver payout computation independent from the database layer."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict

OPEN_PAYOUT_STATUSES = ("pending", "approved", "paid")

NO_DELIVERIES_MESSAGE = "Энэ хугацаанд хүргэгдсэн захиалга олдсонгүй"
ALREADY_GENERATED_MESSAGE = "Бүх жолоочийн төлбөр энэ хугацаанд аль хэдийн үүсгэсэн байна"
NOTHING_TO_CREATE_MESSAGE = "Үүсгэх төлбөр олдсонгүй"


class PayoutDraft(BaseModel):
    """A pending payout row ready to be inserted into ``driver_payouts``."""

    driver_id: str
    store_id: str
    period_start: str
    period_end: str
    total_amount: float
    delivery_count: int
    status: str = "pending"
    notes: str

    model_config = ConfigDict(from_attributes=True)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def compute_driver_payouts(
    deliveries: Iterable[Mapping[str, Any]],
    existing_payouts: Iterable[Mapping[str, Any]],
    period_start: date,
    period_end: date,
    store_id: str,
) -> Tuple[List[PayoutDraft], List[str]]:
    """Group delivered deliveries by driver into payout drafts.

    Drivers that already hold an open payout for exactly this period are
    returned in the second element instead of getting a duplicate.
    """

    if period_end < period_start:
        raise ValueError("period_end must be on or after period_start")

    start, end = period_start.isoformat(), period_end.isoformat()
    existing = {
        f"{row.get('driver_id')}:{row.get('period_start')}:{row.get('period_end')}"
        for row in existing_payouts
        if row.get("status", "pending") in OPEN_PAYOUT_STATUSES
    }

    groups: Dict[str, Dict[str, float]] = {}
    for delivery in deliveries:
        driver_id = delivery.get("driver_id")
        if not driver_id:
            continue
        stats = groups.setdefault(str(driver_id), {"total": 0.0, "count": 0})
        stats["total"] += _to_float(delivery.get("delivery_fee"))
        stats["count"] += 1

    drafts: List[PayoutDraft] = []
    skipped: List[str] = []
    for driver_id, stats in groups.items():
        if f"{driver_id}:{start}:{end}" in existing:
            skipped.append(driver_id)
            continue
        drafts.append(
            PayoutDraft(
                driver_id=driver_id,
                store_id=store_id,
                period_start=start,
                period_end=end,
                total_amount=stats["total"],
                delivery_count=int(stats["count"]),
                notes=f"Автомат тооцоолсон: {start} — {end}",
            )
        )
    return drafts, skipped


__all__ = [
    "ALREADY_GENERATED_MESSAGE",
    "NOTHING_TO_CREATE_MESSAGE",
    "NO_DELIVERIES_MESSAGE",
    "OPEN_PAYOUT_STATUSES",
    "PayoutDraft",
    "compute_driver_payouts",
]
