"""Aggregate delivery rows into dashboard analytics."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}
MAX_DELIVERY_MINUTES = 1440


def period_start(period: Optional[str], *, now: Optional[datetime] = None) -> datetime:
    """Start of the analytics window; unknown periods mean 30 days."""

    days = PERIOD_DAYS.get(period or "30d", 30)
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _delivery_minutes(row: Mapping[str, Any]) -> Optional[float]:
    created = _parse_timestamp(row.get("created_at"))
    delivered = _parse_timestamp(row.get("actual_delivery_time"))
    if created is None or delivered is None:
        return None
    minutes = (delivered - created).total_seconds() / 60
    if 0 < minutes < MAX_DELIVERY_MINUTES:
        return minutes
    return None


def build_delivery_analytics(rows: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """Summarise deliveries; hours are bucketed in UTC."""

    total = len(rows)
    statuses = Counter(str(row.get("status")) for row in rows)
    delivered = statuses.get("delivered", 0)

    durations = [
        minutes
        for row in rows
        if row.get("status") == "delivered"
        for minutes in [_delivery_minutes(row)]
        if minutes is not None
    ]
    avg_minutes = round(sum(durations) / len(durations)) if durations else 0

    daily: Counter = Counter()
    hourly: Counter = Counter()
    for row in rows:
        created = _parse_timestamp(row.get("created_at"))
        if created is None:
            continue
        daily[created.date().isoformat()] += 1
        hourly[created.hour] += 1

    rankings: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        driver_id = row.get("driver_id")
        driver = row.get("delivery_drivers")
        if not driver_id or row.get("status") != "delivered" or not isinstance(driver, Mapping):
            continue
        entry = rankings.get(driver_id)
        if entry is None:
            try:
                avg_rating = float(driver.get("avg_rating") or 0)
            except (TypeError, ValueError):
                avg_rating = 0.0
            rankings[driver_id] = {
                "driver_id": driver_id,
                "name": driver.get("name"),
                "deliveries": 1,
                "avg_rating": avg_rating,
                "rating_count": int(driver.get("rating_count") or 0),
            }
        else:
            entry["deliveries"] += 1

    driver_rankings: List[Dict[str, Any]] = sorted(
        rankings.values(), key=lambda item: item["deliveries"], reverse=True
    )[:10]

    return {
        "summary": {
            "total": total,
            "delivered": delivered,
            "failed": statuses.get("failed", 0),
            "cancelled": statuses.get("cancelled", 0),
            "success_rate": round(delivered / total * 100) if total else 0,
            "avg_delivery_minutes": avg_minutes,
            "active_drivers": len({row.get("driver_id") for row in rows if row.get("driver_id")}),
        },
        "status_distribution": [{"status": status, "count": count} for status, count in statuses.items()],
        "daily_deliveries": [{"date": day, "count": daily[day]} for day in sorted(daily)],
        "hourly_distribution": [
            {"hour": hour, "label": f"{hour:02d}:00", "count": hourly.get(hour, 0)} for hour in range(24)
        ],
        "driver_rankings": driver_rankings,
    }


__all__ = ["PERIOD_DAYS", "build_delivery_analytics", "period_start"]
