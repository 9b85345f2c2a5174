"""In-app notifications for store owners."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Tuple

from httpx import HTTPError as HttpxError
from postgrest import APIError as PostgrestAPIError

from shopdesk.config.supabase_client import get_supabase_client
from shopdesk.services.chat_intents import format_price

logger = logging.getLogger(__name__)

ESCALATION_LABELS = {
    "low": "Бага",
    "medium": "Дунд",
    "high": "Яаралтай",
    "critical": "Маш яаралтай",
}

ORDER_STATUS_LABELS = {
    "pending": "Хүлээгдэж буй",
    "confirmed": "Баталгаажсан",
    "processing": "Бэлтгэж буй",
    "shipped": "Илгээсэн",
    "delivered": "Хүргэсэн",
    "cancelled": "Цуцлагдсан",
}

# Delivery status -> notification event
DELIVERY_EVENTS = {
    "assigned": "delivery_assigned",
    "picked_up": "delivery_picked_up",
    "delivered": "delivery_completed",
    "failed": "delivery_failed",
    "delayed": "delivery_delayed",
}


def _status_label(status: Any) -> str:
    return ORDER_STATUS_LABELS.get(str(status), str(status or ""))


def build_notification_content(event: str, data: Mapping[str, Any]) -> Tuple[str, str]:
    """Return the (title, body) shown in the dashboard for an event."""

    number = data.get("delivery_number") or ""
    driver = data.get("driver_name") or ""
    if event == "new_order":
        total = data.get("total_amount")
        return f"Шинэ захиалга #{data.get('order_number') or ''}", f"Нийт: {format_price(total) if total else ''}"
    if event == "order_status":
        return (
            f"Захиалга #{data.get('order_number') or ''} статус өөрчлөгдлөө",
            f"{_status_label(data.get('previous_status'))} → {_status_label(data.get('new_status'))}",
        )
    if event == "escalation":
        level = str(data.get("level") or "")
        return (
            "Яаралтай чат шилжсэн",
            f"Түвшин: {ESCALATION_LABELS.get(level, level)}. Шалтгаан: {data.get('signals') or ''}",
        )
    if event == "delivery_assigned":
        return f"Хүргэлт #{number} оноогдлоо", f"Жолооч: {driver}"
    if event == "delivery_picked_up":
        return f"Хүргэлт #{number} замд гарлаа", f"Жолооч {driver} бараа авлаа"
    if event == "delivery_completed":
        return f"Хүргэлт #{number} хүргэгдлээ", f"Жолооч: {driver}"
    if event == "delivery_failed":
        return f"Хүргэлт #{number} амжилтгүй", f"Шалтгаан: {data.get('failure_reason') or 'тодорхойгүй'}"
    if event == "delivery_delayed":
        return f"Хүргэлт #{number} хоцорч байна", f"Жолооч: {driver}"
    return event, ""


def _insert_notification(row: Dict[str, Any]) -> None:
    client = get_supabase_client()
    if client is None:
        logger.warning("Supabase not configured; dropping %s notification", row.get("type"))
        return
    client.table("notifications").insert(row).execute()


async def dispatch_notification(store_id: str, event: str, data: Mapping[str, Any]) -> bool:
    """Store an in-app notification. Failures are logged and reported as False."""

    title, body = build_notification_content(event, data)
    row = {
        "store_id": store_id,
        "type": event,
        "title": title,
        "body": body,
        "data": dict(data),
        "is_read": False,
    }
    try:
        await asyncio.to_thread(_insert_notification, row)
    except (PostgrestAPIError, HttpxError) as exc:  # pragma: no cover - network interaction
        logger.warning(
            "Failed to save in-app notification",
            extra={"store_id": store_id, "event": event, "error": str(exc)},
        )
        return False
    return True


__all__ = ["DELIVERY_EVENTS", "build_notification_content", "dispatch_notification"]
