"""Delivery lifecycle operations shared by the owner, driver and provider endpoints."""

from __future__ import annotations

import hmac
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from fastapi import HTTPException

from shopdesk.schemas import (
    DeliveryCreatePayload,
    DeliveryUpdatePayload,
    DriverStatusPayload,
    ProviderWebhookPayload,
    RatingPayload,
)
from shopdesk.services import notifications
from shopdesk.services.delivery_assigner import (
    AssignmentRules,
    DeliveryContext,
    DriverCandidate,
    assign_driver,
)
from shopdesk.services.delivery_dao import utc_now_iso
from shopdesk.services.delivery_fee import ShippingSettings, calculate_delivery_fee
from shopdesk.services.status_machine import (
    DELIVERY_TRANSITIONS,
    DRIVER_DELIVERY_TRANSITIONS,
    PROVIDER_DELIVERY_STATUSES,
    TERMINAL_DELIVERY_STATUSES,
    validate_transition,
)

logger = logging.getLogger(__name__)

# Customer-facing progress: step number and label per status. -1 marks a dead end.
TRACKING_STEPS: Dict[str, Dict[str, Any]] = {
    "pending": {"step": 1, "label": "Хүлээгдэж буй"},
    "assigned": {"step": 2, "label": "Жолооч оноогдсон"},
    "picked_up": {"step": 3, "label": "Бараа авсан"},
    "in_transit": {"step": 4, "label": "Замд явж буй"},
    "delayed": {"step": 4, "label": "Саатсан"},
    "delivered": {"step": 5, "label": "Хүргэгдсэн"},
    "failed": {"step": -1, "label": "Амжилтгүй"},
    "cancelled": {"step": -1, "label": "Цуцлагдсан"},
}

# Fields the owner may edit directly besides status and driver.
EDITABLE_FIELDS = (
    "provider_name",
    "provider_tracking_id",
    "delivery_address",
    "customer_name",
    "customer_phone",
    "estimated_delivery_time",
    "actual_delivery_time",
    "delivery_fee",
    "notes",
    "failure_reason",
    "proof_photo_url",
    "scheduled_date",
    "scheduled_time_slot",
)

CURRENT_DELIVERY_COLUMNS = "id, delivery_number, status, driver_id, order_id, store_id"


def generate_delivery_number() -> str:
    return f"DEL-{int(time.time() * 1000)}"


def _driver_name(delivery: Mapping[str, Any]) -> str:
    driver = delivery.get("delivery_drivers")
    if isinstance(driver, dict):
        return driver.get("name") or ""
    return ""


async def release_driver_if_idle(dao, driver_id: str, *, exclude_id: str) -> bool:
    """Set the driver back to ``active`` when no other delivery keeps them busy."""

    remaining = await dao.count_active_deliveries(driver_id, exclude_id=exclude_id)
    if remaining:
        return False
    await dao.update_driver(driver_id, {"status": "active"})
    return True


async def apply_status_side_effects(
    dao,
    delivery: Mapping[str, Any],
    new_status: str,
    *,
    store_id: str,
    driver_name: str = "",
    failure_reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> None:
    """Driver release, order completion and owner notification after a status change."""

    delivery_id = str(delivery["id"])
    driver_id = delivery.get("driver_id")
    if new_status in TERMINAL_DELIVERY_STATUSES and driver_id:
        await release_driver_if_idle(dao, str(driver_id), exclude_id=delivery_id)

    order_number = ""
    order_id = delivery.get("order_id")
    if order_id:
        order = await dao.get_order(str(order_id), store_id)
        order_number = (order or {}).get("order_number") or ""
        if new_status == "delivered":
            await dao.update_order_status(str(order_id), "delivered")

    event = notifications.DELIVERY_EVENTS.get(new_status)
    if event:
        await notifications.dispatch_notification(
            store_id,
            event,
            {
                "delivery_id": delivery_id,
                "delivery_number": delivery.get("delivery_number") or "",
                "driver_name": driver_name,
                "order_number": order_number,
                "failure_reason": failure_reason or "",
                "notes": notes or "",
            },
        )


async def create_delivery(dao, store: Mapping[str, Any], payload: DeliveryCreatePayload) -> Dict[str, Any]:
    store_id = str(store["id"])
    order_id = str(payload.order_id) if payload.order_id else None
    driver_id = str(payload.driver_id) if payload.driver_id else None

    order_number = ""
    if order_id:
        order = await dao.get_order(order_id, store_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        order_number = order.get("order_number") or ""

    driver_name = ""
    if driver_id:
        driver = await dao.get_driver(driver_id, store_id=store_id)
        if not driver:
            raise HTTPException(status_code=404, detail="Driver not found")
        driver_name = driver.get("name") or ""

    fee = payload.delivery_fee
    if fee is None:
        settings = ShippingSettings.from_store(store.get("shipping_settings"))
        fee = calculate_delivery_fee(payload.delivery_address, settings).fee

    initial_status = "assigned" if driver_id else "pending"
    row = payload.model_dump(mode="json", exclude={"order_id", "driver_id", "delivery_fee"})
    row.update(
        {
            "store_id": store_id,
            "order_id": order_id,
            "driver_id": driver_id,
            "delivery_number": generate_delivery_number(),
            "status": initial_status,
            "delivery_fee": fee,
        }
    )
    delivery = await dao.insert_delivery(row)
    await dao.insert_status_log(delivery["id"], initial_status, changed_by="system", notes="Delivery created")
    logger.info("Delivery created", extra={"store_id": store_id, "delivery_id": delivery["id"]})

    if driver_id:
        await dao.update_driver(driver_id, {"status": "on_delivery"})
        await notifications.dispatch_notification(
            store_id,
            "delivery_assigned",
            {
                "delivery_id": delivery["id"],
                "delivery_number": row["delivery_number"],
                "driver_name": driver_name,
                "order_number": order_number,
            },
        )
    return delivery


async def update_delivery(
    dao,
    store: Mapping[str, Any],
    delivery_id: str,
    payload: DeliveryUpdatePayload,
    *,
    changed_by: str,
) -> Dict[str, Any]:
    """Apply an owner edit: optional driver (re)assignment, status change and field updates."""

    store_id = str(store["id"])
    current = await dao.get_delivery(delivery_id, store_id=store_id, columns=CURRENT_DELIVERY_COLUMNS)
    if not current:
        raise HTTPException(status_code=404, detail="Delivery not found")

    fields = payload.model_dump(mode="json", exclude_unset=True)
    new_status: Optional[str] = fields.pop("status", None)
    changes: Dict[str, Any] = {key: fields[key] for key in EDITABLE_FIELDS if key in fields}

    new_driver: Optional[Dict[str, Any]] = None
    # A null driver_id never unassigns; only a driver id reassigns.
    requested_driver = fields.get("driver_id")
    if requested_driver:
        changes["driver_id"] = requested_driver
        if requested_driver != current.get("driver_id"):
            new_driver = await dao.get_driver(requested_driver, store_id=store_id)
            if not new_driver:
                raise HTTPException(status_code=404, detail="Driver not found")
            if new_status is None and current["status"] == "pending":
                new_status = "assigned"

    if new_status == current["status"]:
        new_status = None
    if new_status is not None:
        check = validate_transition(DELIVERY_TRANSITIONS, current["status"], new_status)
        if not check.valid:
            raise HTTPException(status_code=400, detail=check.error)
        changes["status"] = new_status
        if new_status == "delivered" and not changes.get("actual_delivery_time"):
            changes["actual_delivery_time"] = utc_now_iso()

    updated = await dao.update_delivery(delivery_id, changes)

    if new_driver is not None:
        await dao.update_driver(str(new_driver["id"]), {"status": "on_delivery"})

    if new_status is not None:
        await dao.insert_status_log(
            delivery_id,
            new_status,
            changed_by=changed_by,
            notes=fields.get("failure_reason") or fields.get("notes"),
        )
        driver_name = (new_driver or {}).get("name") or ""
        driver_id = updated.get("driver_id", changes.get("driver_id", current.get("driver_id")))
        if not driver_name and driver_id:
            driver = await dao.get_driver(str(driver_id))
            driver_name = (driver or {}).get("name") or ""
        await apply_status_side_effects(
            dao,
            {**current, **updated, "driver_id": driver_id},
            new_status,
            store_id=store_id,
            driver_name=driver_name,
            failure_reason=fields.get("failure_reason"),
            notes=fields.get("notes"),
        )
    return updated


async def driver_update_status(
    dao,
    driver: Mapping[str, Any],
    delivery_id: str,
    payload: DriverStatusPayload,
) -> Dict[str, Any]:
    """Move one of the driver's own deliveries along the driver state machine."""

    driver_id = str(driver["id"])
    current = await dao.get_delivery(delivery_id, driver_id=driver_id, columns=CURRENT_DELIVERY_COLUMNS)
    if not current:
        raise HTTPException(status_code=404, detail="Delivery not found")

    check = validate_transition(DRIVER_DELIVERY_TRANSITIONS, current["status"], payload.status)
    if not check.valid or current["status"] == payload.status:
        raise HTTPException(
            status_code=400,
            detail=check.error or f"Cannot transition from '{current['status']}' to '{payload.status}'",
        )
    if payload.status == "failed" and not payload.failure_reason:
        raise HTTPException(status_code=400, detail="Failure reason is required")

    changes: Dict[str, Any] = {"status": payload.status}
    if payload.status == "delivered":
        changes["actual_delivery_time"] = utc_now_iso()
    if payload.status == "failed":
        changes["failure_reason"] = payload.failure_reason
    if payload.proof_photo_url:
        changes["proof_photo_url"] = payload.proof_photo_url
    if payload.notes:
        changes["notes"] = payload.notes

    await dao.update_delivery(delivery_id, changes)
    await dao.insert_status_log(
        delivery_id,
        payload.status,
        changed_by=driver.get("name") or "driver",
        notes=payload.failure_reason or payload.notes,
        location=payload.location.model_dump() if payload.location else None,
    )
    await apply_status_side_effects(
        dao,
        current,
        payload.status,
        store_id=str(current["store_id"]),
        driver_name=driver.get("name") or "",
        failure_reason=payload.failure_reason,
        notes=payload.notes,
    )
    return {"success": True, "delivery_id": delivery_id, "status": payload.status}


async def apply_provider_update(
    dao,
    payload: ProviderWebhookPayload,
    *,
    webhook_secret: Optional[str],
) -> Dict[str, Any]:
    """Handle a status callback from an external delivery provider.

    Providers report what already happened, so their updates are not checked
    against the owner transition table.
    """

    if not payload.store_id or not payload.provider_tracking_id or not payload.status:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: store_id, provider_tracking_id, status",
        )
    if payload.status not in PROVIDER_DELIVERY_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid status. Must be one of: {', '.join(PROVIDER_DELIVERY_STATUSES)}",
        )

    store = await dao.get_store(payload.store_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    expected_secret = store.get("webhook_secret")
    if expected_secret and not hmac.compare_digest(
        str(webhook_secret or "").encode("utf-8"), str(expected_secret).encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    delivery = await dao.get_delivery_by_tracking(payload.store_id, payload.provider_tracking_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found for this tracking ID")

    changes: Dict[str, Any] = {"status": payload.status}
    if payload.status == "delivered":
        changes["actual_delivery_time"] = utc_now_iso()
    if payload.status == "failed" and payload.failure_reason:
        changes["failure_reason"] = payload.failure_reason
    if payload.proof_photo_url:
        changes["proof_photo_url"] = payload.proof_photo_url

    delivery_id = str(delivery["id"])
    await dao.update_delivery(delivery_id, changes)
    await dao.insert_status_log(
        delivery_id,
        payload.status,
        changed_by="provider",
        notes=payload.notes,
        location=payload.location,
    )
    await apply_status_side_effects(
        dao,
        delivery,
        payload.status,
        store_id=payload.store_id,
        driver_name=_driver_name(delivery),
        failure_reason=payload.failure_reason,
        notes=payload.notes,
    )
    logger.info(
        "Provider delivery update applied",
        extra={"store_id": payload.store_id, "delivery_id": delivery_id, "status": payload.status},
    )
    return {"success": True, "delivery_id": delivery_id, "status": payload.status}


def _location(value: Any) -> Optional[Dict[str, float]]:
    if not isinstance(value, dict):
        return None
    try:
        return {"lat": float(value["lat"]), "lng": float(value["lng"])}
    except (KeyError, TypeError, ValueError):
        return None


def build_candidates(drivers: List[Mapping[str, Any]], counts: Mapping[str, Mapping[str, int]]) -> List[DriverCandidate]:
    candidates = []
    for driver in drivers:
        stats = counts.get(str(driver["id"]), {})
        delivered = stats.get("delivered", 0)
        failed = stats.get("failed", 0)
        finished = delivered + failed
        candidates.append(
            DriverCandidate(
                id=str(driver["id"]),
                name=driver.get("name") or "",
                location=_location(driver.get("current_location")),
                active_delivery_count=stats.get("active", 0),
                vehicle_type=driver.get("vehicle_type"),
                completion_rate=round(delivered / finished * 100) if finished else 100,
            )
        )
    return candidates


async def auto_assign_delivery(dao, store: Mapping[str, Any], delivery_id: str) -> Dict[str, Any]:
    """Rank candidate drivers for a pending delivery and assign the recommended one."""

    store_id = str(store["id"])
    delivery = await dao.get_delivery(
        delivery_id,
        store_id=store_id,
        columns="id, delivery_number, status, delivery_address, customer_name, customer_phone, order_id, driver_id",
    )
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    if delivery["status"] != "pending":
        raise HTTPException(status_code=400, detail="Зөвхөн хүлээгдэж буй хүргэлтэд жолооч оноох боломжтой")

    drivers = await dao.list_candidate_drivers(store_id)
    if not drivers:
        raise HTTPException(status_code=404, detail="Идэвхтэй жолооч байхгүй байна")

    counts = await dao.driver_outcome_counts([str(driver["id"]) for driver in drivers])
    candidates = build_candidates(drivers, counts)
    rules = AssignmentRules.from_store(store.get("delivery_settings")).model_copy(update={"assignment_mode": "auto"})
    address = delivery.get("delivery_address") or ""
    zone = calculate_delivery_fee(address, ShippingSettings.from_store(store.get("shipping_settings"))).zone
    context = DeliveryContext(address=address, customer_zone=zone)
    result = await assign_driver(context, candidates, rules)

    changes: Dict[str, Any] = {"ai_assignment": {**result.model_dump(), "assigned_at": utc_now_iso()}}
    recommended = result.recommended_driver_id
    if recommended:
        changes.update({"driver_id": recommended, "status": "assigned"})
    await dao.update_delivery(delivery_id, changes)

    if recommended:
        name = next((c.name for c in candidates if c.id == recommended), "")
        await dao.update_driver(recommended, {"status": "on_delivery"})
        await dao.insert_status_log(
            delivery_id,
            "assigned",
            changed_by=f"AI ({result.method})",
            notes=f"Жолооч: {name} — Итгэл: {result.confidence}%",
        )
        await apply_status_side_effects(
            dao,
            {**delivery, "driver_id": recommended},
            "assigned",
            store_id=store_id,
            driver_name=name,
        )
    return {"assignment": result.model_dump(), "auto_assigned": bool(recommended)}


async def tracking_payload(dao, delivery_number: str) -> Dict[str, Any]:
    """Public view of a delivery, safe to show to the customer."""

    delivery = await dao.get_delivery_by_number(delivery_number)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    log = await dao.fetch_status_log(str(delivery["id"]), newest_first=False)
    driver = delivery.get("delivery_drivers") if isinstance(delivery.get("delivery_drivers"), dict) else None
    status = delivery.get("status") or "pending"
    step = TRACKING_STEPS.get(status, {"step": 0, "label": status})
    return {
        "delivery_number": delivery.get("delivery_number"),
        "status": status,
        "status_label": step["label"],
        "step": step["step"],
        "delivery_address": delivery.get("delivery_address"),
        "customer_name": delivery.get("customer_name"),
        "estimated_delivery_time": delivery.get("estimated_delivery_time"),
        "actual_delivery_time": delivery.get("actual_delivery_time"),
        "scheduled_date": delivery.get("scheduled_date"),
        "scheduled_time_slot": delivery.get("scheduled_time_slot"),
        "created_at": delivery.get("created_at"),
        "driver": {"name": driver.get("name"), "vehicle_type": driver.get("vehicle_type")} if driver else None,
        "status_log": [
            {"status": row.get("status"), "notes": row.get("notes"), "created_at": row.get("created_at")}
            for row in log
        ],
    }


async def rate_delivery(dao, delivery_number: str, payload: RatingPayload) -> Dict[str, Any]:
    """Store a customer rating and refresh the driver's average."""

    delivery = await dao.get_delivery_by_number(delivery_number)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    if delivery.get("status") != "delivered" or not delivery.get("driver_id"):
        raise HTTPException(status_code=400, detail="Only delivered deliveries can be rated")
    if await dao.get_rating(str(delivery["id"])):
        raise HTTPException(status_code=409, detail="This delivery has already been rated")

    driver_id = str(delivery["driver_id"])
    rating = await dao.insert_rating(
        {
            "delivery_id": str(delivery["id"]),
            "driver_id": driver_id,
            "store_id": delivery.get("store_id"),
            "rating": payload.rating,
            "comment": payload.comment,
            "customer_name": payload.customer_name,
        }
    )
    ratings = await dao.fetch_driver_ratings(driver_id)
    if ratings:
        await dao.update_driver(
            driver_id,
            {"avg_rating": round(sum(ratings) / len(ratings), 2), "rating_count": len(ratings)},
        )
    return {"rating": rating}


__all__ = [
    "TRACKING_STEPS",
    "apply_provider_update",
    "apply_status_side_effects",
    "auto_assign_delivery",
    "build_candidates",
    "create_delivery",
    "driver_update_status",
    "generate_delivery_number",
    "rate_delivery",
    "release_driver_if_idle",
    "tracking_payload",
    "update_delivery",
]
