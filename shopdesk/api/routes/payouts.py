"""Driver payout generation and review."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from shopdesk.api.dependencies import get_current_store, get_delivery_dao
from shopdesk.schemas import PayoutGeneratePayload, PayoutUpdatePayload
from shopdesk.security.guards import rate_limit
from shopdesk.services.delivery_dao import SupabaseDeliveryDAO, utc_now_iso
from shopdesk.services.payouts import (
    ALREADY_GENERATED_MESSAGE,
    NO_DELIVERIES_MESSAGE,
    NOTHING_TO_CREATE_MESSAGE,
    OPEN_PAYOUT_STATUSES,
    compute_driver_payouts,
)
from shopdesk.services.status_machine import PAYOUT_TRANSITIONS, validate_transition

router = APIRouter(prefix="/api/driver-payouts", tags=["payouts"])
logger = logging.getLogger(__name__)


@router.post("/generate", dependencies=[Depends(rate_limit("payouts"))])
async def generate_payouts(
    payload: PayoutGeneratePayload,
    store: Dict[str, Any] = Depends(get_current_store),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    """Create one pending payout per driver for the delivered deliveries of a period."""

    store_id = str(store["id"])
    deliveries = await dao.fetch_delivered_for_period(
        store_id,
        payload.period_start,
        payload.period_end,
        driver_id=str(payload.driver_id) if payload.driver_id else None,
    )
    if not deliveries:
        return {"payouts": [], "message": NO_DELIVERIES_MESSAGE}

    existing = await dao.fetch_open_payouts(
        store_id, payload.period_start, payload.period_end, OPEN_PAYOUT_STATUSES
    )
    drafts, skipped = compute_driver_payouts(
        deliveries,
        existing,
        date.fromisoformat(payload.period_start),
        date.fromisoformat(payload.period_end),
        store_id,
    )
    if not drafts:
        return {
            "payouts": [],
            "message": ALREADY_GENERATED_MESSAGE if skipped else NOTHING_TO_CREATE_MESSAGE,
        }

    created = await dao.insert_payouts(draft.model_dump() for draft in drafts)
    logger.info(
        "Driver payouts generated",
        extra={"store_id": store_id, "created": len(drafts), "skipped": len(skipped)},
    )
    return {"payouts": created, "created_count": len(drafts), "skipped_count": len(skipped)}


@router.patch("/{payout_id}")
async def update_payout(
    payout_id: UUID,
    payload: PayoutUpdatePayload,
    store: Dict[str, Any] = Depends(get_current_store),
    dao: SupabaseDeliveryDAO = Depends(get_delivery_dao),
) -> Dict[str, Any]:
    current = await dao.get_payout(str(payout_id), str(store["id"]))
    if not current:
        raise HTTPException(status_code=404, detail="Payout not found")

    check = validate_transition(PAYOUT_TRANSITIONS, current["status"], payload.status)
    if not check.valid:
        raise HTTPException(status_code=400, detail=check.error)

    changes: Dict[str, Any] = {"status": payload.status}
    if payload.notes is not None:
        changes["notes"] = payload.notes
    if payload.status == "paid":
        changes["paid_at"] = utc_now_iso()
    payout = await dao.update_payout(str(payout_id), changes)
    return {"payout": payout}
