"""Status transition tables and validation shared by every workflow.

Each machine maps a current status to the statuses it may move to. A status
with an empty list is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

TransitionMap = Dict[str, List[str]]


@dataclass(frozen=True)
class TransitionResult:
    valid: bool
    error: Optional[str] = None


def validate_transition(machine: TransitionMap, current_status: str, next_status: str) -> TransitionResult:
    """Check whether ``current_status -> next_status`` is allowed by ``machine``.

    Moving to the same status is accepted as a no-op.
    """

    if current_status == next_status:
        return TransitionResult(valid=True)
    allowed = machine.get(current_status)
    if not allowed or next_status not in allowed:
        return TransitionResult(
            valid=False,
            error=f"Cannot transition from '{current_status}' to '{next_status}'",
        )
    return TransitionResult(valid=True)


def is_terminal(machine: TransitionMap, status: str) -> bool:
    return status in machine and not machine[status]


DELIVERY_TRANSITIONS: TransitionMap = {
    "pending": ["assigned", "cancelled"],
    "assigned": ["picked_up", "cancelled"],
    "picked_up": ["in_transit"],
    "in_transit": ["delivered", "failed", "delayed"],
    "delayed": ["in_transit", "delivered", "failed"],
    "delivered": [],
    "failed": [],
    "cancelled": [],
}

# Drivers cannot cancel or un-assign; the owner machine covers those moves.
DRIVER_DELIVERY_TRANSITIONS: TransitionMap = {
    "assigned": ["picked_up"],
    "picked_up": ["in_transit"],
    "in_transit": ["delivered", "failed", "delayed"],
    "delayed": ["in_transit", "delivered", "failed"],
    "delivered": [],
    "failed": [],
}

PROVIDER_DELIVERY_STATUSES = ("picked_up", "in_transit", "delivered", "failed", "delayed")

DELIVERY_STATUSES = tuple(DELIVERY_TRANSITIONS)
ACTIVE_DELIVERY_STATUSES = ("assigned", "picked_up", "in_transit")
TERMINAL_DELIVERY_STATUSES = ("delivered", "failed", "cancelled")

PAYOUT_TRANSITIONS: TransitionMap = {
    "pending": ["approved", "cancelled"],
    "approved": ["paid", "cancelled"],
    "paid": [],
    "cancelled": [],
}

RESERVATION_TRANSITIONS: TransitionMap = {
    "confirmed": ["checked_in", "cancelled", "no_show"],
    "checked_in": ["checked_out"],
    "checked_out": [],
    "cancelled": [],
    "no_show": [],
}

HOUSEKEEPING_TRANSITIONS: TransitionMap = {
    "pending": ["in_progress", "skipped"],
    "in_progress": ["completed", "skipped"],
    "completed": [],
    "skipped": [],
}

MAINTENANCE_TRANSITIONS: TransitionMap = {
    "reported": ["assigned", "cancelled"],
    "assigned": ["in_progress", "cancelled"],
    "in_progress": ["completed", "cancelled"],
    "completed": [],
    "cancelled": [],
}

REPAIR_ORDER_TRANSITIONS: TransitionMap = {
    "received": ["diagnosed", "cancelled"],
    "diagnosed": ["quoted", "cancelled"],
    "quoted": ["approved", "cancelled"],
    "approved": ["in_repair", "cancelled"],
    "in_repair": ["completed", "cancelled"],
    "completed": ["delivered"],
    "delivered": [],
    "cancelled": [],
}

LAUNDRY_ORDER_TRANSITIONS: TransitionMap = {
    "received": ["processing", "cancelled"],
    "processing": ["washing", "cancelled"],
    "washing": ["drying"],
    "drying": ["ironing", "ready"],
    "ironing": ["ready"],
    "ready": ["delivered"],
    "delivered": [],
    "cancelled": [],
}

PURCHASE_ORDER_TRANSITIONS: TransitionMap = {
    "draft": ["sent", "cancelled"],
    "sent": ["confirmed", "cancelled"],
    "confirmed": ["partially_received", "received", "cancelled"],
    "partially_received": ["received"],
    "received": [],
    "cancelled": [],
}

SUBSCRIPTION_TRANSITIONS: TransitionMap = {
    "active": ["paused", "cancelled", "expired"],
    "paused": ["active", "cancelled"],
    "cancelled": [],
    "expired": [],
}

SERVICE_REQUEST_TRANSITIONS: TransitionMap = {
    "pending": ["confirmed", "cancelled"],
    "confirmed": ["in_progress", "cancelled"],
    "in_progress": ["completed", "cancelled"],
    "completed": [],
    "cancelled": [],
}

LAB_ORDER_TRANSITIONS: TransitionMap = {
    "ordered": ["collected", "cancelled"],
    "collected": ["processing", "cancelled"],
    "processing": ["completed", "cancelled"],
    "completed": [],
    "cancelled": [],
}


__all__ = [
    "ACTIVE_DELIVERY_STATUSES",
    "DELIVERY_STATUSES",
    "DELIVERY_TRANSITIONS",
    "DRIVER_DELIVERY_TRANSITIONS",
    "HOUSEKEEPING_TRANSITIONS",
    "LAB_ORDER_TRANSITIONS",
    "LAUNDRY_ORDER_TRANSITIONS",
    "MAINTENANCE_TRANSITIONS",
    "PAYOUT_TRANSITIONS",
    "PROVIDER_DELIVERY_STATUSES",
    "PURCHASE_ORDER_TRANSITIONS",
    "REPAIR_ORDER_TRANSITIONS",
    "RESERVATION_TRANSITIONS",
    "SERVICE_REQUEST_TRANSITIONS",
    "SUBSCRIPTION_TRANSITIONS",
    "TERMINAL_DELIVERY_STATUSES",
    "TransitionMap",
    "TransitionResult",
    "is_terminal",
    "validate_transition",
]
