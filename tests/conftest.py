import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from shopdesk.api import dependencies
from shopdesk.main import app
from shopdesk.security.guards import reset_rate_limits
from shopdesk.services import delivery_assigner, notifications
from shopdesk.services.delivery_dao import SupabaseDeliveryDAO
from shopdesk.services.status_machine import ACTIVE_DELIVERY_STATUSES

BASE_TIME = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


class FakeDeliveryDAO(SupabaseDeliveryDAO):
    """In-memory stand-in for the PostgREST tables used by the delivery endpoints."""

    def __init__(self, store_id: str):
        super().__init__("test-token")
        self.store: Dict[str, Any] = {
            "id": store_id,
            "name": "Гэрэл дэлгүүр",
            "shipping_settings": None,
            "delivery_settings": {"assignment_mode": "manual"},
            "webhook_secret": "s3cret",
        }
        self.deliveries: Dict[str, Dict[str, Any]] = {}
        self.drivers: Dict[str, Dict[str, Any]] = {}
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.status_log: List[Dict[str, Any]] = []
        self.ratings: List[Dict[str, Any]] = []
        self.payouts: Dict[str, Dict[str, Any]] = {}
        self.uploads: List[Dict[str, Any]] = []
        self._ticks = 0

    def _timestamp(self) -> str:
        self._ticks += 1
        return (BASE_TIME + timedelta(minutes=self._ticks)).isoformat()

    # Seeding helpers

    def add_driver(self, name: str, *, store_id: Optional[str] = None, **fields: Any) -> str:
        driver_id = str(uuid4())
        self.drivers[driver_id] = {
            "id": driver_id,
            "store_id": store_id or self.store["id"],
            "name": name,
            "status": "active",
            "vehicle_type": None,
            "current_location": None,
            "avg_rating": None,
            "rating_count": 0,
            **fields,
        }
        return driver_id

    def add_order(self, order_number: str = "ORD-1") -> str:
        order_id = str(uuid4())
        self.orders[order_id] = {
            "id": order_id,
            "store_id": self.store["id"],
            "order_number": order_number,
            "status": "shipped",
        }
        return order_id

    def add_delivery(self, **fields: Any) -> str:
        delivery_id = str(uuid4())
        self.deliveries[delivery_id] = {
            "id": delivery_id,
            "store_id": self.store["id"],
            "delivery_number": f"DEL-{len(self.deliveries) + 1}",
            "status": "pending",
            "driver_id": None,
            "order_id": None,
            "delivery_type": "own_driver",
            "delivery_address": "Баянгол дүүрэг",
            "customer_name": "Болд",
            "delivery_fee": 5000,
            "created_at": self._timestamp(),
            **fields,
        }
        return delivery_id

    def _with_driver(self, row: Dict[str, Any], *keys: str) -> Dict[str, Any]:
        result = copy.deepcopy(row)
        driver = self.drivers.get(row.get("driver_id") or "")
        result["delivery_drivers"] = {key: driver.get(key) for key in keys} if driver else None
        return result

    # Deliveries

    async def list_deliveries(self, store_id, *, status=None, driver_id=None, delivery_type=None,
                              search=None, limit=20, offset=0):
        rows = [row for row in self.deliveries.values() if row["store_id"] == store_id]
        if status:
            rows = [row for row in rows if row["status"] == status]
        if driver_id:
            rows = [row for row in rows if row["driver_id"] == driver_id]
        if delivery_type:
            rows = [row for row in rows if row.get("delivery_type") == delivery_type]
        if search:
            rows = [row for row in rows if search in row["delivery_number"] or search in (row.get("customer_name") or "")]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return [copy.deepcopy(row) for row in rows[offset:offset + limit]], len(rows)

    async def get_delivery(self, delivery_id, *, store_id=None, driver_id=None, columns=None):
        row = self.deliveries.get(delivery_id)
        if row is None:
            return None
        if store_id is not None and row["store_id"] != store_id:
            return None
        if driver_id is not None and row["driver_id"] != driver_id:
            return None
        return self._with_driver(row, "id", "name", "phone")

    async def get_delivery_by_number(self, delivery_number):
        row = next((r for r in self.deliveries.values() if r["delivery_number"] == delivery_number), None)
        return self._with_driver(row, "name", "vehicle_type") if row else None

    async def get_delivery_by_tracking(self, store_id, tracking_id):
        row = next(
            (
                r
                for r in self.deliveries.values()
                if r["store_id"] == store_id and r.get("provider_tracking_id") == tracking_id
            ),
            None,
        )
        return self._with_driver(row, "name") if row else None

    async def list_driver_deliveries(self, driver_id, *, status=None):
        return [
            copy.deepcopy(row)
            for row in self.deliveries.values()
            if row["driver_id"] == driver_id and (status is None or row["status"] == status)
        ]

    async def insert_delivery(self, row):
        delivery_id = str(uuid4())
        self.deliveries[delivery_id] = {**row, "id": delivery_id, "created_at": self._timestamp()}
        return copy.deepcopy(self.deliveries[delivery_id])

    async def update_delivery(self, delivery_id, changes):
        self.deliveries[delivery_id].update(changes)
        return copy.deepcopy(self.deliveries[delivery_id])

    async def fetch_deliveries_since(self, store_id, since):
        return [self._with_driver(row, "name", "avg_rating", "rating_count")
                for row in self.deliveries.values() if row["store_id"] == store_id]

    async def fetch_delivered_for_period(self, store_id, period_start, period_end, *, driver_id=None):
        return [
            copy.deepcopy(row)
            for row in self.deliveries.values()
            if row["store_id"] == store_id
            and row["status"] == "delivered"
            and row["driver_id"]
            and period_start <= row["created_at"][:10] <= period_end
            and (driver_id is None or row["driver_id"] == driver_id)
        ]

    # Status log

    async def insert_status_log(self, delivery_id, status, *, changed_by, notes=None, location=None):
        self.status_log.append(
            {
                "delivery_id": delivery_id,
                "status": status,
                "changed_by": changed_by,
                "notes": notes,
                "location": location,
                "created_at": self._timestamp(),
            }
        )

    async def fetch_status_log(self, delivery_id, *, newest_first=True):
        rows = [copy.deepcopy(row) for row in self.status_log if row["delivery_id"] == delivery_id]
        return list(reversed(rows)) if newest_first else rows

    # Orders

    async def get_order(self, order_id, store_id):
        order = self.orders.get(order_id)
        if order is None or order["store_id"] != store_id:
            return None
        return dict(order)

    async def update_order_status(self, order_id, status):
        self.orders[order_id]["status"] = status

    # Drivers

    async def get_driver(self, driver_id, *, store_id=None):
        driver = self.drivers.get(driver_id)
        if driver is None or (store_id is not None and driver["store_id"] != store_id):
            return None
        return dict(driver)

    async def update_driver(self, driver_id, changes):
        self.drivers[driver_id].update(changes)

    async def count_active_deliveries(self, driver_id, *, exclude_id=None):
        return sum(
            1
            for row in self.deliveries.values()
            if row["driver_id"] == driver_id and row["status"] in ACTIVE_DELIVERY_STATUSES and row["id"] != exclude_id
        )

    async def list_candidate_drivers(self, store_id):
        return [
            dict(driver)
            for driver in self.drivers.values()
            if driver["store_id"] == store_id and driver["status"] in ("active", "on_delivery")
        ]

    async def driver_outcome_counts(self, driver_ids: Sequence[str]):
        counts = {driver_id: {"delivered": 0, "failed": 0, "active": 0} for driver_id in driver_ids}
        for row in self.deliveries.values():
            stats = counts.get(row["driver_id"] or "")
            if stats is None:
                continue
            if row["status"] in ("delivered", "failed"):
                stats[row["status"]] += 1
            elif row["status"] in ACTIVE_DELIVERY_STATUSES:
                stats["active"] += 1
        return counts

    # Stores

    async def get_store(self, store_id):
        return dict(self.store) if store_id == self.store["id"] else None

    # Payouts

    async def fetch_open_payouts(self, store_id, period_start, period_end, statuses):
        return [
            dict(row)
            for row in self.payouts.values()
            if row["store_id"] == store_id
            and row["period_start"] == period_start
            and row["period_end"] == period_end
            and row["status"] in statuses
        ]

    async def insert_payouts(self, rows):
        created = []
        for row in rows:
            payout_id = str(uuid4())
            self.payouts[payout_id] = {**row, "id": payout_id}
            created.append(dict(self.payouts[payout_id]))
        return created

    async def get_payout(self, payout_id, store_id):
        payout = self.payouts.get(payout_id)
        return dict(payout) if payout and payout["store_id"] == store_id else None

    async def update_payout(self, payout_id, changes):
        self.payouts[payout_id].update(changes)
        return dict(self.payouts[payout_id])

    # Ratings

    async def get_rating(self, delivery_id):
        return next((dict(r) for r in self.ratings if r["delivery_id"] == delivery_id), None)

    async def insert_rating(self, row):
        self.ratings.append({**row, "id": str(uuid4())})
        return dict(self.ratings[-1])

    async def fetch_driver_ratings(self, driver_id):
        return [r["rating"] for r in self.ratings if r["driver_id"] == driver_id]

    # Storage

    async def upload_proof_photo(self, store_id, delivery_id, content, content_type, extension):
        self.uploads.append({"store_id": store_id, "delivery_id": delivery_id, "size": len(content)})
        return f"https://storage.test/{store_id}/{delivery_id}/photo.{extension}"


@pytest.fixture(name="sent_notifications")
def sent_notifications_fixture(monkeypatch):
    sent: List[Dict[str, Any]] = []

    async def fake_dispatch(store_id, event, data):
        sent.append({"store_id": store_id, "event": event, "data": dict(data)})
        return True

    monkeypatch.setattr(notifications, "dispatch_notification", fake_dispatch)
    return sent


@pytest.fixture(name="fake_dao")
def fake_dao_fixture(monkeypatch):
    monkeypatch.setattr(delivery_assigner, "get_openai_client", lambda: None)
    reset_rate_limits()
    return FakeDeliveryDAO(str(uuid4()))


@pytest.fixture(name="api_client")
def client_fixture(fake_dao: FakeDeliveryDAO, sent_notifications):
    driver_id = fake_dao.add_driver("Бат", vehicle_type="motorcycle")

    async def override_store():
        return dict(fake_dao.store)

    async def override_driver():
        return dict(fake_dao.drivers[driver_id])

    async def override_dao():
        return fake_dao

    app.dependency_overrides[dependencies.get_current_store] = override_store
    app.dependency_overrides[dependencies.get_current_driver] = override_driver
    app.dependency_overrides[dependencies.get_delivery_dao] = override_dao
    app.dependency_overrides[dependencies.get_service_delivery_dao] = override_dao
    app.dependency_overrides[dependencies.get_actor_label] = lambda: "owner@example.com"

    with TestClient(app) as client:
        client.driver_id = driver_id  # type: ignore[attr-defined]
        yield client

    app.dependency_overrides.clear()
