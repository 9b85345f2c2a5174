from uuid import uuid4


def test_create_delivery_with_driver_assigns_and_notifies(api_client, fake_dao, sent_notifications):
    order_id = fake_dao.add_order("ORD-77")
    response = api_client.post(
        "/api/deliveries",
        json={
            "delivery_address": "Баянзүрх дүүрэг, 4-р хороо",
            "driver_id": api_client.driver_id,
            "order_id": order_id,
            "customer_name": "Сараа",
        },
    )

    assert response.status_code == 201
    delivery = response.json()["delivery"]
    assert delivery["status"] == "assigned"
    assert delivery["delivery_fee"] == 5000
    assert delivery["delivery_number"].startswith("DEL-")
    assert fake_dao.drivers[api_client.driver_id]["status"] == "on_delivery"
    assert fake_dao.status_log[0]["changed_by"] == "system"
    assert fake_dao.status_log[0]["status"] == "assigned"
    assert sent_notifications[0]["event"] == "delivery_assigned"
    assert sent_notifications[0]["data"]["order_number"] == "ORD-77"
    assert sent_notifications[0]["data"]["driver_name"] == "Бат"


def test_create_delivery_without_driver_stays_pending(api_client, fake_dao, sent_notifications):
    response = api_client.post(
        "/api/deliveries",
        json={"delivery_address": "Налайх", "delivery_fee": 0},
    )

    assert response.status_code == 201
    delivery = response.json()["delivery"]
    assert delivery["status"] == "pending"
    assert delivery["delivery_fee"] == 0
    assert sent_notifications == []


def test_create_delivery_quotes_fee_from_address(api_client):
    response = api_client.post("/api/deliveries", json={"delivery_address": "Налайх дүүрэг"})

    assert response.json()["delivery"]["delivery_fee"] == 7000


def test_create_delivery_rejects_unknown_order_and_foreign_driver(api_client, fake_dao):
    missing_order = api_client.post(
        "/api/deliveries", json={"delivery_address": "Баянгол", "order_id": str(uuid4())}
    )
    foreign_driver = fake_dao.add_driver("Гадны", store_id=str(uuid4()))
    other_store_driver = api_client.post(
        "/api/deliveries", json={"delivery_address": "Баянгол", "driver_id": foreign_driver}
    )

    assert missing_order.status_code == 404
    assert other_store_driver.status_code == 404
    assert fake_dao.deliveries == {}


def test_create_delivery_requires_address(api_client):
    response = api_client.post("/api/deliveries", json={"customer_name": "Болд"})

    assert response.status_code == 422


def test_list_deliveries_filters_and_clamps_limit(api_client, fake_dao):
    fake_dao.add_delivery(status="pending")
    fake_dao.add_delivery(status="delivered", driver_id=api_client.driver_id)
    fake_dao.add_delivery(status="pending", customer_name="Цэцгээ")

    pending = api_client.get("/api/deliveries", params={"status": "pending"}).json()
    assert pending["count"] == 2
    assert {row["status"] for row in pending["deliveries"]} == {"pending"}

    searched = api_client.get("/api/deliveries", params={"search": "Цэцгээ"}).json()
    assert searched["count"] == 1

    clamped = api_client.get("/api/deliveries", params={"limit": 500, "offset": -3}).json()
    assert clamped["limit"] == 100
    assert clamped["offset"] == 0
    assert clamped["count"] == 3


def test_list_deliveries_rejects_unknown_status(api_client):
    response = api_client.get("/api/deliveries", params={"status": "lost"})

    assert response.status_code == 422


def test_get_delivery_includes_status_history_newest_first(api_client, fake_dao):
    created = api_client.post(
        "/api/deliveries", json={"delivery_address": "Баянгол", "driver_id": api_client.driver_id}
    ).json()["delivery"]
    api_client.patch(f"/api/deliveries/{created['id']}", json={"status": "picked_up"})

    response = api_client.get(f"/api/deliveries/{created['id']}")

    assert response.status_code == 200
    history = response.json()["delivery"]["delivery_status_log"]
    assert [row["status"] for row in history] == ["picked_up", "assigned"]


def test_get_delivery_of_another_store_is_not_found(api_client, fake_dao):
    foreign = fake_dao.add_delivery(store_id=str(uuid4()))

    assert api_client.get(f"/api/deliveries/{foreign}").status_code == 404
    assert api_client.get(f"/api/deliveries/{uuid4()}").status_code == 404


def test_assigning_driver_to_pending_delivery_moves_it_to_assigned(api_client, fake_dao, sent_notifications):
    delivery_id = fake_dao.add_delivery()

    response = api_client.patch(f"/api/deliveries/{delivery_id}", json={"driver_id": api_client.driver_id})

    assert response.status_code == 200
    assert response.json()["delivery"]["status"] == "assigned"
    assert fake_dao.drivers[api_client.driver_id]["status"] == "on_delivery"
    assert fake_dao.status_log[-1] == {
        "delivery_id": delivery_id,
        "status": "assigned",
        "changed_by": "owner@example.com",
        "notes": None,
        "location": None,
        "created_at": fake_dao.status_log[-1]["created_at"],
    }
    assert sent_notifications[-1]["event"] == "delivery_assigned"
    assert sent_notifications[-1]["data"]["driver_name"] == "Бат"


def test_null_driver_id_keeps_current_assignment(api_client, fake_dao):
    fake_dao.drivers[api_client.driver_id]["status"] = "on_delivery"
    delivery_id = fake_dao.add_delivery(status="assigned", driver_id=api_client.driver_id)

    response = api_client.patch(
        f"/api/deliveries/{delivery_id}", json={"driver_id": None, "notes": "Хаалга 2"}
    )

    assert response.status_code == 200
    delivery = fake_dao.deliveries[delivery_id]
    assert delivery["driver_id"] == api_client.driver_id
    assert delivery["status"] == "assigned"
    assert delivery["notes"] == "Хаалга 2"
    assert fake_dao.status_log == []


def test_invalid_owner_transition_is_rejected(api_client, fake_dao):
    delivery_id = fake_dao.add_delivery()

    response = api_client.patch(f"/api/deliveries/{delivery_id}", json={"status": "delivered"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot transition from 'pending' to 'delivered'"
    assert fake_dao.deliveries[delivery_id]["status"] == "pending"
    assert fake_dao.status_log == []


def test_same_status_update_only_edits_fields(api_client, fake_dao, sent_notifications):
    delivery_id = fake_dao.add_delivery()

    response = api_client.patch(
        f"/api/deliveries/{delivery_id}", json={"status": "pending", "notes": "Орцны код 1234"}
    )

    assert response.status_code == 200
    assert fake_dao.deliveries[delivery_id]["notes"] == "Орцны код 1234"
    assert fake_dao.status_log == []
    assert sent_notifications == []


def test_empty_update_body_is_rejected(api_client, fake_dao):
    delivery_id = fake_dao.add_delivery()

    response = api_client.patch(f"/api/deliveries/{delivery_id}", json={})

    assert response.status_code == 422


def test_delivering_completes_order_and_releases_idle_driver(api_client, fake_dao, sent_notifications):
    order_id = fake_dao.add_order("ORD-9")
    fake_dao.drivers[api_client.driver_id]["status"] = "on_delivery"
    delivery_id = fake_dao.add_delivery(status="in_transit", driver_id=api_client.driver_id, order_id=order_id)

    response = api_client.patch(f"/api/deliveries/{delivery_id}", json={"status": "delivered"})

    assert response.status_code == 200
    assert fake_dao.deliveries[delivery_id]["actual_delivery_time"]
    assert fake_dao.orders[order_id]["status"] == "delivered"
    assert fake_dao.drivers[api_client.driver_id]["status"] == "active"
    assert sent_notifications[-1]["event"] == "delivery_completed"
    assert sent_notifications[-1]["data"]["order_number"] == "ORD-9"


def test_busy_driver_stays_on_delivery_after_cancellation(api_client, fake_dao):
    fake_dao.drivers[api_client.driver_id]["status"] = "on_delivery"
    fake_dao.add_delivery(status="picked_up", driver_id=api_client.driver_id)
    delivery_id = fake_dao.add_delivery(status="assigned", driver_id=api_client.driver_id)

    response = api_client.patch(f"/api/deliveries/{delivery_id}", json={"status": "cancelled"})

    assert response.status_code == 200
    assert fake_dao.drivers[api_client.driver_id]["status"] == "on_delivery"


def test_calculate_fee_detects_zone(api_client):
    response = api_client.post("/api/deliveries/calculate-fee", json={"address": "Дархан сум, 5-р баг"})

    assert response.status_code == 200
    quote = response.json()
    assert quote["zone"] == "Дархан, Эрдэнэт"
    assert quote["fee"] == 10000


def test_calculate_fee_rejects_short_address(api_client):
    response = api_client.post("/api/deliveries/calculate-fee", json={"address": "ab"})

    assert response.status_code == 422


def test_auto_assign_picks_least_loaded_driver(api_client, fake_dao, sent_notifications):
    fake_dao.store["delivery_settings"] = {"priority_rules": ["least_loaded"], "max_concurrent_deliveries": 3}
    fake_dao.add_delivery(status="picked_up", driver_id=api_client.driver_id)
    free_driver = fake_dao.add_driver("Дорж")
    delivery_id = fake_dao.add_delivery()

    response = api_client.post("/api/deliveries/assign", json={"delivery_id": delivery_id})

    assert response.status_code == 200
    body = response.json()
    assert body["auto_assigned"] is True
    assert body["assignment"]["recommended_driver_id"] == free_driver
    assert body["assignment"]["method"] == "deterministic"
    assert body["assignment"]["confidence"] == 85
    stored = fake_dao.deliveries[delivery_id]
    assert stored["status"] == "assigned"
    assert stored["driver_id"] == free_driver
    assert stored["ai_assignment"]["recommended_driver_id"] == free_driver
    assert fake_dao.drivers[free_driver]["status"] == "on_delivery"
    assert fake_dao.status_log[-1]["changed_by"] == "AI (deterministic)"
    assert sent_notifications[-1]["data"]["driver_name"] == "Дорж"


def test_auto_assign_requires_pending_delivery(api_client, fake_dao):
    delivery_id = fake_dao.add_delivery(status="assigned", driver_id=api_client.driver_id)

    response = api_client.post("/api/deliveries/assign", json={"delivery_id": delivery_id})

    assert response.status_code == 400


def test_auto_assign_without_available_drivers(api_client, fake_dao):
    fake_dao.drivers[api_client.driver_id]["status"] = "inactive"
    delivery_id = fake_dao.add_delivery()

    response = api_client.post("/api/deliveries/assign", json={"delivery_id": delivery_id})

    assert response.status_code == 404
    assert fake_dao.deliveries[delivery_id]["status"] == "pending"


def test_auto_assign_with_overloaded_drivers_records_empty_result(api_client, fake_dao):
    fake_dao.store["delivery_settings"] = {"max_concurrent_deliveries": 1}
    fake_dao.add_delivery(status="in_transit", driver_id=api_client.driver_id)
    delivery_id = fake_dao.add_delivery()

    response = api_client.post("/api/deliveries/assign", json={"delivery_id": delivery_id})

    assert response.status_code == 200
    assert response.json()["auto_assigned"] is False
    assert fake_dao.deliveries[delivery_id]["status"] == "pending"
    assert fake_dao.deliveries[delivery_id]["ai_assignment"]["recommended_driver_id"] is None
