from shopdesk.services.delivery_fee import (
    ShippingSettings,
    ShippingZone,
    calculate_delivery_fee,
    calculate_shipping,
    detect_zone,
)


def test_city_district_uses_central_zone() -> None:
    quote = calculate_delivery_fee("Баянзүрх дүүрэг, 3-р хороо")

    assert quote.zone == "Улаанбаатар хот (төв)"
    assert quote.fee == 5000
    assert quote.estimated_days == "1-2 өдөр"
    assert quote.matched_keyword == "баянзүрх"


def test_outer_district_and_latin_spelling() -> None:
    assert calculate_delivery_fee("Налайх дүүрэг").fee == 7000
    assert calculate_delivery_fee("Darkhan city").zone == "Дархан, Эрдэнэт"


def test_case_suffix_still_matches_place_name() -> None:
    detected = detect_zone("Дарханд хүргэнэ үү")

    assert detected is not None
    zone, keyword = detected
    assert zone.price == 10000
    assert keyword == "дархан"


def test_unknown_address_falls_back_to_first_enabled_zone() -> None:
    quote = calculate_delivery_fee("Paris")

    assert quote.zone == "Улаанбаатар хот (төв)"
    assert quote.fee == 5000
    assert quote.matched_keyword is None


def test_disabled_zone_is_never_quoted() -> None:
    quote = calculate_delivery_fee("Ховд аймаг")

    assert quote.zone != "Бусад аймаг"
    assert quote.matched_keyword is None


def test_every_zone_disabled_quotes_nothing() -> None:
    settings = ShippingSettings(zones=[ShippingZone(name="Хот", price=3000, enabled=False)])

    quote = calculate_delivery_fee("Баянгол", settings)

    assert quote.zone is None
    assert quote.fee == 0


def test_free_shipping_above_minimum() -> None:
    settings = ShippingSettings(free_shipping_enabled=True, free_shipping_minimum=100000)

    assert calculate_delivery_fee("Баянгол", settings, subtotal=150000).free_shipping is True
    assert calculate_delivery_fee("Баянгол", settings, subtotal=150000).fee == 0
    assert calculate_delivery_fee("Баянгол", settings, subtotal=50000).fee == 5000


def test_store_settings_accept_dashboard_camel_case() -> None:
    settings = ShippingSettings.from_store(
        {"zones": [{"name": "Хот дотор", "price": 3000, "estimatedDays": "1 өдөр", "enabled": True}]}
    )

    quote = calculate_delivery_fee("Баянгол", settings)

    assert quote.zone == "Хот дотор"
    assert quote.fee == 3000
    assert quote.estimated_days == "1 өдөр"


def test_malformed_store_settings_use_defaults() -> None:
    settings = ShippingSettings.from_store({"zones": "bad"})

    assert settings.zones == []
    assert calculate_delivery_fee("Налайх", settings).fee == 7000
    assert ShippingSettings.from_store(None).zones == []


def test_calculate_shipping_for_named_zone() -> None:
    settings = ShippingSettings(
        free_shipping_enabled=True,
        free_shipping_minimum=200000,
        zones=[
            ShippingZone(name="A", price=4000),
            ShippingZone(name="B", price=9000, enabled=False),
        ],
    )

    assert calculate_shipping(1000, "A", settings) == 4000
    assert calculate_shipping(1000, "B", settings) == 0
    assert calculate_shipping(1000, "C", settings) == 0
    assert calculate_shipping(1000, None, settings) == 0
    assert calculate_shipping(250000, "A", settings) == 0
    assert calculate_shipping(1000, "A", ShippingSettings()) == 0


def test_district_wins_over_city_name() -> None:
    quote = calculate_delivery_fee("Улаанбаатар хот, Налайх дүүрэг, 3-р хороо")

    assert quote.zone == "Улаанбаатар хот (захын дүүрэг)"
    assert quote.fee == 7000
    assert quote.matched_keyword == "налайх"


def test_city_name_alone_still_matches_center() -> None:
    quote = calculate_delivery_fee("Улаанбаатар хот, 45-р байр")

    assert quote.zone == "Улаанбаатар хот (төв)"
    assert quote.matched_keyword == "улаанбаатар"


def test_district_abbreviations() -> None:
    for address in ("ХУД, 7-р хороо", "СБД, 1-р хороо", "БЗД 3-р хороо", "схд 20-р хороо"):
        detected = detect_zone(address)
        assert detected is not None, address
        assert detected[0].name == "Улаанбаатар хот (төв)"

    assert detect_zone("Худалдааны төв") is None
