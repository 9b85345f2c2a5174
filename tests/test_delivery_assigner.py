import asyncio
import json
import types
from datetime import datetime

import pytest

from shopdesk.services import delivery_assigner
from shopdesk.services.delivery_assigner import (
    AssignmentRules,
    DeliveryContext,
    DriverCandidate,
    ai_assign,
    assign_driver,
    deterministic_assign,
)


@pytest.fixture(autouse=True)
def no_openai(monkeypatch):
    monkeypatch.setattr(delivery_assigner, "get_openai_client", lambda: None)


def _drivers():
    return [
        DriverCandidate(id="d1", name="Бат", active_delivery_count=2, vehicle_type="car"),
        DriverCandidate(id="d2", name="Дорж", active_delivery_count=0, location={"lat": 47.9, "lng": 106.9}),
        DriverCandidate(id="d3", name="Сараа", active_delivery_count=3),
    ]


def test_least_loaded_driver_with_location_wins() -> None:
    rules = AssignmentRules(assignment_mode="auto")

    result = deterministic_assign(DeliveryContext(address="Баянгол"), _drivers(), rules)

    # d3 is at the default limit of 3 and is dropped
    assert [ranked.driver_id for ranked in result.ranked_drivers] == ["d2", "d1"]
    assert result.recommended_driver_id == "d2"
    # d2: 1.0 * 1 + 0.5 * 0.5 = 1.25 ; d1: 1/3 * 1 = 0.33
    assert result.ranked_drivers[0].score == 125
    assert result.ranked_drivers[1].score == 33
    assert result.confidence == 85
    assert result.method == "deterministic"
    assert "Чөлөөтэй" in result.ranked_drivers[0].reasons
    assert "Байршил ойр" in result.ranked_drivers[0].reasons


def test_vehicle_and_rating_rules() -> None:
    rules = AssignmentRules(assignment_mode="auto", priority_rules=["vehicle_match", "rating_first"])
    drivers = [
        DriverCandidate(id="bike", name="A", vehicle_type="bicycle", completion_rate=100),
        DriverCandidate(id="car", name="B", vehicle_type="car", completion_rate=50),
    ]

    result = deterministic_assign(DeliveryContext(), drivers, rules)

    # car: 1.0 * 1 + 0.5 * 0.5 = 1.25 ; bike: 0.5 * 1 + 1.0 * 0.5 = 1.0
    assert result.recommended_driver_id == "car"
    assert [r.score for r in result.ranked_drivers] == [125, 100]
    assert result.confidence == 85


def test_close_scores_give_lower_confidence() -> None:
    rules = AssignmentRules(assignment_mode="auto", priority_rules=["least_loaded"])
    drivers = [
        DriverCandidate(id="a", name="A", active_delivery_count=0),
        DriverCandidate(id="b", name="B", active_delivery_count=0),
    ]

    result = deterministic_assign(DeliveryContext(), drivers, rules)

    assert result.confidence == 60
    assert result.recommended_driver_id == "a"


def test_round_robin_uses_injected_random() -> None:
    rules = AssignmentRules(assignment_mode="auto", priority_rules=["round_robin"])
    drivers = [DriverCandidate(id="a", name="A")]

    result = deterministic_assign(DeliveryContext(), drivers, rules, rng=lambda: 1.0)

    assert result.ranked_drivers[0].score == 30


def test_no_eligible_driver_gives_empty_result() -> None:
    rules = AssignmentRules(assignment_mode="auto", max_concurrent_deliveries=1)
    drivers = [DriverCandidate(id="a", name="A", active_delivery_count=1)]

    result = deterministic_assign(DeliveryContext(), drivers, rules)

    assert result.recommended_driver_id is None
    assert result.ranked_drivers == []
    assert result.confidence == 0


def test_manual_mode_never_assigns() -> None:
    result = asyncio.run(assign_driver(DeliveryContext(), _drivers(), AssignmentRules()))

    assert result.recommended_driver_id is None


def test_outside_working_hours() -> None:
    rules = AssignmentRules.from_store(
        {"assignment_mode": "auto", "working_hours": {"start": "09:00", "end": "18:00"}}
    )

    late = asyncio.run(assign_driver(DeliveryContext(), _drivers(), rules, now=datetime(2024, 5, 1, 21, 0)))
    noon = asyncio.run(assign_driver(DeliveryContext(), _drivers(), rules, now=datetime(2024, 5, 1, 12, 0)))

    assert late.recommended_driver_id is None
    assert noon.recommended_driver_id == "d2"


def test_store_rules_fall_back_to_defaults() -> None:
    rules = AssignmentRules.from_store({"max_concurrent_deliveries": 99})

    assert rules.assignment_mode == "manual"
    assert rules.priority_rules == ["least_loaded", "closest_driver"]
    assert rules.max_concurrent_deliveries == 3
    assert AssignmentRules.from_store(None).assignment_radius_km == 10


class _FakeCompletions:
    def __init__(self, content: str):
        self.content = content

    def create(self, **_kwargs):
        message = types.SimpleNamespace(content=self.content)
        return types.SimpleNamespace(choices=[types.SimpleNamespace(message=message)])


def _fake_client(content: str):
    return types.SimpleNamespace(chat=types.SimpleNamespace(completions=_FakeCompletions(content)))


def test_ai_ranking_is_used_when_valid() -> None:
    content = json.dumps(
        {
            "recommended_driver_id": "d1",
            "ranked_drivers": [
                {"driver_id": "d1", "score": 90, "reasons": ["Машинтай"]},
                {"driver_id": "ghost", "score": 80, "reasons": []},
            ],
            "confidence": 77,
        }
    )
    rules = AssignmentRules(assignment_mode="auto")

    result = asyncio.run(ai_assign(_fake_client(content), DeliveryContext(), _drivers(), rules))

    assert result.method == "ai"
    assert result.recommended_driver_id == "d1"
    assert [r.driver_id for r in result.ranked_drivers] == ["d1"]
    assert result.ranked_drivers[0].driver_name == "Бат"
    assert result.confidence == 77


def test_ai_garbage_falls_back_to_deterministic() -> None:
    rules = AssignmentRules(assignment_mode="auto")

    result = asyncio.run(ai_assign(_fake_client("not json"), DeliveryContext(), _drivers(), rules))

    assert result.method == "deterministic"
    assert result.recommended_driver_id == "d2"


def test_ai_unknown_driver_falls_back_to_deterministic() -> None:
    content = json.dumps({"recommended_driver_id": "ghost", "ranked_drivers": [], "confidence": 90})
    rules = AssignmentRules(assignment_mode="auto")

    result = asyncio.run(ai_assign(_fake_client(content), DeliveryContext(), _drivers(), rules))

    assert result.method == "deterministic"


@pytest.mark.parametrize(
    "completion",
    [
        types.SimpleNamespace(choices=[]),
        types.SimpleNamespace(choices=[types.SimpleNamespace(message=types.SimpleNamespace(content={"id": 1}))]),
        types.SimpleNamespace(),
    ],
)
def test_ai_unexpected_completion_shape_falls_back(completion) -> None:
    client = types.SimpleNamespace(
        chat=types.SimpleNamespace(completions=types.SimpleNamespace(create=lambda **kwargs: completion))
    )
    rules = AssignmentRules(assignment_mode="auto")

    result = asyncio.run(ai_assign(client, DeliveryContext(), _drivers(), rules))

    assert result.method == "deterministic"
    assert result.recommended_driver_id == "d2"
