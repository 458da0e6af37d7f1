"""Tests for fetch supersession and derived step-2 values."""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from takaful_quote.quote.derived import derive_motor_values, models_for_make, policy_end_date
from takaful_quote.quote.guards import FetchGuard


def test_newer_fetch_supersedes_older():
    guard = FetchGuard()
    first = guard.begin("vehicle_lookup")
    second = guard.begin("vehicle_lookup")

    assert not guard.is_current(first)
    assert guard.finish(first) is False
    assert guard.in_flight == frozenset({"vehicle_lookup"})
    assert guard.finish(second) is True
    assert guard.in_flight == frozenset()


def test_cancel_makes_outstanding_tokens_stale():
    guard = FetchGuard()
    lookup = guard.begin("vehicle_lookup")
    models = guard.begin("models")
    plans = guard.begin("plans")

    guard.cancel(["vehicle_lookup", "models"])

    assert guard.finish(lookup) is False
    assert guard.finish(models) is False
    assert guard.in_flight == frozenset({"plans"})
    assert guard.finish(plans) is True


def test_targets_are_independent():
    guard = FetchGuard()
    discount = guard.begin("discount")
    guard.begin("plans")
    assert guard.finish(discount) is True


@pytest.mark.parametrize(
    "start, end",
    [
        (date(2025, 1, 15), date(2026, 1, 14)),
        (date(2025, 12, 31), date(2026, 12, 30)),
        (date(2025, 3, 1), date(2026, 2, 28)),
        (date(2024, 2, 29), date(2025, 2, 28)),
    ],
)
def test_policy_end_date(start, end):
    assert policy_end_date(start) == end


def test_start_date_change_derives_end_date():
    updates = derive_motor_values({"start_date": "2025-06-01"}, ["start_date"])
    assert updates == {"policy_end_date": "2026-05-31"}

    assert derive_motor_values({"start_date": "not a date"}, ["start_date"]) == {"policy_end_date": None}
    assert derive_motor_values({"start_date": ""}, ["start_date"]) == {"policy_end_date": None}


def test_make_change_clears_model_unless_model_also_changed():
    assert derive_motor_values({"make": "Nissan", "model": "Camry"}, ["make"]) == {"model": ""}
    assert derive_motor_values({"make": "Nissan", "model": "Patrol"}, ["make", "model"]) == {}
    assert derive_motor_values({"value": 100}, ["value"]) == {}


@pytest.mark.asyncio
async def test_models_for_make(zain):
    assert await models_for_make(zain, " toyota ") == ["Camry", "Corolla", "Land Cruiser", "Prado", "Yaris"]
    assert await models_for_make(zain, "Unknown") == []

    client = AsyncMock()
    assert await models_for_make(client, "  ") == []
    client.get_models_for_make.assert_not_called()
