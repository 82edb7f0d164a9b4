"""
tests/unit/test_validation_schemas.py — Marshmallow schema rules, no DB.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from marshmallow import ValidationError

from backend.app.errors import ErrorCode
from backend.app.models.currency import Currency
from backend.app.models.expense import ExtraKind, SplitKind
from backend.app.schemas.expense_schema import CreateExpenseSchema
from backend.app.schemas.settlement_schema import (
    TransferBreakdownQuerySchema,
    TransferListQuerySchema,
)
from backend.app.schemas.trip_schema import AddMemberSchema, CreateTripSchema


def _equal_payload(**overrides) -> dict:
    payload = {
        "paid_by_user_id": 1,
        "description": "Dinner",
        "amount": "60.00",
        "participants": [{"user_id": 1}, {"user_id": 2}, {"user_id": 3}],
    }
    payload.update(overrides)
    return payload


# ── CreateExpenseSchema ────────────────────────────────────────────────────

def test_equal_expense_defaults():
    data = CreateExpenseSchema().load(_equal_payload())

    assert data["split_kind"] == SplitKind.EQUAL
    assert data["currency"] is None
    assert data["amount"] == Decimal("60.00")


def test_amount_with_four_decimals_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_equal_payload(amount="1.0001"))
    assert exc_info.value.messages["amount"] == [ErrorCode.INVALID_AMOUNT_PRECISION]


def test_amount_precision_checked_against_currency():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_equal_payload(amount="100.5", currency="JPY"))
    assert exc_info.value.messages["amount"] == [ErrorCode.INVALID_AMOUNT_PRECISION]


def test_three_decimal_currency_accepts_three_places():
    data = CreateExpenseSchema().load(_equal_payload(amount="1.125", currency="KWD"))
    assert data["currency"] is Currency.KWD


def test_zero_amount_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_equal_payload(amount="0"))
    assert "amount" in exc_info.value.messages


def test_unknown_currency():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_equal_payload(currency="ZZZ"))
    assert exc_info.value.messages["currency"] == [ErrorCode.INVALID_CURRENCY]


def test_unknown_split_kind():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_equal_payload(split_kind="custom"))
    assert exc_info.value.messages["split_kind"] == [ErrorCode.INVALID_SPLIT_KIND]


def test_duplicate_participant():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(
            _equal_payload(participants=[{"user_id": 1}, {"user_id": 1}])
        )
    assert exc_info.value.messages["participants"] == [ErrorCode.DUPLICATE_PARTICIPANT]


def test_equal_requires_participants():
    payload = _equal_payload()
    del payload["participants"]

    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(payload)
    assert "participants" in exc_info.value.messages


def test_weighted_requires_every_weight():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_equal_payload(
            split_kind="weighted",
            participants=[{"user_id": 1, "weight": "2"}, {"user_id": 2}],
        ))
    assert "participants" in exc_info.value.messages


def test_weighted_payload():
    data = CreateExpenseSchema().load(_equal_payload(
        split_kind="weighted",
        participants=[{"user_id": 1, "weight": "1"}, {"user_id": 2, "weight": "2.5"}],
    ))
    assert [p["weight"] for p in data["participants"]] == [Decimal("1"), Decimal("2.5")]


def test_itemized_payload():
    data = CreateExpenseSchema().load({
        "paid_by_user_id": 1,
        "description": "Lunch",
        "amount": "19.62",
        "split_kind": "itemized",
        "line_items": [
            {"name": "Pasta", "unit_price": "10.00", "assignments": [{"user_id": 1}]},
            {"name": "Salad", "unit_price": "8.00", "assignments": [{"user_id": 2}]},
        ],
        "extras": [{"kind": "tax", "mode": "percent", "value": "9"}],
    })

    assert data["split_kind"] == SplitKind.ITEMIZED
    assert data["line_items"][0]["quantity"] == Decimal("1")
    assert data["line_items"][0]["taxable"] is True
    assert data["extras"][0]["kind"] == ExtraKind.TAX


def test_itemized_rejects_participants():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load({
            "paid_by_user_id": 1,
            "description": "Lunch",
            "amount": "10.00",
            "split_kind": "itemized",
            "participants": [{"user_id": 1}],
            "line_items": [{"name": "A", "unit_price": "10.00", "assignments": [{"user_id": 1}]}],
        })
    assert "participants" in exc_info.value.messages


def test_equal_rejects_line_items():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_equal_payload(
            line_items=[{"name": "A", "unit_price": "10.00", "assignments": [{"user_id": 1}]}],
        ))
    assert "line_items" in exc_info.value.messages


def test_line_item_share_out_of_range():
    with pytest.raises(ValidationError):
        CreateExpenseSchema().load({
            "paid_by_user_id": 1,
            "description": "Lunch",
            "amount": "10.00",
            "split_kind": "itemized",
            "line_items": [{
                "name": "A",
                "unit_price": "10.00",
                "assignments": [{"user_id": 1, "share": "1.5"}],
            }],
        })


def test_blank_description_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        CreateExpenseSchema().load(_equal_payload(description="   "))
    assert "description" in exc_info.value.messages


def test_float_user_id_is_rejected():
    with pytest.raises(ValidationError):
        CreateExpenseSchema().load(_equal_payload(paid_by_user_id=1.0))


# ── Trip and query schemas ─────────────────────────────────────────────────

def test_create_trip_currency():
    data = CreateTripSchema().load({"name": "Lisbon", "base_currency": "EUR"})
    assert data["base_currency"] is Currency.EUR

    with pytest.raises(ValidationError) as exc_info:
        CreateTripSchema().load({"name": "Lisbon", "base_currency": "eur"})
    assert exc_info.value.messages["base_currency"] == [ErrorCode.INVALID_CURRENCY]


def test_add_member_requires_positive_int():
    with pytest.raises(ValidationError):
        AddMemberSchema().load({"user_id": 0})


def test_transfer_status_filter():
    assert TransferListQuerySchema().load({})["status"] is None
    assert TransferListQuerySchema().load({"status": "settled"})["status"] == "settled"
    with pytest.raises(ValidationError):
        TransferListQuerySchema().load({"status": "paid"})


def test_breakdown_query_parses_strings_and_rejects_same_user():
    data = TransferBreakdownQuerySchema().load({"from_user_id": "2", "to_user_id": "1"})
    assert data == {"from_user_id": 2, "to_user_id": 1}

    with pytest.raises(ValidationError):
        TransferBreakdownQuerySchema().load({"from_user_id": "2", "to_user_id": "2"})
