"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file (request shape, 400):
      - Field types, lengths, enum values, decimal precision
      - participants required for equal/weighted, line_items for itemized,
        and never both
      - weights required for every participant of a weighted expense
      - DUPLICATE_PARTICIPANT — same user twice in participants or in one
        line item's assignments
      - amount precision against the expense currency when one is given
  - services/expense_service.py (needs the DB):
      - PAYER_NOT_MEMBER / PARTICIPANT_NOT_MEMBER (422)
      - FORBIDDEN (403)
  - services/split_allocator.py (needs Decimal arithmetic, 422):
      - item shares summing to 1, itemized totals matching the amount

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from backend.app.errors import ErrorCode
from backend.app.models.currency import Currency
from backend.app.models.expense import ExtraKind, ExtraMode, SplitKind


# ── Shared validators ──────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Strictly positive, at most 3 decimal places (the widest ISO 4217
    precision). The per-currency limit is checked at schema level once the
    currency is known. Input is REJECTED, never rounded.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    if value.as_tuple().exponent < -3:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_negative(value: Decimal) -> None:
    if value < Decimal("0"):
        raise ValidationError("Value must not be negative.")


def _validate_positive(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError("Value must be greater than zero.")


def _validate_share(value: Decimal) -> None:
    if value <= Decimal("0") or value > Decimal("1"):
        raise ValidationError("share must be greater than 0 and at most 1.")


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _user_id_field(**kwargs) -> fields.Int:
    return fields.Int(
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
        **kwargs,
    )


# ── Sub-schemas ────────────────────────────────────────────────────────────

class ParticipantInputSchema(Schema):
    user_id = _user_id_field(required=True)

    # Only read for weighted expenses; ignored for equal ones.
    weight = fields.Decimal(
        load_default=None,
        validate=_validate_positive,
    )


class AssignmentInputSchema(Schema):
    user_id = _user_id_field(required=True)

    # Omit on every assignment of an item to split it evenly.
    share = fields.Decimal(
        load_default=None,
        validate=_validate_share,
    )


class LineItemInputSchema(Schema):
    name = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, max=255),
            _validate_non_empty_after_trim,
        ],
    )
    quantity = fields.Decimal(load_default=Decimal("1"), validate=_validate_positive)
    unit_price = fields.Decimal(required=True, validate=_validate_non_negative)
    taxable = fields.Bool(load_default=True)
    service_chargeable = fields.Bool(load_default=True)
    assignments = fields.List(
        fields.Nested(AssignmentInputSchema),
        required=True,
        validate=validate.Length(min=1, error="Each line item needs at least one assignee."),
    )

    @validates_schema
    def validate_unique_assignees(self, data: dict, **kwargs) -> None:
        user_ids = [a["user_id"] for a in data.get("assignments") or []]
        if len(user_ids) != len(set(user_ids)):
            raise ValidationError({"assignments": [ErrorCode.DUPLICATE_PARTICIPANT]})


class ExtraInputSchema(Schema):
    kind = fields.Enum(ExtraKind, required=True, by_value=True)
    mode = fields.Enum(ExtraMode, required=True, by_value=True)
    value = fields.Decimal(required=True, validate=_validate_non_negative)


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /trips/:id/expenses

    Split kind behaviour:
      equal    → participants required; weights ignored.
      weighted → participants required, each with a positive weight.
      itemized → line_items required (extras optional); amount must equal
                 Σ item totals + extras − discounts (checked by the allocator).

    currency defaults to the trip's base currency (filled in by the service).
    """

    paid_by_user_id = _user_id_field(required=True)

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    currency = fields.Enum(
        Currency,
        load_default=None,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CURRENCY},
    )

    split_kind = fields.Enum(
        SplitKind,
        load_default=SplitKind.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_KIND},
    )

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        load_default=None,
    )

    line_items = fields.List(
        fields.Nested(LineItemInputSchema),
        load_default=None,
    )

    extras = fields.List(
        fields.Nested(ExtraInputSchema),
        load_default=None,
    )

    @validates_schema
    def validate_split_shape(self, data: dict, **kwargs) -> None:
        split_kind = data.get("split_kind", SplitKind.EQUAL)
        participants = data.get("participants")
        line_items = data.get("line_items")

        if split_kind == SplitKind.ITEMIZED:
            if not line_items:
                raise ValidationError(
                    {"line_items": ["line_items is required when split_kind is 'itemized'."]}
                )
            if participants is not None:
                raise ValidationError(
                    {"participants": ["Do not send participants for an itemized expense."]}
                )
        else:
            if not participants:
                raise ValidationError(
                    {"participants": [f"participants is required when split_kind is '{split_kind.value}'."]}
                )
            if line_items is not None or data.get("extras") is not None:
                raise ValidationError(
                    {"line_items": ["line_items and extras are only allowed for itemized expenses."]}
                )

            user_ids = [p["user_id"] for p in participants]
            if len(user_ids) != len(set(user_ids)):
                raise ValidationError({"participants": [ErrorCode.DUPLICATE_PARTICIPANT]})

            if split_kind == SplitKind.WEIGHTED and any(p.get("weight") is None for p in participants):
                raise ValidationError(
                    {"participants": ["Every participant of a weighted expense needs a weight."]}
                )

    @validates_schema
    def validate_currency_precision(self, data: dict, **kwargs) -> None:
        currency = data.get("currency")
        amount = data.get("amount")
        if currency is not None and amount is not None and not currency.has_valid_precision(amount):
            raise ValidationError({"amount": [ErrorCode.INVALID_AMOUNT_PRECISION]})
