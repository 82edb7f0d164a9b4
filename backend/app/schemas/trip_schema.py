"""
schemas/trip_schema.py — Marshmallow schemas for profile, trip and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    currency codes.
  - services/trip_service.py: USER_NOT_FOUND, ALREADY_MEMBER, FORBIDDEN,
    TRIP_NOT_FOUND (all need the DB).

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate

from backend.app.errors import ErrorCode
from backend.app.models.currency import Currency


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class UpsertProfileSchema(Schema):
    """PUT /users/me"""

    display_name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Display name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )


class CreateTripSchema(Schema):
    """POST /trips"""

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Trip name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    base_currency = fields.Enum(
        Currency,
        required=True,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_CURRENCY},
    )


class AddMemberSchema(Schema):
    """POST /trips/:id/members"""

    user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )
