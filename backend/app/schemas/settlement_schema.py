"""
schemas/settlement_schema.py — Query-string schemas for settlement endpoints.

Query values arrive as strings, so integer fields are not strict here.
TRIP_NOT_FOUND / TRANSFER_NOT_FOUND / FORBIDDEN are service checks.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema


class TransferListQuerySchema(Schema):
    """GET /trips/:id/transfers?status=pending|settled"""

    status = fields.Str(
        load_default=None,
        validate=validate.OneOf(
            ["pending", "settled"],
            error="status must be 'pending' or 'settled'.",
        ),
    )


class TransferBreakdownQuerySchema(Schema):
    """GET /trips/:id/transfers/breakdown?from_user_id=&to_user_id="""

    from_user_id = fields.Int(
        required=True,
        validate=validate.Range(min=1, error="from_user_id must be a positive integer."),
    )
    to_user_id = fields.Int(
        required=True,
        validate=validate.Range(min=1, error="to_user_id must be a positive integer."),
    )

    @validates_schema
    def validate_distinct_users(self, data: dict, **kwargs) -> None:
        if data.get("from_user_id") == data.get("to_user_id"):
            raise ValidationError(
                {"to_user_id": ["to_user_id must differ from from_user_id."]}
            )
