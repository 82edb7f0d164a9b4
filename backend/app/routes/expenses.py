"""
routes/expenses.py — Expense route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Registered at /api/v1 (not /api/v1/expenses) because it owns both the
trip-scoped paths and /expenses/:id.

Endpoints:
  POST   /trips/:id/expenses  → 201  record an expense (allocation included in response)
  GET    /trips/:id/expenses  → 200  active expenses
  DELETE /expenses/:id        → 200  soft-delete
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.currency import as_currency
from backend.app.models.expense import Expense, SplitKind
from backend.app.schemas.expense_schema import CreateExpenseSchema
from backend.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────

def _serialize_expense(expense: Expense, allocation=None) -> dict:
    currency = as_currency(expense.currency)
    payload = {
        "id": expense.id,
        "trip_id": expense.trip_id,
        "paid_by_user_id": expense.paid_by_user_id,
        "description": expense.description,
        "amount": str(currency.quantize(expense.amount)),
        "currency": currency.value,
        "split_kind": expense.split_kind.value,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
    }

    if expense.split_kind == SplitKind.ITEMIZED:
        payload["line_items"] = [
            {
                "name": item.name,
                "quantity": str(item.quantity.normalize()),
                "unit_price": str(currency.quantize(item.unit_price)),
                "taxable": item.taxable,
                "service_chargeable": item.service_chargeable,
                "assignments": [
                    {
                        "user_id": a.user_id,
                        "share": str(a.share.normalize()) if a.share is not None else None,
                    }
                    for a in item.assignments
                ],
            }
            for item in expense.line_items
        ]
        payload["extras"] = [
            {"kind": e.kind.value, "mode": e.mode.value, "value": str(e.value.normalize())}
            for e in expense.extras
        ]
    else:
        payload["participants"] = [
            {"user_id": p.user_id, "weight": str(p.weight.normalize())}
            for p in expense.participants
        ]

    if allocation is not None:
        payload["allocation"] = [
            {"user_id": c.user_id, "amount": str(c.amount)}
            for c in allocation
        ]
    return payload


# ── Route handlers ─────────────────────────────────────────────────────────

@expenses_bp.route("/trips/<int:trip_id>/expenses", methods=["POST"])
@require_auth
def create_expense(trip_id: int):
    """POST /trips/:id/expenses — Record an expense. Marks the settlement stale."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense, allocation = expense_service.create_expense(
        trip_id=trip_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense, allocation), "warnings": []}), 201


@expenses_bp.route("/trips/<int:trip_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(trip_id: int):
    """GET /trips/:id/expenses — Active expenses, oldest first."""
    expenses = expense_service.list_expenses(
        trip_id=trip_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Soft-delete. Marks the settlement stale."""
    expense_service.delete_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": {"id": expense_id, "deleted": True}, "warnings": []}), 200
