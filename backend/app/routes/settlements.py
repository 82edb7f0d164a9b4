"""
routes/settlements.py — Settlement and transfer route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Every handler that may recompute commits once at the end; that single
commit writes the whole snapshot and releases the trip lock.

Endpoints (base url_prefix=/api/v1/trips):
  GET  /trips/:id/settlement                     → 200  snapshot (recomputed when stale)
  POST /trips/:id/settlement/recompute           → 200  force a recompute
  GET  /trips/:id/transfers[?status=]            → 200  pending and/or settled transfers
  POST /trips/:id/transfers/:transfer_id/settle  → 200  mark a transfer as paid
  GET  /trips/:id/transfers/breakdown            → 200  per-expense explanation of a pair
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.currency import Currency, as_currency
from backend.app.models.transfer import Transfer
from backend.app.schemas.settlement_schema import (
    TransferBreakdownQuerySchema,
    TransferListQuerySchema,
)
from backend.app.services import settlement_service
from backend.app.services.settlement_service import SettlementResult

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helpers ──────────────────────────────────────────────────

def _money(amount, currency: Currency) -> str:
    """Decimal → string at the currency's precision (never a JS number)."""
    return str(currency.quantize(amount))


def _serialize_transfer(t: Transfer, currency: Currency) -> dict:
    return {
        "id": t.id,
        "trip_id": t.trip_id,
        "from_user_id": t.from_user_id,
        "to_user_id": t.to_user_id,
        "amount": _money(t.amount_base, currency),
        "computed_at": t.computed_at.isoformat(),
        "is_settled": t.is_settled,
        "settled_at": t.settled_at.isoformat() if t.settled_at else None,
    }


def _serialize_settlement(result: SettlementResult) -> dict:
    currency = as_currency(result.summary.base_currency)
    return {
        "trip_id": result.trip.id,
        "base_currency": currency.value,
        "last_computed_at": result.summary.last_computed_at.isoformat(),
        "recomputed": result.recomputed,
        "person_summaries": [
            {
                "user_id": p.user_id,
                "total_paid": _money(p.total_paid_base, currency),
                "total_owed": _money(p.total_owed_base, currency),
                "net": _money(p.net_base, currency),
            }
            for p in result.summary.person_summaries
        ],
        "transfers": [_serialize_transfer(t, currency) for t in result.pending],
        "settled_transfers": [_serialize_transfer(t, currency) for t in result.settled],
    }


# ── Route handlers ─────────────────────────────────────────────────────────

@settlements_bp.route("/<int:trip_id>/settlement", methods=["GET"])
@require_auth
def get_settlement(trip_id: int):
    """GET /trips/:id/settlement — recomputes first if expenses or payments changed."""
    result = settlement_service.get_settlement(
        trip_id=trip_id,
        caller_id=g.user_id,
        session=db.session,
        **settlement_service.options_from_config(current_app.config),
    )
    db.session.commit()
    return jsonify({"data": _serialize_settlement(result), "warnings": result.warnings}), 200


@settlements_bp.route("/<int:trip_id>/settlement/recompute", methods=["POST"])
@require_auth
def recompute_settlement(trip_id: int):
    """POST /trips/:id/settlement/recompute — recompute even if the snapshot is fresh."""
    result = settlement_service.get_settlement(
        trip_id=trip_id,
        caller_id=g.user_id,
        session=db.session,
        force=True,
        **settlement_service.options_from_config(current_app.config),
    )
    db.session.commit()
    return jsonify({"data": _serialize_settlement(result), "warnings": result.warnings}), 200


@settlements_bp.route("/<int:trip_id>/transfers", methods=["GET"])
@require_auth
def list_transfers(trip_id: int):
    """GET /trips/:id/transfers — as last computed; does not trigger a recompute."""
    query = TransferListQuerySchema().load(request.args)
    settled = None if query["status"] is None else query["status"] == "settled"

    trip, transfers = settlement_service.list_transfers(
        trip_id=trip_id,
        caller_id=g.user_id,
        session=db.session,
        settled=settled,
    )
    currency = as_currency(trip.base_currency)
    return jsonify({
        "data": [_serialize_transfer(t, currency) for t in transfers],
        "warnings": [],
    }), 200


@settlements_bp.route("/<int:trip_id>/transfers/<int:transfer_id>/settle", methods=["POST"])
@require_auth
def settle_transfer(trip_id: int, transfer_id: int):
    """
    POST /trips/:id/transfers/:transfer_id/settle

    Idempotent: settling a transfer twice returns the same settled row.
    """
    trip, transfer = settlement_service.settle_transfer(
        trip_id=trip_id,
        transfer_id=transfer_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": _serialize_transfer(transfer, as_currency(trip.base_currency)),
        "warnings": [],
    }), 200


@settlements_bp.route("/<int:trip_id>/transfers/breakdown", methods=["GET"])
@require_auth
def transfer_breakdown(trip_id: int):
    """GET /trips/:id/transfers/breakdown?from_user_id=&to_user_id="""
    query = TransferBreakdownQuerySchema().load(request.args)
    breakdown, warnings = settlement_service.get_transfer_breakdown(
        trip_id=trip_id,
        caller_id=g.user_id,
        from_user_id=query["from_user_id"],
        to_user_id=query["to_user_id"],
        session=db.session,
    )

    currency = Currency(breakdown["currency"])
    breakdown["net_amount"] = _money(breakdown["net_amount"], currency)
    for line in breakdown["expenses"]:
        for key in ("amount", "from_user_share", "to_user_share", "contribution"):
            line[key] = _money(line[key], currency)

    return jsonify({"data": breakdown, "warnings": warnings}), 200
