"""
routes/trips.py — Trip and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Endpoints (base url_prefix=/api/v1/trips):
  POST /trips              → 201  create trip (caller becomes first member)
  GET  /trips/:id          → 200  trip + members
  POST /trips/:id/members  → 201  add a member
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.trip_schema import AddMemberSchema, CreateTripSchema
from backend.app.services import trip_service

trips_bp = Blueprint("trips", __name__)


@trips_bp.route("", methods=["POST"])
@require_auth
def create_trip():
    """POST /trips — Create a trip in a fixed base currency."""
    data = CreateTripSchema().load(request.get_json(force=True) or {})
    result = trip_service.create_trip(
        creator_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@trips_bp.route("/<int:trip_id>", methods=["GET"])
@require_auth
def get_trip(trip_id: int):
    """GET /trips/:id — Trip details with member list. Caller must be a member."""
    result = trip_service.get_trip(
        trip_id=trip_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@trips_bp.route("/<int:trip_id>/members", methods=["POST"])
@require_auth
def add_member(trip_id: int):
    """POST /trips/:id/members — Add a registered user to the trip."""
    data = AddMemberSchema().load(request.get_json(force=True) or {})
    result = trip_service.add_member(
        trip_id=trip_id,
        caller_id=g.user_id,
        user_id=data["user_id"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201
