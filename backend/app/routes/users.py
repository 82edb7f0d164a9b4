"""
routes/users.py — Profile of the authenticated user.

The identity provider owns accounts; this endpoint only records the
caller's display name under their token subject so they can join trips.

Endpoints (base url_prefix=/api/v1/users):
  PUT /users/me → 200  create or rename the caller's profile
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.trip_schema import UpsertProfileSchema
from backend.app.services import trip_service

users_bp = Blueprint("users", __name__)


@users_bp.route("/me", methods=["PUT"])
@require_auth
def upsert_me():
    data = UpsertProfileSchema().load(request.get_json(force=True) or {})
    user = trip_service.upsert_profile(
        user_id=g.user_id,
        display_name=data["display_name"].strip(),
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"id": user.id, "display_name": user.display_name},
        "warnings": [],
    }), 200
