"""
middleware/auth_middleware.py — Bearer-token authentication decorator.

Tokens are issued by an external identity provider and signed with a shared
secret (HS256 by default). This service never issues tokens itself.

The @require_auth decorator:
  1. Reads "Authorization: Bearer <token>"
  2. Verifies signature and expiry, plus `iss` / `aud` when configured
  3. Reads the integer user id from the `sub` claim
  4. Sets flask.g.user_id for the rest of the request

Responsibility boundary:
  - Authentication only (401). Trip membership (403) is decided in services.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, bad signature/claims, bad `sub`
  TOKEN_EXPIRED  (401) — `exp` is in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces bearer-token authentication.

    Usage:
        @trips_bp.route("/<int:trip_id>")
        @require_auth
        def get_trip(trip_id):
            caller = g.user_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _decode_options() -> dict:
    """jwt.decode keyword arguments derived from app config."""
    kwargs: dict = {
        "algorithms": [current_app.config.get("JWT_ALGORITHM", "HS256")],
        "options": {"require": ["exp", "sub"]},
    }
    issuer = current_app.config.get("JWT_ISSUER")
    audience = current_app.config.get("JWT_AUDIENCE")
    if issuer:
        kwargs["issuer"] = issuer
    if audience:
        kwargs["audience"] = audience
    else:
        kwargs["options"]["verify_aud"] = False
    return kwargs


def _authenticate_request() -> None:
    """
    Validates the bearer token and sets flask.g.user_id.

    Raises AppError on any failure; the global error handler renders it.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    try:
        payload = jwt.decode(
            parts[1],
            current_app.config["JWT_SECRET_KEY"],
            **_decode_options(),
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Obtain a new one from your identity provider.",
            401,
        )
    except jwt.InvalidTokenError:
        # Bad signature, malformed token, wrong issuer/audience, missing claims.
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim in the access token is not a valid user ID.",
            401,
        )
    if user_id < 1:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim in the access token is not a valid user ID.",
            401,
        )

    g.user_id = user_id
