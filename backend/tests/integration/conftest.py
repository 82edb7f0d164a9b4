"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session with create_app("testing").
    TestingConfig uses in-memory SQLite unless TEST_DATABASE_URL points at
    a real PostgreSQL database.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Users come from an external identity provider, so tests mint their own
    HS256 access tokens with the testing JWT secret.

Helper functions (not fixtures) are provided for common operations:
  - token_for(app, user_id)      → signed access token
  - auth_headers(token)          → {"Authorization": "Bearer <token>"}
  - make_user(client, app, ...)  → {"id", "token"} after PUT /users/me
  - make_trip(client, token, ...) → trip dict
  - add_member(...)              → HTTP response
  - make_expense(...)            → HTTP response
  - get_settlement(...)          → HTTP response
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import delete

from backend.app import create_app
from backend.app.extensions import db as _db
from backend.app.models.expense import Expense
from backend.app.models.expense_extra import ExpenseExtra
from backend.app.models.expense_participant import ExpenseParticipant
from backend.app.models.line_item import LineItem, LineItemAssignment
from backend.app.models.membership import TripMember
from backend.app.models.settlement import PersonSummaryEntry, SettlementSummary
from backend.app.models.transfer import Transfer
from backend.app.models.trip import Trip
from backend.app.models.user import User


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

# Children before parents.
_DELETE_ORDER = (
    Transfer,
    PersonSummaryEntry,
    SettlementSummary,
    LineItemAssignment,
    LineItem,
    ExpenseExtra,
    ExpenseParticipant,
    Expense,
    TripMember,
    Trip,
    User,
)


@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        for model in _DELETE_ORDER:
            _db.session.execute(delete(model))
        _db.session.commit()


@pytest.fixture
def client(app):
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def token_for(app, user_id: int, expires_in: timedelta = timedelta(minutes=15)) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": str(user_id), "iat": now, "exp": now + expires_in},
        app.config["JWT_SECRET_KEY"],
        algorithm=app.config["JWT_ALGORITHM"],
    )


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def make_user(client, app, user_id: int, display_name: str | None = None) -> dict:
    """Registers a profile for user_id and returns {"id", "token"}."""
    token = token_for(app, user_id)
    resp = client.put(
        "/api/v1/users/me",
        json={"display_name": display_name or f"user{user_id}"},
        headers=auth_headers(token),
    )
    assert resp.status_code == 200, f"make_user failed: {resp.get_json()}"
    return {"id": user_id, "token": token}


def make_trip(client, token: str, name: str = "Test Trip", base_currency: str = "USD") -> dict:
    resp = client.post(
        "/api/v1/trips",
        json={"name": name, "base_currency": base_currency},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_trip failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, token: str, trip_id: int, user_id: int):
    return client.post(
        f"/api/v1/trips/{trip_id}/members",
        json={"user_id": user_id},
        headers=auth_headers(token),
    )


def make_expense(
    client,
    token: str,
    trip_id: int,
    paid_by_user_id: int,
    amount: str,
    participants: list[int] | list[dict] | None = None,
    description: str = "Test Expense",
    split_kind: str = "equal",
    **extra,
):
    """
    Creates an expense and returns the HTTP response.

    participants may be plain user ids (equal split) or dicts with weights.
    Itemized payloads pass line_items= / extras= through **extra.
    """
    payload: dict = {
        "paid_by_user_id": paid_by_user_id,
        "description": description,
        "amount": amount,
        "split_kind": split_kind,
    }
    if participants is not None:
        payload["participants"] = [
            p if isinstance(p, dict) else {"user_id": p} for p in participants
        ]
    payload.update(extra)

    return client.post(
        f"/api/v1/trips/{trip_id}/expenses",
        json=payload,
        headers=auth_headers(token),
    )


def get_settlement(client, token: str, trip_id: int):
    return client.get(
        f"/api/v1/trips/{trip_id}/settlement",
        headers=auth_headers(token),
    )
