"""
services/trip_service.py — Users, trips and trip membership.

Identity comes from the external provider; upsert_profile() mirrors the
token's subject into the users table so trips and expenses can reference it.

Enforced here:
  USER_NOT_FOUND (404)  — a user must have a profile before joining a trip
  FORBIDDEN (403)       — only members may read a trip or add members
  ALREADY_MEMBER (409)  — a user joins a trip at most once

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.membership import TripMember
from backend.app.models.trip import Trip
from backend.app.models.user import User


# ── Private helpers ────────────────────────────────────────────────────────

def _get_trip_or_404(trip_id: int, session: Session) -> Trip:
    trip = session.get(Trip, trip_id)
    if trip is None:
        raise AppError(
            ErrorCode.TRIP_NOT_FOUND,
            f"Trip {trip_id} does not exist.",
            404,
        )
    return trip


def _get_user_or_404(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
        )
    return user


def _is_member(trip_id: int, user_id: int, session: Session) -> bool:
    return session.execute(
        select(TripMember.id).where(
            TripMember.trip_id == trip_id,
            TripMember.user_id == user_id,
        )
    ).scalar_one_or_none() is not None


def _require_member(trip_id: int, user_id: int, session: Session) -> None:
    if not _is_member(trip_id, user_id, session):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of trip {trip_id}.",
            403,
        )


def _get_members(trip_id: int, session: Session) -> list[User]:
    stmt = (
        select(User)
        .join(TripMember, User.id == TripMember.user_id)
        .where(TripMember.trip_id == trip_id)
        .order_by(TripMember.id)
    )
    return list(session.execute(stmt).scalars().all())


def _build_trip_dict(trip: Trip, members: list[User]) -> dict:
    return {
        "id": trip.id,
        "name": trip.name,
        "base_currency": trip.base_currency.value,
        "created_by_user_id": trip.created_by_user_id,
        "members": [
            {"id": m.id, "display_name": m.display_name}
            for m in members
        ],
    }


# ── Public service functions ───────────────────────────────────────────────

def upsert_profile(user_id: int, display_name: str, session: Session) -> User:
    """Creates or renames the caller's user row."""
    user = session.get(User, user_id)
    if user is None:
        user = User(id=user_id, display_name=display_name)
        session.add(user)
    else:
        user.display_name = display_name
    session.flush()
    return user


def create_trip(creator_id: int, data: dict, session: Session) -> dict:
    """Creates a trip. The creator becomes its first member."""
    _get_user_or_404(creator_id, session)

    trip = Trip(
        name=data["name"].strip(),
        base_currency=data["base_currency"],
        created_by_user_id=creator_id,
    )
    session.add(trip)
    session.flush()

    session.add(TripMember(trip_id=trip.id, user_id=creator_id))
    session.flush()

    return _build_trip_dict(trip, _get_members(trip.id, session))


def get_trip(trip_id: int, caller_id: int, session: Session) -> dict:
    trip = _get_trip_or_404(trip_id, session)
    _require_member(trip_id, caller_id, session)
    return _build_trip_dict(trip, _get_members(trip_id, session))


def add_member(trip_id: int, caller_id: int, user_id: int, session: Session) -> dict:
    """Any member may add another registered user to the trip."""
    trip = _get_trip_or_404(trip_id, session)
    _require_member(trip_id, caller_id, session)
    _get_user_or_404(user_id, session)

    if _is_member(trip_id, user_id, session):
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {user_id} is already a member of trip {trip_id}.",
            409,
            field="user_id",
        )

    session.add(TripMember(trip_id=trip_id, user_id=user_id))
    session.flush()
    return _build_trip_dict(trip, _get_members(trip_id, session))
