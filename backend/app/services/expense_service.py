"""
services/expense_service.py — Expense creation, listing and soft-delete.

The expense records written here are the input of the settlement engine.

Enforced here:
  FORBIDDEN (403)              — caller must be a trip member
  PAYER_NOT_MEMBER (422)       — paid_by_user_id must be a trip member
  PARTICIPANT_NOT_MEMBER (422) — every participant / item assignee must be a member
  SplitError (422)             — the expense is run through the split allocator
                                 before it is written, so malformed allocation
                                 data (bad shares, totals that do not add up)
                                 is rejected at the door

Every successful create or delete bumps trip.last_modified_at, which marks
the trip's settlement snapshot stale.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.expense import Expense, SplitKind
from backend.app.models.expense_extra import ExpenseExtra
from backend.app.models.expense_participant import ExpenseParticipant
from backend.app.models.line_item import LineItem, LineItemAssignment
from backend.app.models.membership import TripMember
from backend.app.models.trip import Trip
from backend.app.services.split_allocator import ParticipantContribution, allocate


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


def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _get_member_ids(trip_id: int, session: Session) -> set[int]:
    stmt = select(TripMember.user_id).where(TripMember.trip_id == trip_id)
    return set(session.execute(stmt).scalars().all())


def _require_member(trip_id: int, user_id: int, member_ids: set[int]) -> None:
    if user_id not in member_ids:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of trip {trip_id}.",
            403,
        )


def _validate_members(
        user_ids: list[int],
        trip_id: int,
        member_ids: set[int],
        field: str,
) -> None:
    for uid in user_ids:
        if uid not in member_ids:
            raise AppError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"User {uid} is not a member of trip {trip_id}.",
                422,
                field=field,
            )


def _build_children(expense: Expense, data: dict) -> None:
    """Attaches participant / line item / extra rows according to split_kind."""
    if expense.split_kind in (SplitKind.EQUAL, SplitKind.WEIGHTED):
        for position, p in enumerate(data.get("participants") or []):
            weight = p.get("weight")
            if expense.split_kind == SplitKind.EQUAL or weight is None:
                weight = Decimal("1")
            expense.participants.append(ExpenseParticipant(
                user_id=p["user_id"],
                weight=weight,
                position=position,
            ))
        return

    for position, item in enumerate(data.get("line_items") or []):
        line_item = LineItem(
            name=item["name"],
            quantity=item["quantity"],
            unit_price=item["unit_price"],
            taxable=item.get("taxable", True),
            service_chargeable=item.get("service_chargeable", True),
            position=position,
        )
        for a_position, assignment in enumerate(item["assignments"]):
            line_item.assignments.append(LineItemAssignment(
                user_id=assignment["user_id"],
                share=assignment.get("share"),
                position=a_position,
            ))
        expense.line_items.append(line_item)

    for position, extra in enumerate(data.get("extras") or []):
        expense.extras.append(ExpenseExtra(
            kind=extra["kind"],
            mode=extra["mode"],
            value=extra["value"],
            position=position,
        ))


def _involved_user_ids(data: dict) -> list[int]:
    user_ids = [p["user_id"] for p in data.get("participants") or []]
    for item in data.get("line_items") or []:
        user_ids.extend(a["user_id"] for a in item["assignments"])
    return user_ids


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        trip_id: int,
        caller_id: int,
        data: dict,
        session: Session,
) -> tuple[Expense, list[ParticipantContribution]]:
    """
    Records a new expense for a trip.

    Args:
        data: Validated dict from CreateExpenseSchema.

    Returns:
        (Expense, contributions) — the new row and its computed allocation.
    """
    trip = _get_trip_or_404(trip_id, session)
    member_ids = _get_member_ids(trip_id, session)
    _require_member(trip_id, caller_id, member_ids)

    paid_by_user_id: int = data["paid_by_user_id"]
    if paid_by_user_id not in member_ids:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {paid_by_user_id} is not a member of trip {trip_id}.",
            422,
            field="paid_by_user_id",
        )

    split_kind: SplitKind = data.get("split_kind", SplitKind.EQUAL)
    field = "line_items" if split_kind == SplitKind.ITEMIZED else "participants"
    _validate_members(_involved_user_ids(data), trip_id, member_ids, field)

    expense = Expense(
        trip_id=trip_id,
        paid_by_user_id=paid_by_user_id,
        description=data["description"].strip(),
        amount=data["amount"],
        currency=data.get("currency") or trip.base_currency,
        split_kind=split_kind,
    )
    _build_children(expense, data)

    # Raises SplitError (422) before anything is written.
    contributions = allocate(expense)

    session.add(expense)
    trip.last_modified_at = datetime.now(timezone.utc)
    session.flush()

    return expense, contributions


def list_expenses(
        trip_id: int,
        caller_id: int,
        session: Session,
) -> list[Expense]:
    """Active (non-deleted) expenses for a trip, oldest first."""
    _get_trip_or_404(trip_id, session)
    _require_member(trip_id, caller_id, _get_member_ids(trip_id, session))

    stmt = (
        select(Expense)
        .where(
            Expense.trip_id == trip_id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.created_at, Expense.id)
    )
    return list(session.execute(stmt).scalars().all())


def delete_expense(
        expense_id: int,
        caller_id: int,
        session: Session,
) -> None:
    """
    Soft-deletes an expense by setting deleted_at = NOW().

    Authorization: only the payer or the trip creator may delete.
    Deleting an already-deleted expense is a no-op.
    """
    expense = _get_expense_or_404(expense_id, session)
    trip = _get_trip_or_404(expense.trip_id, session)
    _require_member(trip.id, caller_id, _get_member_ids(trip.id, session))

    if caller_id not in (expense.paid_by_user_id, trip.created_by_user_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the payer or the trip creator may delete this expense.",
            403,
        )

    if not expense.is_deleted:
        now = datetime.now(timezone.utc)
        expense.deleted_at = now
        trip.last_modified_at = now
        session.flush()
