"""
services/settlement_repository.py — Persistence collaborator for the settlement engine.

The only module that reads expenses for a computation and the only module
that writes the settlement snapshot (SettlementSummary, PersonSummaryEntry,
Transfer rows).

Operations:
  get_trip_by_id(trip_id, lock=...)    → Trip, TRIP_NOT_FOUND (404) if absent
  lock_trip(trip_id)                   → same, with the trip row locked
  get_expenses_by_trip(trip_id)        → active expenses, children eager-loaded
  get_settlement_summary(trip_id)      → SettlementSummary | None
  get_transfers(trip_id, settled=...)  → Transfer rows
  replace_settlement(...)              → swaps the snapshot
  mark_transfer_settled(...)           → flips one pending transfer to settled

Transaction rules:
  - Flush only. The caller (route or CLI command) commits once, so
    "delete pending + write summary + write transfers" lands together or
    not at all.
  - lock=True issues SELECT ... FOR UPDATE on the trip row. That lock is
    the per-trip exclusive region; it is held until the caller's commit or
    rollback. (SQLite ignores FOR UPDATE; it serializes writers anyway.)
  - SQLAlchemyError is re-raised as PersistenceError (503, retryable).
    A failed read is never reported as "no settlement".
"""

from __future__ import annotations

import contextlib
from datetime import datetime
from typing import Iterator

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from backend.app.errors import AppError, ErrorCode, PersistenceError
from backend.app.models.currency import Currency
from backend.app.models.expense import Expense
from backend.app.models.line_item import LineItem
from backend.app.models.settlement import PersonSummaryEntry, SettlementSummary
from backend.app.models.transfer import Transfer
from backend.app.models.trip import Trip
from backend.app.services.reconciliation_service import ReconciledSettlement


@contextlib.contextmanager
def _persistence_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Could not {action}.", original=exc) from exc


# ── Reads ──────────────────────────────────────────────────────────────────

def get_trip_by_id(trip_id: int, session: Session, lock: bool = False) -> Trip:
    stmt = select(Trip).where(Trip.id == trip_id)
    if lock:
        stmt = stmt.with_for_update()

    with _persistence_errors(f"load trip {trip_id}"):
        trip = session.execute(stmt).scalar_one_or_none()

    if trip is None:
        raise AppError(
            ErrorCode.TRIP_NOT_FOUND,
            f"Trip {trip_id} does not exist.",
            404,
        )
    return trip


def lock_trip(trip_id: int, session: Session) -> Trip:
    """
    SELECT ... FOR UPDATE on the trip row.

    Held until the surrounding transaction commits or rolls back, so at most
    one recompute or settle runs per trip at a time.
    """
    return get_trip_by_id(trip_id, session, lock=True)


def list_trip_ids(session: Session) -> list[int]:
    with _persistence_errors("list trips"):
        return list(session.execute(select(Trip.id).order_by(Trip.id)).scalars().all())


def get_expenses_by_trip(trip_id: int, session: Session) -> list[Expense]:
    """Active (deleted_at IS NULL) expenses in creation order."""
    stmt = (
        select(Expense)
        .where(
            Expense.trip_id == trip_id,
            Expense.deleted_at.is_(None),
        )
        .options(
            selectinload(Expense.participants),
            selectinload(Expense.line_items).selectinload(LineItem.assignments),
            selectinload(Expense.extras),
        )
        .order_by(Expense.id)
    )
    with _persistence_errors(f"load expenses for trip {trip_id}"):
        return list(session.execute(stmt).scalars().all())


def get_settlement_summary(trip_id: int, session: Session) -> SettlementSummary | None:
    stmt = (
        select(SettlementSummary)
        .where(SettlementSummary.trip_id == trip_id)
        .options(selectinload(SettlementSummary.person_summaries))
    )
    with _persistence_errors(f"load settlement for trip {trip_id}"):
        return session.execute(stmt).scalar_one_or_none()


def get_transfers(
        trip_id: int,
        session: Session,
        settled: bool | None = None,
) -> list[Transfer]:
    """All transfers of a trip; `settled` narrows to one status."""
    stmt = select(Transfer).where(Transfer.trip_id == trip_id)
    if settled is not None:
        stmt = stmt.where(Transfer.is_settled.is_(settled))
    stmt = stmt.order_by(Transfer.from_user_id, Transfer.to_user_id, Transfer.id)

    with _persistence_errors(f"load transfers for trip {trip_id}"):
        return list(session.execute(stmt).scalars().all())


# ── Writes ─────────────────────────────────────────────────────────────────

def replace_settlement(
        trip_id: int,
        snapshot: ReconciledSettlement,
        base_currency: Currency,
        computed_at: datetime,
        session: Session,
) -> tuple[SettlementSummary, list[Transfer]]:
    """
    Replaces the trip's snapshot with `snapshot`.

    Pending transfers and person summaries are deleted and rewritten.
    Settled transfers are history and are left untouched.
    """
    with _persistence_errors(f"save settlement for trip {trip_id}"):
        session.execute(
            delete(Transfer).where(
                Transfer.trip_id == trip_id,
                Transfer.is_settled.is_(False),
            )
        )
        session.execute(
            delete(PersonSummaryEntry).where(PersonSummaryEntry.trip_id == trip_id)
        )

        summary = session.get(SettlementSummary, trip_id)
        if summary is None:
            summary = SettlementSummary(trip_id=trip_id)
            session.add(summary)
        else:
            # The bulk delete above bypassed the relationship collection.
            session.expire(summary, ["person_summaries"])
        summary.base_currency = base_currency
        summary.last_computed_at = computed_at
        session.flush()

        for person in snapshot.person_summaries.values():
            session.add(PersonSummaryEntry(
                trip_id=trip_id,
                user_id=person.user_id,
                total_paid_base=base_currency.quantize(person.total_paid_base),
                total_owed_base=base_currency.quantize(person.total_owed_base),
                net_base=base_currency.quantize(person.net_base),
            ))

        transfers = [
            Transfer(
                trip_id=trip_id,
                from_user_id=t.from_user_id,
                to_user_id=t.to_user_id,
                amount_base=base_currency.quantize(t.amount),
                computed_at=computed_at,
                is_settled=False,
            )
            for t in snapshot.transfers
        ]
        session.add_all(transfers)
        session.flush()
        session.refresh(summary, ["person_summaries"])

    return summary, transfers


def mark_transfer_settled(
        trip_id: int,
        transfer_id: int,
        settled_at: datetime,
        session: Session,
) -> tuple[Transfer, bool]:
    """
    Marks a pending transfer as settled.

    Returns (transfer, changed). Settling an already-settled transfer is a
    no-op and returns changed=False. TRANSFER_NOT_FOUND (404) if the
    transfer does not exist or belongs to another trip.
    """
    with _persistence_errors(f"settle transfer {transfer_id}"):
        transfer = session.get(Transfer, transfer_id)
        if transfer is None or transfer.trip_id != trip_id:
            raise AppError(
                ErrorCode.TRANSFER_NOT_FOUND,
                f"Transfer {transfer_id} does not exist in trip {trip_id}.",
                404,
            )
        if transfer.is_settled:
            return transfer, False

        transfer.is_settled = True
        transfer.settled_at = settled_at
        session.flush()

    return transfer, True
