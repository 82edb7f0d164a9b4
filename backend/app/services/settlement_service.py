"""
services/settlement_service.py — Settlement recompute orchestration.

Pipeline for one trip (recompute_settlement):

  1. lock      SELECT ... FOR UPDATE on the trip row (per-trip exclusive region)
  2. fetch     active expenses + all persisted transfers
  3. allocate  split_allocator, per expense; base-currency expenses only
  4. compute   balance_service (person summaries) + netting_service (raw transfers)
  5. reconcile reconciliation_service folds in settled transfers
  6. validate  settlement_validator; any issue → SettlementInvariantError
  7. persist   settlement_repository.replace_settlement (flush only)

Validation (6) always runs before the write (7): an invalid snapshot never
reaches the database. The caller commits once after this returns, which
also releases the trip lock.

Malformed expenses:
  strict=False (default) — the expense is skipped, logged, and reported as
                           a SPLIT_ERROR_SKIPPED warning; the rest of the
                           trip still settles.
  strict=True            — the first SplitError aborts the recompute (422).
Expenses in another currency than the trip's base currency are skipped
with a CURRENCY_EXCLUDED warning.

Staleness:
  should_recompute() is True when there is no snapshot yet or
  trip.last_modified_at is not older than summary.last_computed_at.
  get_settlement() recomputes on demand when stale.

Failure handling:
  PersistenceError → recompute_with_retry() rolls back and retries with
                     linear backoff (the recompute is idempotent).
  Deadline         → RECOMPUTE_TIMEOUT (503) raised between phases, always
                     before anything is flushed.

Layer rules:
  - No Flask imports. Options arrive as plain arguments.
  - Commits are the caller's responsibility; only flush here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import (
    AppError,
    ErrorCode,
    PersistenceError,
    SettlementInvariantError,
    WarningCode,
)
from backend.app.models.currency import Currency, as_currency
from backend.app.models.membership import TripMember
from backend.app.models.settlement import SettlementSummary
from backend.app.models.transfer import Transfer
from backend.app.models.trip import Trip
from backend.app.services import settlement_repository as repository
from backend.app.services.balance_service import compute_person_summaries
from backend.app.services.netting_service import (
    compute_raw_transfers,
    compute_transfer_breakdown,
)
from backend.app.services.reconciliation_service import DEFAULT_TOLERANCE, reconcile
from backend.app.services.settlement_validator import validate_settlement
from backend.app.services.split_allocator import AllocatedExpense, allocate_expenses

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    trip: Trip
    summary: SettlementSummary
    pending: list[Transfer]
    settled: list[Transfer]
    warnings: list[dict] = field(default_factory=list)
    recomputed: bool = False


# ── Private helpers ────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _require_member(trip_id: int, user_id: int, session: Session) -> None:
    """Raises FORBIDDEN (403) if user_id is not a member of trip_id."""
    membership = session.execute(
        select(TripMember).where(
            TripMember.trip_id == trip_id,
            TripMember.user_id == user_id,
        )
    ).scalar_one_or_none()

    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of trip {trip_id}.",
            403,
        )


def _check_deadline(
        deadline: float | None,
        trip_id: int,
        clock: Callable[[], float],
) -> None:
    if deadline is not None and clock() > deadline:
        raise AppError(
            ErrorCode.RECOMPUTE_TIMEOUT,
            f"Settlement recompute for trip {trip_id} ran out of time; nothing was saved.",
            503,
        )


def _allocate_for_settlement(
        expenses: list,
        base_currency: Currency,
        strict: bool,
) -> tuple[list[AllocatedExpense], list[dict]]:
    """Allocates base-currency expenses; returns (allocated, warnings)."""
    warnings: list[dict] = []
    eligible = []
    for expense in expenses:
        if as_currency(expense.currency) != base_currency:
            warnings.append({
                "code": WarningCode.CURRENCY_EXCLUDED,
                "message": (
                    f"Expense {expense.id} is in {as_currency(expense.currency).value}, "
                    f"not the trip currency {base_currency.value}; it is not included."
                ),
                "expense_id": expense.id,
            })
            continue
        eligible.append(expense)

    allocated, failures = allocate_expenses(eligible, strict=strict)

    for err in failures:
        logger.warning(
            "Skipping expense %s in settlement: %s (%s)",
            err.expense_id, err.message, err.code,
        )
        warnings.append({
            "code": WarningCode.SPLIT_ERROR_SKIPPED,
            "message": f"Expense {err.expense_id} was left out: {err.message}",
            "expense_id": err.expense_id,
            "reason": err.code,
        })

    return allocated, warnings


# ── Staleness ──────────────────────────────────────────────────────────────

def should_recompute(trip: Trip, summary: SettlementSummary | None) -> bool:
    if summary is None:
        return True
    if summary.base_currency != trip.base_currency:
        return True
    return _as_utc(trip.last_modified_at) >= _as_utc(summary.last_computed_at)


# ── Recompute ──────────────────────────────────────────────────────────────

def recompute_settlement(
        trip_id: int,
        session: Session,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        strict: bool = False,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
) -> SettlementResult:
    """
    Recomputes and replaces the settlement snapshot of one trip.

    Raises:
        AppError(TRIP_NOT_FOUND)          trip missing
        SplitError                        strict mode, malformed expense
        SettlementInvariantError          reconciled snapshot failed validation
        PersistenceError                  database failure (retryable)
        AppError(RECOMPUTE_TIMEOUT)       deadline passed before the write
    """
    trip = repository.lock_trip(trip_id, session)
    base_currency = as_currency(trip.base_currency)
    expenses = repository.get_expenses_by_trip(trip_id, session)
    previous = repository.get_transfers(trip_id, session)
    _check_deadline(deadline, trip_id, clock)

    allocated, warnings = _allocate_for_settlement(expenses, base_currency, strict)
    summaries = compute_person_summaries(allocated, currency_filter=base_currency)
    raw_transfers = compute_raw_transfers(allocated, currency_filter=base_currency)
    snapshot = reconcile(summaries, raw_transfers, previous, tolerance)

    validation = validate_settlement(snapshot, tolerance)
    if not validation.is_valid:
        logger.error(
            "Settlement for trip %s failed validation: %s",
            trip_id, "; ".join(validation.issues),
        )
        raise SettlementInvariantError(trip_id, validation.issues)

    _check_deadline(deadline, trip_id, clock)

    settled = [t for t in previous if t.is_settled]
    summary, pending = repository.replace_settlement(
        trip_id, snapshot, base_currency, _utcnow(), session,
    )

    logger.info(
        "Recomputed settlement for trip %s: %d expenses used, %d warnings, "
        "%d pending transfers, %d settled",
        trip_id, len(allocated), len(warnings), len(pending), len(settled),
    )

    return SettlementResult(
        trip=trip,
        summary=summary,
        pending=pending,
        settled=settled,
        warnings=warnings,
        recomputed=True,
    )


def recompute_with_retry(
        trip_id: int,
        session: Session,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        strict: bool = False,
        retries: int = 0,
        backoff_seconds: float = 0.0,
        timeout_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
) -> SettlementResult:
    """
    recompute_settlement() with retries on PersistenceError only.

    The session is rolled back before each retry. Retries stop early once
    the deadline has passed.
    """
    deadline = clock() + timeout_seconds if timeout_seconds is not None else None
    attempt = 0

    while True:
        try:
            return recompute_settlement(
                trip_id,
                session,
                tolerance=tolerance,
                strict=strict,
                deadline=deadline,
                clock=clock,
            )
        except PersistenceError as err:
            session.rollback()
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(
                "Settlement recompute for trip %s failed (%s); retry %d of %d",
                trip_id, err.message, attempt, retries,
            )
            sleep(backoff_seconds * attempt)
            _check_deadline(deadline, trip_id, clock)


# ── Public service functions ───────────────────────────────────────────────

def get_settlement(
        trip_id: int,
        caller_id: int,
        session: Session,
        force: bool = False,
        **options,
) -> SettlementResult:
    """
    Returns the trip's settlement, recomputing first when stale or forced.

    `options` are passed through to recompute_with_retry().
    """
    trip = repository.get_trip_by_id(trip_id, session)
    _require_member(trip_id, caller_id, session)

    summary = repository.get_settlement_summary(trip_id, session)
    if force or should_recompute(trip, summary):
        return recompute_with_retry(trip_id, session, **options)

    # Fresh snapshot: reuse it, but still report which expenses it leaves out.
    expenses = repository.get_expenses_by_trip(trip_id, session)
    _, warnings = _allocate_for_settlement(
        expenses, as_currency(trip.base_currency), strict=False,
    )
    transfers = repository.get_transfers(trip_id, session)
    return SettlementResult(
        trip=trip,
        summary=summary,
        pending=[t for t in transfers if not t.is_settled],
        settled=[t for t in transfers if t.is_settled],
        warnings=warnings,
        recomputed=False,
    )


def list_transfers(
        trip_id: int,
        caller_id: int,
        session: Session,
        settled: bool | None = None,
) -> tuple[Trip, list[Transfer]]:
    trip = repository.get_trip_by_id(trip_id, session)
    _require_member(trip_id, caller_id, session)
    return trip, repository.get_transfers(trip_id, session, settled=settled)


def settle_transfer(
        trip_id: int,
        transfer_id: int,
        caller_id: int,
        session: Session,
) -> tuple[Trip, Transfer]:
    """
    Marks a pending transfer as paid.

    Takes the trip lock so it cannot interleave with a recompute. Bumps
    trip.last_modified_at so the next read recomputes and folds the
    payment in. Settling twice is a no-op.
    """
    trip = repository.lock_trip(trip_id, session)
    _require_member(trip_id, caller_id, session)

    now = _utcnow()
    transfer, changed = repository.mark_transfer_settled(trip_id, transfer_id, now, session)
    if changed:
        trip.last_modified_at = now
        session.flush()
        logger.info(
            "Transfer %s (%s -> %s, %s) in trip %s marked settled by user %s",
            transfer.id, transfer.from_user_id, transfer.to_user_id,
            transfer.amount_base, trip_id, caller_id,
        )
    return trip, transfer


def get_transfer_breakdown(
        trip_id: int,
        caller_id: int,
        from_user_id: int,
        to_user_id: int,
        session: Session,
) -> tuple[dict, list[dict]]:
    """Per-expense explanation of what from_user_id owes to_user_id."""
    trip = repository.get_trip_by_id(trip_id, session)
    _require_member(trip_id, caller_id, session)

    base_currency = as_currency(trip.base_currency)
    expenses = repository.get_expenses_by_trip(trip_id, session)
    allocated, warnings = _allocate_for_settlement(expenses, base_currency, strict=False)
    breakdown = compute_transfer_breakdown(
        allocated, from_user_id, to_user_id, currency_filter=base_currency,
    )
    breakdown["currency"] = base_currency.value
    return breakdown, warnings


def options_from_config(config) -> dict:
    """Maps SETTLEMENT_* config keys onto recompute_with_retry() arguments."""
    timeout = config.get("SETTLEMENT_RECOMPUTE_TIMEOUT_SECONDS")
    return {
        "tolerance": Decimal(str(config.get("SETTLEMENT_TOLERANCE", "0.01"))),
        "strict": bool(config.get("SETTLEMENT_STRICT_SPLITS", False)),
        "retries": int(config.get("SETTLEMENT_RECOMPUTE_RETRIES", 0)),
        "backoff_seconds": float(config.get("SETTLEMENT_RETRY_BACKOFF_SECONDS", 0.0)),
        "timeout_seconds": float(timeout) if timeout is not None else None,
    }
