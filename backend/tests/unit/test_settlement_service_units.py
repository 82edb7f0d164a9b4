"""
tests/unit/test_settlement_service_units.py — settlement_service orchestration with
the repository patched out.

What this file proves:
  - Validation runs before the snapshot is written; a failing snapshot is
    never handed to replace_settlement
  - A malformed expense is skipped with a warning (or aborts in strict mode)
  - Expenses outside the base currency are excluded with a warning
  - PersistenceError is retried with rollback and backoff; other errors are not
  - The deadline aborts the recompute before anything is written
  - Staleness rules of should_recompute
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from backend.app.errors import (
    AppError,
    ErrorCode,
    PersistenceError,
    SettlementInvariantError,
    SplitError,
    WarningCode,
)
from backend.app.models.currency import Currency
from backend.app.models.expense import SplitKind
from backend.app.services import settlement_service
from backend.app.services import settlement_repository as repository
from backend.app.services.settlement_validator import ValidationResult

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _expense(expense_id, payer, amount, user_ids, currency=Currency.USD):
    return SimpleNamespace(
        id=expense_id,
        paid_by_user_id=payer,
        description=f"Expense {expense_id}",
        amount=Decimal(amount),
        currency=currency,
        split_kind=SplitKind.EQUAL,
        participants=[
            SimpleNamespace(user_id=uid, weight=Decimal("1"), position=i)
            for i, uid in enumerate(user_ids)
        ],
        line_items=[],
        extras=[],
    )


def _trip():
    return SimpleNamespace(id=1, base_currency=Currency.USD, last_modified_at=NOW)


@pytest.fixture
def repo(monkeypatch):
    """Patches every repository call the service makes; returns the mocks."""
    mocks = SimpleNamespace(
        trip=_trip(),
        expenses=[
            _expense(1, 1, "60.00", [1, 2, 3]),
            _expense(2, 2, "30.00", [2, 3]),
        ],
        previous=[],
        replace=MagicMock(name="replace_settlement"),
    )
    mocks.replace.side_effect = lambda trip_id, snapshot, *args: (
        SimpleNamespace(trip_id=trip_id, snapshot=snapshot),
        list(snapshot.transfers),
    )

    monkeypatch.setattr(repository, "get_trip_by_id", lambda trip_id, session, lock=False: mocks.trip)
    monkeypatch.setattr(repository, "get_expenses_by_trip", lambda trip_id, session: mocks.expenses)
    monkeypatch.setattr(
        repository, "get_transfers", lambda trip_id, session, settled=None: mocks.previous,
    )
    monkeypatch.setattr(repository, "replace_settlement", mocks.replace)
    return mocks


# ── Pipeline ───────────────────────────────────────────────────────────────

def test_recompute_writes_the_validated_snapshot(repo):
    result = settlement_service.recompute_settlement(1, MagicMock())

    snapshot = repo.replace.call_args.args[1]
    assert [(t.from_user_id, t.to_user_id, t.amount) for t in snapshot.transfers] == [
        (2, 1, Decimal("20.00")),
        (3, 1, Decimal("20.00")),
        (3, 2, Decimal("15.00")),
    ]
    assert result.recomputed is True
    assert result.warnings == []


def test_invalid_snapshot_is_never_written(repo, monkeypatch):
    monkeypatch.setattr(
        settlement_service,
        "validate_settlement",
        lambda snapshot, tolerance: ValidationResult(issues=["Net balances sum to 0.01, expected 0."]),
    )

    with pytest.raises(SettlementInvariantError) as exc_info:
        settlement_service.recompute_settlement(1, MagicMock())

    repo.replace.assert_not_called()
    err = exc_info.value
    assert err.code == ErrorCode.SETTLEMENT_INVARIANT_VIOLATED
    assert err.to_dict()["error"]["details"]["issues"] == ["Net balances sum to 0.01, expected 0."]


def test_malformed_expense_is_skipped_with_warning(repo):
    broken = _expense(3, 1, "10.00", [])
    repo.expenses.append(broken)

    result = settlement_service.recompute_settlement(1, MagicMock())

    assert result.warnings == [{
        "code": WarningCode.SPLIT_ERROR_SKIPPED,
        "message": "Expense 3 was left out: An expense must have at least one participant.",
        "expense_id": 3,
        "reason": ErrorCode.SPLIT_NO_PARTICIPANTS,
    }]
    repo.replace.assert_called_once()


def test_strict_mode_aborts_on_malformed_expense(repo):
    repo.expenses.append(_expense(3, 1, "10.00", []))

    with pytest.raises(SplitError) as exc_info:
        settlement_service.recompute_settlement(1, MagicMock(), strict=True)

    assert exc_info.value.expense_id == 3
    repo.replace.assert_not_called()


def test_other_currency_is_excluded_with_warning(repo):
    repo.expenses.append(_expense(3, 1, "900", [1, 2], currency=Currency.JPY))

    result = settlement_service.recompute_settlement(1, MagicMock())

    assert [w["code"] for w in result.warnings] == [WarningCode.CURRENCY_EXCLUDED]
    assert result.warnings[0]["expense_id"] == 3
    snapshot = repo.replace.call_args.args[1]
    assert snapshot.person_summaries[1].net_base == Decimal("40.00")


def test_settled_history_is_returned_alongside_pending(repo):
    settled = SimpleNamespace(from_user_id=2, to_user_id=1, amount_base=Decimal("20.00"), is_settled=True)
    repo.previous = [settled]

    result = settlement_service.recompute_settlement(1, MagicMock())

    assert result.settled == [settled]
    assert [(t.from_user_id, t.to_user_id) for t in result.pending] == [(3, 1), (3, 2)]


# ── Retry and deadline ─────────────────────────────────────────────────────

def test_persistence_error_is_retried_after_rollback(repo):
    calls = {"n": 0}
    original = repo.replace.side_effect

    def flaky(*args):
        calls["n"] += 1
        if calls["n"] == 1:
            raise PersistenceError("Could not save settlement for trip 1.")
        return original(*args)

    repo.replace.side_effect = flaky
    session = MagicMock()
    sleep = MagicMock()

    result = settlement_service.recompute_with_retry(
        1, session, retries=2, backoff_seconds=0.5, sleep=sleep,
    )

    assert result.recomputed is True
    assert repo.replace.call_count == 2
    session.rollback.assert_called_once()
    sleep.assert_called_once_with(0.5)


def test_persistence_error_after_last_retry_propagates(repo):
    repo.replace.side_effect = PersistenceError("Could not save settlement for trip 1.")
    session = MagicMock()

    with pytest.raises(PersistenceError):
        settlement_service.recompute_with_retry(
            1, session, retries=1, backoff_seconds=0, sleep=lambda s: None,
        )

    assert repo.replace.call_count == 2
    assert session.rollback.call_count == 2


def test_split_error_is_not_retried(repo):
    repo.expenses.append(_expense(3, 1, "10.00", []))
    session = MagicMock()

    with pytest.raises(SplitError):
        settlement_service.recompute_with_retry(1, session, strict=True, retries=3)

    session.rollback.assert_not_called()


def test_deadline_aborts_before_write(repo):
    ticks = iter([0.0, 0.0, 10.0, 10.0])

    with pytest.raises(AppError) as exc_info:
        settlement_service.recompute_with_retry(
            1, MagicMock(), timeout_seconds=5, clock=lambda: next(ticks),
        )

    assert exc_info.value.code == ErrorCode.RECOMPUTE_TIMEOUT
    assert exc_info.value.http_status == 503
    repo.replace.assert_not_called()


# ── Staleness ──────────────────────────────────────────────────────────────

def test_should_recompute_without_snapshot():
    assert settlement_service.should_recompute(_trip(), None)


def test_should_recompute_after_modification():
    summary = SimpleNamespace(base_currency=Currency.USD, last_computed_at=NOW - timedelta(seconds=1))
    assert settlement_service.should_recompute(_trip(), summary)


def test_fresh_snapshot_is_reused():
    summary = SimpleNamespace(base_currency=Currency.USD, last_computed_at=NOW + timedelta(seconds=1))
    assert not settlement_service.should_recompute(_trip(), summary)


def test_naive_timestamps_are_treated_as_utc():
    summary = SimpleNamespace(
        base_currency=Currency.USD,
        last_computed_at=(NOW + timedelta(seconds=1)).replace(tzinfo=None),
    )
    assert not settlement_service.should_recompute(_trip(), summary)


def test_base_currency_change_forces_recompute():
    summary = SimpleNamespace(base_currency=Currency.EUR, last_computed_at=NOW + timedelta(hours=1))
    assert settlement_service.should_recompute(_trip(), summary)


# ── get_settlement / settle_transfer ───────────────────────────────────────

def test_get_settlement_reuses_fresh_snapshot(repo, monkeypatch):
    summary = SimpleNamespace(base_currency=Currency.USD, last_computed_at=NOW + timedelta(minutes=1))
    monkeypatch.setattr(repository, "get_settlement_summary", lambda trip_id, session: summary)
    pending = SimpleNamespace(is_settled=False)
    repo.previous = [pending]

    result = settlement_service.get_settlement(1, caller_id=1, session=MagicMock())

    assert result.recomputed is False
    assert result.summary is summary
    assert result.pending == [pending]
    repo.replace.assert_not_called()


def test_get_settlement_rejects_non_members(repo):
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(AppError) as exc_info:
        settlement_service.get_settlement(1, caller_id=42, session=session)

    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


def test_settle_transfer_marks_trip_modified(repo, monkeypatch):
    transfer = SimpleNamespace(id=5, from_user_id=2, to_user_id=1, amount_base=Decimal("20.00"))
    monkeypatch.setattr(
        repository, "mark_transfer_settled",
        lambda trip_id, transfer_id, settled_at, session: (transfer, True),
    )

    trip, settled = settlement_service.settle_transfer(1, 5, caller_id=2, session=MagicMock())

    assert settled is transfer
    assert trip.last_modified_at > NOW


def test_settle_transfer_twice_leaves_trip_untouched(repo, monkeypatch):
    transfer = SimpleNamespace(id=5)
    monkeypatch.setattr(
        repository, "mark_transfer_settled",
        lambda trip_id, transfer_id, settled_at, session: (transfer, False),
    )

    trip, _ = settlement_service.settle_transfer(1, 5, caller_id=2, session=MagicMock())

    assert trip.last_modified_at == NOW


def test_options_from_config():
    options = settlement_service.options_from_config({
        "SETTLEMENT_TOLERANCE": "0.05",
        "SETTLEMENT_STRICT_SPLITS": True,
        "SETTLEMENT_RECOMPUTE_RETRIES": 3,
        "SETTLEMENT_RETRY_BACKOFF_SECONDS": 0.1,
        "SETTLEMENT_RECOMPUTE_TIMEOUT_SECONDS": None,
    })

    assert options == {
        "tolerance": Decimal("0.05"),
        "strict": True,
        "retries": 3,
        "backoff_seconds": 0.1,
        "timeout_seconds": None,
    }
