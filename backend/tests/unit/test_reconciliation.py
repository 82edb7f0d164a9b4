"""
tests/unit/test_reconciliation.py — Unit tests for reconciliation_service.

Previously persisted transfers are SimpleNamespace rows with the Transfer
attributes the service reads (from_user_id, to_user_id, amount_base,
is_settled).
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

from backend.app.services.balance_service import PersonSummary
from backend.app.services.netting_service import RawTransfer
from backend.app.services.reconciliation_service import (
    apply_settled_adjustments,
    build_settled_index,
    reconcile,
    reconcile_transfers,
)
from backend.app.services.settlement_validator import validate_settlement

A, B, C = 1, 2, 3


def _row(from_user_id, to_user_id, amount, is_settled=True):
    return SimpleNamespace(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        amount_base=Decimal(amount),
        is_settled=is_settled,
    )


def _summaries(nets: dict) -> dict:
    return {
        uid: PersonSummary(uid, Decimal("0"), Decimal("0"), Decimal(net))
        for uid, net in nets.items()
    }


def _scenario_three_raw():
    return [
        RawTransfer(B, A, Decimal("20.00")),
        RawTransfer(C, A, Decimal("20.00")),
        RawTransfer(C, B, Decimal("15.00")),
    ]


def _scenario_three_summaries():
    return _summaries({A: "40.00", B: "-5.00", C: "-35.00"})


# ── Settled index ──────────────────────────────────────────────────────────

def test_index_ignores_pending_rows_and_sums_repeats():
    index = build_settled_index([
        _row(B, A, "5.00"),
        _row(B, A, "7.50"),
        _row(C, A, "20.00", is_settled=False),
    ])
    assert index == {(B, A): Decimal("12.50")}


def test_adjustment_credits_payer_and_debits_receiver():
    adjusted = apply_settled_adjustments(_scenario_three_summaries(), {(B, A): Decimal("20.00")})

    assert adjusted[A].net_base == Decimal("20.00")
    assert adjusted[B].net_base == Decimal("15.00")
    assert adjusted[C].net_base == Decimal("-35.00")


def test_adjustment_adds_users_only_in_history():
    adjusted = apply_settled_adjustments(_summaries({A: "0"}), {(4, A): Decimal("3.00")})

    assert adjusted[4].net_base == Decimal("3.00")
    assert adjusted[A].net_base == Decimal("-3.00")
    assert list(adjusted) == [A, 4]


# ── Scenario four ──────────────────────────────────────────────────────────

def test_settled_pair_is_dropped_and_others_unchanged():
    snapshot = reconcile(
        _scenario_three_summaries(),
        _scenario_three_raw(),
        [_row(B, A, "20.00")],
    )

    assert snapshot.transfers == [
        RawTransfer(C, A, Decimal("20.00")),
        RawTransfer(C, B, Decimal("15.00")),
    ]
    assert snapshot.person_summaries[A].net_base == Decimal("20.00")
    assert snapshot.person_summaries[B].net_base == Decimal("15.00")
    assert validate_settlement(snapshot).is_valid


def test_partial_settlement_leaves_the_remainder():
    snapshot = reconcile(
        _scenario_three_summaries(),
        _scenario_three_raw(),
        [_row(B, A, "12.00")],
    )
    assert RawTransfer(B, A, Decimal("8.00")) in snapshot.transfers
    assert validate_settlement(snapshot).is_valid


def test_remainder_within_tolerance_is_discharged():
    transfers = reconcile_transfers(
        [RawTransfer(B, A, Decimal("20.00"))],
        {(B, A): Decimal("19.99")},
        tolerance=Decimal("0.01"),
    )
    assert transfers == []


def test_small_raw_debt_without_history_is_kept():
    transfers = reconcile_transfers(
        [RawTransfer(B, A, Decimal("0.01"))],
        {},
        tolerance=Decimal("0.01"),
    )
    assert transfers == [RawTransfer(B, A, Decimal("0.01"))]


def test_tolerance_only_applies_to_the_settled_pair():
    transfers = reconcile_transfers(
        [RawTransfer(B, A, Decimal("20.00")), RawTransfer(C, A, Decimal("0.01"))],
        {(B, A): Decimal("19.99")},
        tolerance=Decimal("0.01"),
    )
    assert transfers == [RawTransfer(C, A, Decimal("0.01"))]


def test_cent_debt_survives_and_validates():
    # 0.02 paid by A, split evenly with B.
    snapshot = reconcile(
        _summaries({A: "0.01", B: "-0.01"}),
        [RawTransfer(B, A, Decimal("0.01"))],
        [],
    )

    assert snapshot.transfers == [RawTransfer(B, A, Decimal("0.01"))]
    assert validate_settlement(snapshot).is_valid


def test_overpayment_becomes_a_refund():
    # B paid A 25.00 against a 20.00 debt; A owes B 5.00 back.
    snapshot = reconcile(
        _scenario_three_summaries(),
        _scenario_three_raw(),
        [_row(B, A, "25.00")],
    )

    assert RawTransfer(A, B, Decimal("5.00")) in snapshot.transfers
    assert validate_settlement(snapshot).is_valid


def test_settlement_on_a_pair_that_no_longer_owes():
    # The expense behind a settled payment was deleted: the raw debt is gone.
    snapshot = reconcile(
        _summaries({C: "-15.00", B: "15.00"}),
        [RawTransfer(C, B, Decimal("15.00"))],
        [_row(B, A, "20.00")],
    )

    assert RawTransfer(A, B, Decimal("20.00")) in snapshot.transfers
    assert validate_settlement(snapshot).is_valid


def test_reconcile_is_idempotent():
    previous = [_row(B, A, "20.00"), _row(C, A, "20.00", is_settled=False)]

    first = reconcile(_scenario_three_summaries(), _scenario_three_raw(), previous)
    second = reconcile(_scenario_three_summaries(), _scenario_three_raw(), previous)

    assert first == second


def test_settlement_never_increases_other_debts():
    before = reconcile(_scenario_three_summaries(), _scenario_three_raw(), [])
    after = reconcile(_scenario_three_summaries(), _scenario_three_raw(), [_row(C, A, "10.00")])

    amounts_before = {t.pair: t.amount for t in before.transfers}
    amounts_after = {t.pair: t.amount for t in after.transfers}

    assert amounts_after[(C, A)] < amounts_before[(C, A)]
    assert amounts_after[(B, A)] == amounts_before[(B, A)]
    assert amounts_after[(C, B)] == amounts_before[(C, B)]
