"""
tests/unit/test_pairwise_netting.py — Unit tests for netting_service.

What this file proves:
  - Debts are collected per (debtor, payer) and netted per unordered pair
  - At most one directed transfer per pair
  - People who never shared an expense never get a transfer
  - The per-pair breakdown adds up to the netted amount
"""

from __future__ import annotations

from decimal import Decimal

from backend.app.models.currency import Currency
from backend.app.services.netting_service import (
    RawTransfer,
    compute_pairwise_debts,
    compute_raw_transfers,
    compute_transfer_breakdown,
    net_pairwise_transfers,
)
from backend.app.services.split_allocator import AllocatedExpense, ParticipantContribution


def _allocated(expense_id, payer, amount, shares: dict, description="", currency=Currency.USD):
    return AllocatedExpense(
        expense_id=expense_id,
        payer_user_id=payer,
        amount=Decimal(amount),
        currency=currency,
        contributions=tuple(
            ParticipantContribution(uid, Decimal(a)) for uid, a in shares.items()
        ),
        description=description,
    )


A, B, C = 1, 2, 3


def _scenario_three():
    return [
        _allocated(1, A, "60.00", {A: "20.00", B: "20.00", C: "20.00"}, "Dinner"),
        _allocated(2, B, "30.00", {B: "15.00", C: "15.00"}, "Taxi"),
    ]


def test_scenario_three_transfers():
    transfers = compute_raw_transfers(_scenario_three())

    assert transfers == [
        RawTransfer(B, A, Decimal("20.00")),
        RawTransfer(C, A, Decimal("20.00")),
        RawTransfer(C, B, Decimal("15.00")),
    ]


def test_payer_share_is_not_a_debt():
    debts = compute_pairwise_debts(_scenario_three())
    assert (A, A) not in debts
    assert (B, B) not in debts
    assert debts[(C, B)] == Decimal("15.00")


def test_opposing_debts_are_netted():
    expenses = [
        _allocated(1, A, "40.00", {A: "20.00", B: "20.00"}),
        _allocated(2, B, "30.00", {A: "15.00", B: "15.00"}),
    ]

    assert compute_raw_transfers(expenses) == [RawTransfer(B, A, Decimal("5.00"))]


def test_exactly_cancelling_debts_produce_nothing():
    expenses = [
        _allocated(1, A, "20.00", {A: "10.00", B: "10.00"}),
        _allocated(2, B, "20.00", {A: "10.00", B: "10.00"}),
    ]
    assert compute_raw_transfers(expenses) == []


def test_never_both_directions():
    expenses = _scenario_three() + [
        _allocated(3, C, "90.00", {A: "30.00", B: "30.00", C: "30.00"}),
    ]
    pairs = {t.pair for t in compute_raw_transfers(expenses)}
    assert not any((b, a) in pairs for a, b in pairs)


def test_output_is_sorted_by_pair():
    debts = {(3, 1): Decimal("1"), (1, 2): Decimal("2"), (2, 3): Decimal("3")}
    transfers = net_pairwise_transfers(debts)
    assert [t.pair for t in transfers] == sorted(t.pair for t in transfers)


def test_currency_filter():
    expenses = _scenario_three() + [
        _allocated(3, A, "100", {A: "50", C: "50"}, currency=Currency.JPY),
    ]
    transfers = compute_raw_transfers(expenses, currency_filter=Currency.USD)
    assert RawTransfer(C, A, Decimal("20.00")) in transfers


# ── Breakdown ──────────────────────────────────────────────────────────────

def test_breakdown_lists_contributing_expenses():
    breakdown = compute_transfer_breakdown(_scenario_three(), C, A)

    assert breakdown["net_amount"] == Decimal("20.00")
    assert [line["expense_id"] for line in breakdown["expenses"]] == [1]
    line = breakdown["expenses"][0]
    assert line["description"] == "Dinner"
    assert line["from_user_share"] == Decimal("20.00")
    assert line["contribution"] == Decimal("20.00")


def test_breakdown_counts_both_directions():
    expenses = [
        _allocated(1, A, "40.00", {A: "20.00", B: "20.00"}),
        _allocated(2, B, "30.00", {A: "15.00", B: "15.00"}),
    ]

    breakdown = compute_transfer_breakdown(expenses, B, A)

    assert [line["contribution"] for line in breakdown["expenses"]] == [
        Decimal("20.00"),
        Decimal("-15.00"),
    ]
    assert breakdown["net_amount"] == Decimal("5.00")


def test_breakdown_skips_third_party_expenses():
    breakdown = compute_transfer_breakdown(_scenario_three(), B, C)
    # Expense 1 was paid by A; only expense 2 links B and C (C owes B).
    assert [line["expense_id"] for line in breakdown["expenses"]] == [2]
    assert breakdown["net_amount"] == Decimal("-15.00")
