"""
services/netting_service.py — Pairwise debt netting and per-pair breakdown.

Derives transfers directly from allocated expenses:

  1. For every expense and every participant P other than the payer:
         debt[(P, payer)] += contribution(P)
  2. For every unordered pair {A, B}:
         net = debt[(A, B)] − debt[(B, A)]
         net > 0  → transfer A → B of net
         net < 0  → transfer B → A of −net
         net == 0 → nothing

This gives at most one directed transfer per pair. It is NOT a global
minimum-transfer matching across the group; two people who never shared an
expense never get a transfer between them.

Pair keys are (debtor_id, creditor_id) tuples, never formatted strings.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from backend.app.models.currency import Currency
from backend.app.services.balance_service import included
from backend.app.services.split_allocator import AllocatedExpense

_ZERO = Decimal("0")

PairKey = tuple[int, int]


@dataclass(frozen=True)
class RawTransfer:
    """`from_user_id` owes `to_user_id` `amount` (> 0)."""
    from_user_id: int
    to_user_id: int
    amount: Decimal

    @property
    def pair(self) -> PairKey:
        return (self.from_user_id, self.to_user_id)


def compute_pairwise_debts(
        expenses: Iterable[AllocatedExpense],
        currency_filter: Currency | str | None = None,
) -> dict[PairKey, Decimal]:
    """Returns {(debtor_id, creditor_id): gross amount owed} before netting."""
    debts: dict[PairKey, Decimal] = defaultdict(Decimal)
    for expense in expenses:
        if not included(expense, currency_filter):
            continue
        payer = expense.payer_user_id
        for contribution in expense.contributions:
            if contribution.user_id == payer or contribution.amount == _ZERO:
                continue
            debts[(contribution.user_id, payer)] += contribution.amount
    return dict(debts)


def net_pairwise_transfers(debts: dict[PairKey, Decimal]) -> list[RawTransfer]:
    """
    Collapses opposing debts into one directed transfer per pair.

    Output is sorted by (from_user_id, to_user_id) so recomputes are stable.
    """
    pairs = {tuple(sorted(key)) for key in debts}
    transfers: list[RawTransfer] = []

    for a, b in pairs:
        net = debts.get((a, b), _ZERO) - debts.get((b, a), _ZERO)
        if net > _ZERO:
            transfers.append(RawTransfer(a, b, net))
        elif net < _ZERO:
            transfers.append(RawTransfer(b, a, -net))

    transfers.sort(key=lambda t: t.pair)
    return transfers


def compute_raw_transfers(
        expenses: Iterable[AllocatedExpense],
        currency_filter: Currency | str | None = None,
) -> list[RawTransfer]:
    return net_pairwise_transfers(compute_pairwise_debts(expenses, currency_filter))


def compute_transfer_breakdown(
        expenses: Iterable[AllocatedExpense],
        from_user_id: int,
        to_user_id: int,
        currency_filter: Currency | str | None = None,
) -> dict:
    """
    Explains the from → to debt expense by expense.

    For each expense that involves the pair directly:
      contribution > 0  — `to` paid and `from` participated (from owes to)
      contribution < 0  — `from` paid and `to` participated (to owes from)
    Expenses paid by a third party contribute nothing to this pair and are
    left out. Σ contributions equals the raw netted from → to amount
    (negative when the debt runs the other way).
    """
    lines: list[dict] = []
    total = _ZERO

    for expense in expenses:
        if not included(expense, currency_filter):
            continue
        shares = {c.user_id: c.amount for c in expense.contributions}
        from_share = shares.get(from_user_id, _ZERO)
        to_share = shares.get(to_user_id, _ZERO)

        if expense.payer_user_id == to_user_id:
            contribution = from_share
        elif expense.payer_user_id == from_user_id:
            contribution = -to_share
        else:
            continue
        if contribution == _ZERO:
            continue

        total += contribution
        lines.append({
            "expense_id": expense.expense_id,
            "description": expense.description,
            "paid_by_user_id": expense.payer_user_id,
            "amount": expense.amount,
            "from_user_share": from_share,
            "to_user_share": to_share,
            "contribution": contribution,
        })

    return {
        "from_user_id": from_user_id,
        "to_user_id": to_user_id,
        "net_amount": total,
        "expenses": lines,
    }
