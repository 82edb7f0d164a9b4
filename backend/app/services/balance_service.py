"""
services/balance_service.py — Per-person totals for a trip.

Folds allocated expenses into one PersonSummary per user who appears as a
payer or a participant in at least one expense:

  total_paid_base  += expense.amount           (for the payer)
  total_owed_base  += contribution.amount      (for every participant)
  net_base          = total_paid_base − total_owed_base   (computed once, at the end)

No pairwise netting happens here; that is netting_service.py's job.

Zero-sum guarantee:
  Every expense adds `amount` to the paid side and exactly `amount` (the
  allocator's exactness invariant) to the owed side, so Σ net_base == 0
  for any set of allocated expenses.

Layer rules:
  - No Flask imports, no session. Pure functions over AllocatedExpense.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from backend.app.models.currency import Currency, as_currency
from backend.app.services.split_allocator import AllocatedExpense

_ZERO = Decimal("0")


@dataclass(frozen=True)
class PersonSummary:
    user_id: int
    total_paid_base: Decimal
    total_owed_base: Decimal
    net_base: Decimal


def included(
        expense: AllocatedExpense,
        currency_filter: Currency | str | None,
) -> bool:
    """True if the expense passes the optional currency filter."""
    return currency_filter is None or expense.currency == as_currency(currency_filter)


def compute_person_summaries(
        expenses: Iterable[AllocatedExpense],
        currency_filter: Currency | str | None = None,
) -> dict[int, PersonSummary]:
    """
    Returns {user_id: PersonSummary}, ordered by user id.

    When `currency_filter` is set, expenses in any other currency are ignored.
    """
    paid: dict[int, Decimal] = defaultdict(Decimal)
    owed: dict[int, Decimal] = defaultdict(Decimal)

    for expense in expenses:
        if not included(expense, currency_filter):
            continue
        paid[expense.payer_user_id] += expense.amount
        for contribution in expense.contributions:
            owed[contribution.user_id] += contribution.amount

    user_ids = sorted(set(paid) | set(owed))
    return {
        uid: PersonSummary(
            user_id=uid,
            total_paid_base=paid.get(uid, _ZERO),
            total_owed_base=owed.get(uid, _ZERO),
            net_base=paid.get(uid, _ZERO) - owed.get(uid, _ZERO),
        )
        for uid in user_ids
    }


def net_sum(summaries: dict[int, PersonSummary]) -> Decimal:
    """Σ net_base. Zero for every valid snapshot."""
    return sum((s.net_base for s in summaries.values()), _ZERO)
