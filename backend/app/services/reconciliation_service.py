"""
services/reconciliation_service.py — Folds settled transfers into a fresh computation.

Inputs:
  - fresh PersonSummaries      (balance_service.compute_person_summaries)
  - fresh RawTransfers         (netting_service.compute_raw_transfers)
  - the trip's persisted transfers; only rows with is_settled=True matter

Steps:
  1. Index settled amounts by the directed pair (from_user_id, to_user_id),
     summing repeats.
  2. Adjust summaries: for every settled amount, the payer's net_base goes
     up and the receiver's goes down by the same amount. A user who only
     shows up in settled history gets a zero summary first, so Σ net_base
     stays zero.
  3. Per unordered pair {A, B} (A < B):
         remaining = raw(A→B) − raw(B→A) − settled(A→B) + settled(B→A)
     remaining >  tolerance → pending A → B of remaining
     remaining < −tolerance → pending B → A of −remaining: the overpayment
                              is handed back as a refund transfer instead
                              of the pair being dropped, so every adjusted
                              net stays backed by pending transfers
     otherwise              → pair discharged, nothing emitted
     A pair with no settled history keeps its raw amount unchanged: the
     tolerance is never applied to it, so a 0.01 raw debt is still emitted.

The result is a deterministic function of (current expenses, settled
markers): recomputing with no changes yields the same summaries and the
same (from, to, amount) multiset.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Iterable

from backend.app.services.balance_service import PersonSummary
from backend.app.services.netting_service import PairKey, RawTransfer

_ZERO = Decimal("0")

DEFAULT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ReconciledSettlement:
    person_summaries: dict[int, PersonSummary]
    transfers: list[RawTransfer]
    settled_index: dict[PairKey, Decimal] = field(default_factory=dict)


def build_settled_index(previous_transfers: Iterable) -> dict[PairKey, Decimal]:
    """{(from_user_id, to_user_id): Σ settled amount} over is_settled rows only."""
    index: dict[PairKey, Decimal] = defaultdict(Decimal)
    for transfer in previous_transfers:
        if not transfer.is_settled:
            continue
        index[(transfer.from_user_id, transfer.to_user_id)] += Decimal(transfer.amount_base)
    return dict(index)


def apply_settled_adjustments(
        summaries: dict[int, PersonSummary],
        settled_index: dict[PairKey, Decimal],
) -> dict[int, PersonSummary]:
    """Returns new summaries with settled payments credited to payers."""
    adjusted = dict(summaries)

    for (payer, receiver), amount in settled_index.items():
        for uid, delta in ((payer, amount), (receiver, -amount)):
            current = adjusted.get(uid) or PersonSummary(uid, _ZERO, _ZERO, _ZERO)
            adjusted[uid] = replace(current, net_base=current.net_base + delta)

    return {uid: adjusted[uid] for uid in sorted(adjusted)}


def _signed(amounts: dict[PairKey, Decimal], a: int, b: int) -> Decimal:
    """Amount flowing a → b minus amount flowing b → a."""
    return amounts.get((a, b), _ZERO) - amounts.get((b, a), _ZERO)


def settled_pairs(settled_index: dict[PairKey, Decimal]) -> set[PairKey]:
    """Unordered pairs (low id first) with any settled history."""
    return {tuple(sorted(key)) for key in settled_index}


def reconcile_transfers(
        raw_transfers: Iterable[RawTransfer],
        settled_index: dict[PairKey, Decimal],
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> list[RawTransfer]:
    raw = {t.pair: t.amount for t in raw_transfers}
    with_history = settled_pairs(settled_index)
    pairs = {tuple(sorted(key)) for key in raw} | with_history

    result: list[RawTransfer] = []
    for a, b in pairs:
        remaining = _signed(raw, a, b) - _signed(settled_index, a, b)
        # Only a pair with settled history can be discharged within tolerance.
        threshold = tolerance if (a, b) in with_history else _ZERO
        if remaining > threshold:
            result.append(RawTransfer(a, b, remaining))
        elif remaining < -threshold:
            result.append(RawTransfer(b, a, -remaining))

    result.sort(key=lambda t: t.pair)
    return result


def reconcile(
        summaries: dict[int, PersonSummary],
        raw_transfers: Iterable[RawTransfer],
        previous_transfers: Iterable,
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ReconciledSettlement:
    settled_index = build_settled_index(previous_transfers)
    return ReconciledSettlement(
        person_summaries=apply_settled_adjustments(summaries, settled_index),
        transfers=reconcile_transfers(raw_transfers, settled_index, tolerance),
        settled_index=settled_index,
    )
