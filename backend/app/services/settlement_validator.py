"""
services/settlement_validator.py — Ledger invariant checks on a reconciled snapshot.

Runs BEFORE the snapshot is persisted. A failing result must abort the
recompute with nothing written (settlement_service raises
SettlementInvariantError).

Checks:
  zero-sum      Σ net_base == 0
  positive      every pending transfer amount > 0
  unique pair   no duplicate (from, to), and never both A → B and B → A
  endpoints     no self-transfers; both ends have a person summary
  per-person    incoming − outgoing pending == adjusted net_base, within
                tolerance × number of discharged pairs with settled
                history; a pair with no history allows no gap at all
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from backend.app.services.reconciliation_service import (
    DEFAULT_TOLERANCE,
    ReconciledSettlement,
    settled_pairs,
)

_ZERO = Decimal("0")


@dataclass
class ValidationResult:
    issues: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues


def validate_settlement(
        snapshot: ReconciledSettlement,
        tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ValidationResult:
    result = ValidationResult()
    summaries = snapshot.person_summaries

    total = sum((s.net_base for s in summaries.values()), _ZERO)
    if total != _ZERO:
        result.issues.append(f"Net balances sum to {total}, expected 0.")

    seen: set[tuple[int, int]] = set()
    flow: dict[int, Decimal] = defaultdict(Decimal)

    for t in snapshot.transfers:
        label = f"Transfer {t.from_user_id} -> {t.to_user_id}"
        if t.amount <= _ZERO:
            result.issues.append(f"{label} has non-positive amount {t.amount}.")
        if t.from_user_id == t.to_user_id:
            result.issues.append(f"{label} pays the same user.")
        for uid in (t.from_user_id, t.to_user_id):
            if uid not in summaries:
                result.issues.append(f"{label} references user {uid} with no balance.")
        if t.pair in seen:
            result.issues.append(f"{label} appears more than once.")
        if (t.to_user_id, t.from_user_id) in seen:
            result.issues.append(f"{label} exists in both directions.")
        seen.add(t.pair)

        flow[t.to_user_id] += t.amount
        flow[t.from_user_id] -= t.amount

    # A gap of up to `tolerance` is allowed only for each pair that has
    # settled history and was discharged (no pending transfer either way).
    discharged: dict[int, int] = defaultdict(int)
    for a, b in settled_pairs(snapshot.settled_index):
        if (a, b) not in seen and (b, a) not in seen:
            discharged[a] += 1
            discharged[b] += 1

    for uid, summary in summaries.items():
        gap = summary.net_base - flow.get(uid, _ZERO)
        if abs(gap) > tolerance * discharged.get(uid, 0):
            result.issues.append(
                f"User {uid}: net {summary.net_base} does not match pending "
                f"transfers {flow.get(uid, _ZERO)} (off by {gap})."
            )

    return result
