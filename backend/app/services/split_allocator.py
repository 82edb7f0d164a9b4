"""
services/split_allocator.py — Per-expense cost allocation.

Turns one expense into an ordered list of ParticipantContribution whose
amounts sum EXACTLY to the expense amount, in the expense's currency.

Split kinds:
  equal     — floor(total / n) to the minor unit for everyone, then the
              leftover minor units go one at a time to participants in
              list (position) order.
  weighted  — total × weight / Σweights, rounded half-up to the minor unit
              for every participant except the last (capped so the running
              sum never passes the total); the last participant
              absorbs total − Σ(already assigned).
  itemized  — every line item is split across its assignees (weighted rule
              with the assignment shares, or the equal rule when no shares
              are given). Extras are spread proportionally:
                tax                 → by each person's taxable-item subtotal
                service_charge, tip → by service-chargeable-item subtotal
                discount            → by all-item subtotal (subtracted)
              Per-person totals are rounded half-up; the difference between
              the expense amount and Σ(rounded) goes to the participant with
              the largest item subtotal, ties broken by the lowest user id.

Rules:
  - Decimal only. No float ever enters this module.
  - Pure functions. No Flask, no session. Works on ORM rows or any object
    exposing the same attributes (tests use SimpleNamespace).
  - Malformed data raises SplitError carrying the expense id. The caller
    decides whether that aborts the trip computation or only this expense.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from backend.app.errors import ErrorCode, SplitError
from backend.app.models.currency import Currency, as_currency
from backend.app.models.expense import ExtraKind, ExtraMode, SplitKind

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")

# Explicit item shares must sum to 1 within this margin.
SHARE_SUM_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ParticipantContribution:
    user_id: int
    amount: Decimal


# ── Distribution primitives ────────────────────────────────────────────────

def distribute_evenly(
        total: Decimal,
        user_ids: Sequence[int],
        currency: Currency,
) -> list[ParticipantContribution]:
    """
    Splits `total` evenly in minor units.

    Example (USD): 10.00 across [1, 2, 3] → 3.34, 3.33, 3.33.
    """
    n = len(user_ids)
    base = currency.floor(total / n)
    unit = currency.minor_unit
    leftover_units = int((total - base * n) / unit)

    return [
        ParticipantContribution(uid, base + unit if i < leftover_units else base)
        for i, uid in enumerate(user_ids)
    ]


def distribute_by_weight(
        total: Decimal,
        weighted: Sequence[tuple[int, Decimal]],
        currency: Currency,
) -> list[ParticipantContribution]:
    """
    Splits `total` proportionally to positive weights.

    All but the last share are rounded half-up, capped at what is still
    unassigned; the last share is whatever keeps the sum exact.

    Example (USD): 0.05 across ten equal weights → 0.01 for the first five,
    0.00 for the rest (each 0.005 rounds up, and the total runs out).
    """
    weight_sum = sum((w for _, w in weighted), _ZERO)
    result: list[ParticipantContribution] = []
    assigned = _ZERO

    for uid, weight in weighted[:-1]:
        share = currency.quantize(total * weight / weight_sum, rounding=ROUND_HALF_UP)
        share = min(share, total - assigned)
        result.append(ParticipantContribution(uid, share))
        assigned += share

    result.append(ParticipantContribution(weighted[-1][0], total - assigned))
    return result


# ── Shared validation ──────────────────────────────────────────────────────

def _ordered(rows: Iterable) -> list:
    """Rows sorted by their `position` attribute, keeping list order for ties."""
    indexed = list(enumerate(rows))
    indexed.sort(key=lambda pair: (getattr(pair[1], "position", 0) or 0, pair[0]))
    return [row for _, row in indexed]


def _checked_total(expense, currency: Currency) -> Decimal:
    amount = expense.amount
    if amount is None or Decimal(amount) <= _ZERO:
        raise SplitError(
            ErrorCode.SPLIT_NON_POSITIVE_TOTAL,
            f"Expense amount must be greater than zero (got {amount}).",
            expense_id=expense.id,
        )
    amount = Decimal(amount)
    if not currency.has_valid_precision(amount):
        raise SplitError(
            ErrorCode.INVALID_AMOUNT_PRECISION,
            f"{amount} has more than {currency.minor_units} decimal places for {currency.value}.",
            expense_id=expense.id,
        )
    return currency.quantize(amount)


def _checked_participants(expense) -> list:
    participants = _ordered(expense.participants or [])
    if not participants:
        raise SplitError(
            ErrorCode.SPLIT_NO_PARTICIPANTS,
            "An expense must have at least one participant.",
            expense_id=expense.id,
        )
    seen: set[int] = set()
    for p in participants:
        if p.user_id in seen:
            raise SplitError(
                ErrorCode.DUPLICATE_PARTICIPANT,
                f"User {p.user_id} appears more than once in the participant list.",
                expense_id=expense.id,
            )
        seen.add(p.user_id)
    return participants


# ── Split kinds ────────────────────────────────────────────────────────────

def allocate_equal(expense) -> list[ParticipantContribution]:
    currency = as_currency(expense.currency)
    total = _checked_total(expense, currency)
    participants = _checked_participants(expense)
    return distribute_evenly(total, [p.user_id for p in participants], currency)


def allocate_weighted(expense) -> list[ParticipantContribution]:
    currency = as_currency(expense.currency)
    total = _checked_total(expense, currency)
    participants = _checked_participants(expense)

    weighted: list[tuple[int, Decimal]] = []
    for p in participants:
        weight = p.weight
        if weight is None or Decimal(weight) <= _ZERO:
            raise SplitError(
                ErrorCode.SPLIT_INVALID_WEIGHT,
                f"Weight for user {p.user_id} must be greater than zero (got {weight}).",
                expense_id=expense.id,
            )
        weighted.append((p.user_id, Decimal(weight)))

    return distribute_by_weight(total, weighted, currency)


def _split_line_item(item, item_total: Decimal, currency: Currency, expense_id):
    """Allocates one line item's total across its assignees."""
    assignments = _ordered(item.assignments or [])
    if not assignments:
        raise SplitError(
            ErrorCode.SPLIT_NO_PARTICIPANTS,
            f"Line item '{item.name}' is not assigned to anyone.",
            expense_id=expense_id,
        )

    user_ids = [a.user_id for a in assignments]
    if len(set(user_ids)) != len(user_ids):
        raise SplitError(
            ErrorCode.DUPLICATE_PARTICIPANT,
            f"Line item '{item.name}' assigns the same user twice.",
            expense_id=expense_id,
        )

    shares = [a.share for a in assignments]
    if all(s is None for s in shares):
        return distribute_evenly(item_total, user_ids, currency)

    if any(s is None or Decimal(s) <= _ZERO for s in shares):
        raise SplitError(
            ErrorCode.SPLIT_INVALID_ITEM_SHARES,
            f"Line item '{item.name}' mixes explicit and missing shares, "
            f"or has a share that is not positive.",
            expense_id=expense_id,
        )

    share_sum = sum((Decimal(s) for s in shares), _ZERO)
    if abs(share_sum - _ONE) > SHARE_SUM_TOLERANCE:
        raise SplitError(
            ErrorCode.SPLIT_INVALID_ITEM_SHARES,
            f"Shares for line item '{item.name}' sum to {share_sum}, not 1.",
            expense_id=expense_id,
        )

    if item_total == _ZERO:
        return [ParticipantContribution(uid, _ZERO) for uid in user_ids]

    return distribute_by_weight(
        item_total,
        list(zip(user_ids, (Decimal(s) for s in shares))),
        currency,
    )


def _extra_amount(extra, base: Decimal, currency: Currency) -> Decimal:
    value = Decimal(extra.value)
    if ExtraMode(extra.mode) == ExtraMode.PERCENT:
        return currency.quantize(base * value / _HUNDRED)
    return currency.quantize(value)


def _spread(
        amount: Decimal,
        weights: dict[int, Decimal],
        fallback: dict[int, Decimal],
        order: list[int],
) -> dict[int, Decimal]:
    """
    Unrounded proportional spread of `amount` over `weights`.

    Falls back to `fallback` weights, then to an even spread, when the
    preferred base is empty (e.g. a fixed tip on a bill with no
    service-chargeable items).
    """
    for basis in (weights, fallback):
        basis_total = sum(basis.values(), _ZERO)
        if basis_total > _ZERO:
            return {uid: amount * basis[uid] / basis_total for uid in order}
    return {uid: amount / len(order) for uid in order}


def allocate_itemized(expense) -> list[ParticipantContribution]:
    currency = as_currency(expense.currency)
    total = _checked_total(expense, currency)
    items = _ordered(expense.line_items or [])
    if not items:
        raise SplitError(
            ErrorCode.SPLIT_NO_PARTICIPANTS,
            "An itemized expense must have at least one line item.",
            expense_id=expense.id,
        )

    order: list[int] = []
    item_share: dict[int, Decimal] = defaultdict(Decimal)
    taxable_share: dict[int, Decimal] = defaultdict(Decimal)
    service_share: dict[int, Decimal] = defaultdict(Decimal)
    items_total = taxable_total = service_total = _ZERO

    for item in items:
        quantity = Decimal(item.quantity)
        unit_price = Decimal(item.unit_price)
        if quantity <= _ZERO or unit_price < _ZERO:
            raise SplitError(
                ErrorCode.SPLIT_INVALID_ITEM,
                f"Line item '{item.name}' needs quantity > 0 and unit price >= 0.",
                expense_id=expense.id,
            )
        item_total = currency.quantize(quantity * unit_price)

        for contribution in _split_line_item(item, item_total, currency, expense.id):
            uid = contribution.user_id
            if uid not in item_share:
                order.append(uid)
            item_share[uid] += contribution.amount
            if item.taxable:
                taxable_share[uid] += contribution.amount
            if item.service_chargeable:
                service_share[uid] += contribution.amount

        items_total += item_total
        if item.taxable:
            taxable_total += item_total
        if item.service_chargeable:
            service_total += item_total

    # Unrounded running totals per participant; extras land on top.
    raw: dict[int, Decimal] = {uid: item_share[uid] for uid in order}
    grand_total = items_total

    for extra in _ordered(expense.extras or []):
        kind = ExtraKind(extra.kind)
        if kind == ExtraKind.TAX:
            base, weights = taxable_total, taxable_share
        elif kind in (ExtraKind.SERVICE_CHARGE, ExtraKind.TIP):
            base, weights = service_total, service_share
        else:
            base, weights = items_total, item_share

        amount = _extra_amount(extra, base, currency)
        if kind == ExtraKind.DISCOUNT:
            amount = -amount
        grand_total += amount

        for uid, part in _spread(amount, weights, item_share, order).items():
            raw[uid] += part

    if grand_total != total:
        raise SplitError(
            ErrorCode.ITEMIZED_TOTAL_MISMATCH,
            f"Line items and extras add up to {grand_total}, "
            f"but the expense amount is {total}.",
            expense_id=expense.id,
        )

    rounded = {uid: currency.quantize(raw[uid], rounding=ROUND_HALF_UP) for uid in order}
    adjustment = total - sum(rounded.values(), _ZERO)
    if adjustment:
        # Largest item subtotal absorbs the rounding difference; lowest id wins ties.
        holder = min(order, key=lambda uid: (-item_share[uid], uid))
        rounded[holder] += adjustment

    if any(amount < _ZERO for amount in rounded.values()):
        raise SplitError(
            ErrorCode.SPLIT_INVALID_ITEM,
            "Discounts exceed a participant's share of the bill.",
            expense_id=expense.id,
        )

    return [ParticipantContribution(uid, rounded[uid]) for uid in order]


_ALLOCATORS = {
    SplitKind.EQUAL:    allocate_equal,
    SplitKind.WEIGHTED: allocate_weighted,
    SplitKind.ITEMIZED: allocate_itemized,
}


def allocate(expense) -> list[ParticipantContribution]:
    """Dispatches on expense.split_kind. Σ amounts == expense.amount exactly."""
    try:
        allocator = _ALLOCATORS[SplitKind(expense.split_kind)]
    except ValueError:
        raise SplitError(
            ErrorCode.INVALID_SPLIT_KIND,
            f"Unknown split kind {expense.split_kind!r}.",
            expense_id=expense.id,
        )
    return allocator(expense)


# ── Trip-wide allocation ───────────────────────────────────────────────────

@dataclass(frozen=True)
class AllocatedExpense:
    """An expense together with its computed contributions."""
    expense_id: int
    payer_user_id: int
    amount: Decimal
    currency: Currency
    contributions: tuple[ParticipantContribution, ...]
    description: str = ""


def allocate_expense(expense) -> AllocatedExpense:
    currency = as_currency(expense.currency)
    contributions = allocate(expense)
    return AllocatedExpense(
        expense_id=expense.id,
        payer_user_id=expense.paid_by_user_id,
        amount=currency.quantize(Decimal(expense.amount)),
        currency=currency,
        contributions=tuple(contributions),
        description=getattr(expense, "description", "") or "",
    )


def allocate_expenses(
        expenses: Iterable,
        strict: bool = False,
) -> tuple[list[AllocatedExpense], list[SplitError]]:
    """
    Allocates every expense of a trip.

    strict=False: a SplitError skips only that expense and is returned in
                  the second list so the caller can report it.
    strict=True:  the first SplitError propagates and aborts the whole run.
    """
    allocated: list[AllocatedExpense] = []
    failures: list[SplitError] = []
    for expense in expenses:
        try:
            allocated.append(allocate_expense(expense))
        except SplitError as err:
            if strict:
                raise
            failures.append(err)
    return allocated, failures
