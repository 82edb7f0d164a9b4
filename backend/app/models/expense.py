"""
models/expense.py — Expense table definition and the split enums.

No business logic. No imports from services or routes.

Key design points:
  - `deleted_at` is NULL for active expenses. Soft-deleted expenses never
    enter a settlement computation.
  - `amount` uses Numeric(15, 3) so three-decimal currencies (KWD, BHD) fit.
    Never Float. Precision per currency is enforced by the schema.
  - `split_kind` decides which child rows carry the allocation data:
      equal     → participants (weights ignored)
      weighted  → participants with weights
      itemized  → line_items (+ assignments) and extras
  - Child rows are ordered by `position`; that order is the deterministic
    order the split allocator hands out rounding remainders in.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.currency import Currency


# ── Enum Definitions ───────────────────────────────────────────────────────

class SplitKind(str, enum.Enum):
    EQUAL    = "equal"
    WEIGHTED = "weighted"
    ITEMIZED = "itemized"


class ExtraKind(str, enum.Enum):
    """Charges (or reductions) layered on top of an itemized bill."""
    TAX            = "tax"
    SERVICE_CHARGE = "service_charge"
    TIP            = "tip"
    DISCOUNT       = "discount"


class ExtraMode(str, enum.Enum):
    PERCENT = "percent"   # value is a percentage of the extra's base
    AMOUNT  = "amount"    # value is a fixed amount in the expense currency


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'weighted'), not names ('WEIGHTED')."""
    return [member.value for member in enum_cls]


# ── Model ──────────────────────────────────────────────────────────────────

class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        # Active-only lookups by trip; the settlement service always filters
        # deleted_at IS NULL.
        Index(
            "idx_expenses_active",
            "trip_id",
            postgresql_where="deleted_at IS NULL",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    paid_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 3),
        nullable=False,
    )

    currency: Mapped[Currency] = mapped_column(
        Enum(
            Currency,
            name="currency_code",
            native_enum=False,
            length=3,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    split_kind: Mapped[SplitKind] = mapped_column(
        Enum(
            SplitKind,
            name="split_kind",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitKind.EQUAL,
        server_default=SplitKind.EQUAL.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # NULL = active; NOT NULL = soft-deleted. The API never hard-deletes.
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    trip: Mapped["Trip"] = relationship(  # noqa: F821
        "Trip",
        back_populates="expenses",
    )

    participants: Mapped[list["ExpenseParticipant"]] = relationship(  # noqa: F821
        "ExpenseParticipant",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ExpenseParticipant.position",
    )

    line_items: Mapped[list["LineItem"]] = relationship(  # noqa: F821
        "LineItem",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="LineItem.position",
    )

    extras: Mapped[list["ExpenseExtra"]] = relationship(  # noqa: F821
        "ExpenseExtra",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ExpenseExtra.position",
    )

    @property
    def is_deleted(self) -> bool:
        """True if this expense has been soft-deleted."""
        return self.deleted_at is not None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"trip_id={self.trip_id} "
            f"amount={self.amount} {self.currency.value} "
            f"kind={self.split_kind.value} "
            f"deleted={self.is_deleted}>"
        )
