"""
models/expense_participant.py — ExpenseParticipant table definition.

One row per user who shares an equal or weighted expense.

Key design points:
  - `weight` is only meaningful for weighted expenses; equal expenses store 1.
  - `position` fixes the order remainders are handed out in, so the same
    expense always allocates the same way.
  - UNIQUE(expense_id, user_id): a user appears at most once per expense.

The allocation itself (sum of shares == expense amount) is derived on the
fly by services/split_allocator.py and never stored.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class ExpenseParticipant(db.Model):
    __tablename__ = "expense_participants"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_expense_participants_expense_user"),
        CheckConstraint("weight > 0", name="ck_expense_participants_weight_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    weight: Mapped[Decimal] = mapped_column(
        Numeric(12, 4),
        nullable=False,
        default=Decimal("1"),
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="participants",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ExpenseParticipant expense_id={self.expense_id} "
            f"user_id={self.user_id} "
            f"weight={self.weight}>"
        )
