"""
models/expense_extra.py — ExpenseExtra table definition.

Tax, service charge, tip, or discount attached to an itemized expense.
`mode` says whether `value` is a percentage of the extra's base or a fixed
amount in the expense currency. Discounts are stored as positive values and
subtracted by the allocator.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.expense import ExtraKind, ExtraMode, _enum_values


class ExpenseExtra(db.Model):
    __tablename__ = "expense_extras"

    __table_args__ = (
        CheckConstraint("value >= 0", name="ck_expense_extras_value_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    kind: Mapped[ExtraKind] = mapped_column(
        Enum(
            ExtraKind,
            name="extra_kind",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    mode: Mapped[ExtraMode] = mapped_column(
        Enum(
            ExtraMode,
            name="extra_mode",
            native_enum=False,
            length=8,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    value: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="extras",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ExpenseExtra expense_id={self.expense_id} "
            f"kind={self.kind.value} mode={self.mode.value} value={self.value}>"
        )
