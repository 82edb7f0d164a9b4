"""
models/line_item.py — LineItem and LineItemAssignment table definitions.

Line items only exist on itemized expenses.

  - item total = quantity × unit_price, rounded to the expense currency.
  - `taxable` items form the base for tax extras; `service_chargeable`
    items form the base for service-charge and tip extras.
  - Each item is assigned to one or more users. `share` is the fraction of
    the item a user takes; when every share on an item is NULL the item is
    split evenly. Explicit shares must sum to 1 (checked by the allocator).
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class LineItem(db.Model):
    __tablename__ = "line_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_line_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_line_items_unit_price_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)

    taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    service_chargeable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="line_items",
    )

    assignments: Mapped[list["LineItemAssignment"]] = relationship(
        "LineItemAssignment",
        back_populates="line_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="LineItemAssignment.position",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<LineItem id={self.id} "
            f"name={self.name!r} "
            f"quantity={self.quantity} "
            f"unit_price={self.unit_price}>"
        )


class LineItemAssignment(db.Model):
    __tablename__ = "line_item_assignments"

    __table_args__ = (
        UniqueConstraint("line_item_id", "user_id", name="uq_line_item_assignments_item_user"),
        CheckConstraint(
            "share IS NULL OR (share > 0 AND share <= 1)",
            name="ck_line_item_assignments_share_range",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    line_item_id: Mapped[int] = mapped_column(
        ForeignKey("line_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    share: Mapped[Decimal | None] = mapped_column(Numeric(9, 6), nullable=True)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    line_item: Mapped["LineItem"] = relationship(
        "LineItem",
        back_populates="assignments",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<LineItemAssignment line_item_id={self.line_item_id} "
            f"user_id={self.user_id} share={self.share}>"
        )
