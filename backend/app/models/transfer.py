"""
models/transfer.py — Transfer table definition.

A directed payment suggestion: `from_user_id` owes `to_user_id` `amount_base`
in the trip's base currency.

Lifecycle:
  - Pending transfers (is_settled = false) are recreated on every recompute;
    their ids do not survive.
  - A member marks a pending transfer settled (is_settled = true,
    settled_at = now). Settled rows are history: they are never deleted by a
    recompute and feed the reconciliation step of the next one.

Constraints mirror the ledger rules: amount > 0 and no self-transfers.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db


class Transfer(db.Model):
    __tablename__ = "transfers"

    __table_args__ = (
        CheckConstraint("amount_base > 0", name="ck_transfers_amount_positive"),
        CheckConstraint("from_user_id <> to_user_id", name="ck_transfers_not_self"),
        Index("idx_transfers_trip_settled", "trip_id", "is_settled"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
    )

    from_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    to_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount_base: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)

    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    is_settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Transfer id={self.id} "
            f"{self.from_user_id}->{self.to_user_id} "
            f"amount={self.amount_base} "
            f"settled={self.is_settled}>"
        )
