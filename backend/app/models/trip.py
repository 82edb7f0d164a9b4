"""
models/trip.py — Trip table definition.

A trip owns its expenses and its settlement snapshot.

Key design points:
  - `base_currency` is the currency the settlement is expressed in. Expenses
    in any other currency are excluded from the settlement computation.
  - `last_modified_at` is bumped by every mutation that can change the
    settlement (expense created/deleted, transfer marked settled). The
    settlement service compares it with SettlementSummary.last_computed_at
    to decide whether a recompute is needed.
  - The trip row doubles as the per-trip lock: recompute and settle-transfer
    both take SELECT ... FOR UPDATE on it before touching the snapshot.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.currency import Currency
from backend.app.models.expense import _enum_values


class Trip(db.Model):
    __tablename__ = "trips"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_trips_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    base_currency: Mapped[Currency] = mapped_column(
        Enum(
            Currency,
            name="currency_code",
            native_enum=False,
            length=3,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    created_by_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    last_modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    members: Mapped[list["TripMember"]] = relationship(  # noqa: F821
        "TripMember",
        back_populates="trip",
        cascade="all, delete-orphan",
    )

    expenses: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="trip",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Trip id={self.id} "
            f"name={self.name!r} "
            f"base_currency={self.base_currency.value}>"
        )
