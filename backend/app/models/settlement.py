"""
models/settlement.py — SettlementSummary and PersonSummaryEntry tables.

The settlement snapshot for a trip: one SettlementSummary row (keyed by
trip_id) plus one PersonSummaryEntry per participant. The snapshot is
replaced wholesale on every recompute, never patched, and only
services/settlement_repository.py writes it.

Key design points:
  - `net_base` = total_paid_base − total_owed_base, adjusted for transfers
    already marked settled. Σ net_base over a trip is always zero.
  - Amounts are Numeric(15, 3), never Float.
  - `last_computed_at` is compared against Trip.last_modified_at to decide
    whether the snapshot is stale.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.currency import Currency
from backend.app.models.expense import _enum_values


class SettlementSummary(db.Model):
    __tablename__ = "settlement_summaries"

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"),
        primary_key=True,
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

    last_computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    person_summaries: Mapped[list["PersonSummaryEntry"]] = relationship(
        "PersonSummaryEntry",
        back_populates="summary",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PersonSummaryEntry.user_id",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<SettlementSummary trip_id={self.trip_id} "
            f"last_computed_at={self.last_computed_at}>"
        )


class PersonSummaryEntry(db.Model):
    __tablename__ = "person_summaries"

    __table_args__ = (
        UniqueConstraint("trip_id", "user_id", name="uq_person_summaries_trip_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("settlement_summaries.trip_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    total_paid_base: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)
    total_owed_base: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)
    net_base: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)

    summary: Mapped["SettlementSummary"] = relationship(
        "SettlementSummary",
        back_populates="person_summaries",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PersonSummaryEntry trip_id={self.trip_id} "
            f"user_id={self.user_id} net_base={self.net_base}>"
        )
