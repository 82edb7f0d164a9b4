"""
models/user.py — User table definition.

Identity is owned by an external provider; this table only anchors the
user ids referenced by trips, expenses, and transfers. The id is the
provider's `sub` claim, so it is assigned by the caller, not autoincremented.
No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_users_display_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)

    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    memberships: Mapped[list["TripMember"]] = relationship(  # noqa: F821
        "TripMember",
        back_populates="user",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} display_name={self.display_name!r}>"
