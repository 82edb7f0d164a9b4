"""Initial schema — trips, expenses, split inputs, settlement snapshots.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only: never edit this file once it has been applied to a database.
Schema changes go in a NEW migration file.

Enums (currency, split kind, extra kind/mode) are stored as short VARCHAR
columns, not PostgreSQL enum types, so the same schema runs on SQLite in
tests. The models declare them with Enum(..., native_enum=False).

Creation order (FK dependencies):
  users → trips → trip_members → expenses → expense_participants,
  line_items → line_item_assignments, expense_extras →
  settlement_summaries → person_summaries, transfers

ON DELETE policies:
  trip_members.trip_id              → CASCADE   (membership owned by trip)
  expenses.trip_id                  → RESTRICT  (cannot delete trip with expenses)
  expense children (participants,
    line items, assignments, extras) → CASCADE   (owned by their expense)
  settlement_summaries.trip_id      → CASCADE   (derived data)
  person_summaries.trip_id          → CASCADE   (owned by the summary)
  transfers.trip_id                 → CASCADE   (derived data)
  every *.user_id                   → RESTRICT
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_users_display_name_nonempty",
        ),
    )

    op.create_table(
        "trips",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("base_currency", sa.String(3), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "last_modified_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["created_by_user_id"], ["users.id"], ondelete="RESTRICT"
        ),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_trips_name_nonempty"),
    )

    op.create_table(
        "trip_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("trip_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("trip_id", "user_id", name="uq_trip_members_trip_user"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("trip_id", sa.Integer(), nullable=False),
        sa.Column("paid_by_user_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(15, 3), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("split_kind", sa.String(16), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["paid_by_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
    )
    # Partial index: the settlement engine only ever reads active expenses.
    op.create_index(
        "idx_expenses_active",
        "expenses",
        ["trip_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "expense_participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expense_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("weight", sa.Numeric(12, 4), nullable=False, server_default="1"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["expense_id"], ["expenses.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint(
            "expense_id", "user_id", name="uq_expense_participants_expense_user"
        ),
        sa.CheckConstraint("weight > 0", name="ck_expense_participants_weight_positive"),
    )

    op.create_table(
        "line_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expense_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
        sa.Column("unit_price", sa.Numeric(15, 3), nullable=False),
        sa.Column("taxable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "service_chargeable", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["expense_id"], ["expenses.id"], ondelete="CASCADE"),
        sa.CheckConstraint("quantity > 0", name="ck_line_items_quantity_positive"),
        sa.CheckConstraint(
            "unit_price >= 0", name="ck_line_items_unit_price_non_negative"
        ),
    )

    op.create_table(
        "line_item_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("line_item_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("share", sa.Numeric(9, 6), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["line_item_id"], ["line_items.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint(
            "line_item_id", "user_id", name="uq_line_item_assignments_item_user"
        ),
        sa.CheckConstraint(
            "share IS NULL OR (share > 0 AND share <= 1)",
            name="ck_line_item_assignments_share_range",
        ),
    )

    op.create_table(
        "expense_extras",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expense_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("mode", sa.String(8), nullable=False),
        sa.Column("value", sa.Numeric(15, 3), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["expense_id"], ["expenses.id"], ondelete="CASCADE"),
        sa.CheckConstraint("value >= 0", name="ck_expense_extras_value_non_negative"),
    )

    op.create_table(
        "settlement_summaries",
        sa.Column("trip_id", sa.Integer(), nullable=False),
        sa.Column("base_currency", sa.String(3), nullable=False),
        sa.Column("last_computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("trip_id"),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "person_summaries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("trip_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("total_paid_base", sa.Numeric(15, 3), nullable=False),
        sa.Column("total_owed_base", sa.Numeric(15, 3), nullable=False),
        sa.Column("net_base", sa.Numeric(15, 3), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["trip_id"], ["settlement_summaries.trip_id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("trip_id", "user_id", name="uq_person_summaries_trip_user"),
    )

    op.create_table(
        "transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("trip_id", sa.Integer(), nullable=False),
        sa.Column("from_user_id", sa.Integer(), nullable=False),
        sa.Column("to_user_id", sa.Integer(), nullable=False),
        sa.Column("amount_base", sa.Numeric(15, 3), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_settled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["to_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("amount_base > 0", name="ck_transfers_amount_positive"),
        sa.CheckConstraint("from_user_id <> to_user_id", name="ck_transfers_not_self"),
    )
    op.create_index(
        "idx_transfers_trip_settled", "transfers", ["trip_id", "is_settled"]
    )


def downgrade() -> None:
    """Drops everything in reverse dependency order."""
    op.drop_index("idx_transfers_trip_settled", table_name="transfers")
    op.drop_table("transfers")
    op.drop_table("person_summaries")
    op.drop_table("settlement_summaries")
    op.drop_table("expense_extras")
    op.drop_table("line_item_assignments")
    op.drop_table("line_items")
    op.drop_table("expense_participants")
    op.drop_index("idx_expenses_active", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("trip_members")
    op.drop_table("trips")
    op.drop_table("users")
