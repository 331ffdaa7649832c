"""Initial schema: all tables, constraints and indexes.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only: this file must not be edited after it has been applied to any
database. Schema changes go in a new migration file.

Creation order:
  1. users, refresh_tokens
  2. projects, project_members
  3. expenses, expense_receipts
  4. notifications
  5. Indexes

Enum columns (project_type, notification type) are stored as VARCHAR with
their enum values, matching the models' Enum(native_enum=False).

ON DELETE policies:
  refresh_tokens.user_id        -> CASCADE   (token owned by user)
  projects.owner_id             -> RESTRICT  (cannot delete a project owner)
  project_members.project_id    -> CASCADE   (members owned by project)
  project_members.user_id       -> RESTRICT
  expenses.project_id           -> CASCADE   (expenses owned by project)
  expense_receipts.expense_id   -> CASCADE   (receipts owned by expense)
  notifications.recipient_id    -> CASCADE   (inbox owned by user)

expenses.created_by and the notification project/expense/actor ids are plain
strings so history survives members leaving and expenses being deleted.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration, no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── Step 1: users and refresh_tokens ──────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("avatar_url", sa.String(1024), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_users_display_name_nonempty",
        ),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column(
            "user_id",
            sa.String(32),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "revoked",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.UniqueConstraint("token_hash", name="uq_refresh_tokens_hash"),
    )

    # ── Step 2: projects and project_members ──────────────────────────────
    # shareable_id is NULL until first shared; the unique constraint doubles
    # as the token -> project lookup index.

    op.create_table(
        "projects",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("project_type", sa.String(50), nullable=False, server_default="Custom"),
        sa.Column("total_budget", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("monthly_budget", sa.Numeric(12, 2), nullable=True),
        sa.Column("shared_budget", sa.Boolean(), nullable=False, server_default=sa.text("TRUE")),
        sa.Column("member_emails", sa.JSON(), nullable=False),
        sa.Column(
            "owner_id",
            sa.String(32),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_projects_owner"),
            nullable=False,
        ),
        sa.Column("shareable_id", sa.String(128), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_projects"),
        sa.UniqueConstraint("shareable_id", name="uq_projects_shareable_id"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_projects_name_nonempty",
        ),
        sa.CheckConstraint("total_budget >= 0", name="ck_projects_total_budget_nonnegative"),
    )

    op.create_table(
        "project_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "project_id",
            sa.String(32),
            sa.ForeignKey("projects.id", ondelete="CASCADE", name="fk_project_members_project"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.String(32),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_project_members_user"),
            nullable=False,
        ),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("avatar_url", sa.String(1024), nullable=True),
        sa.Column("contribution", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_project_members"),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
    )

    # ── Step 3: expenses and expense_receipts ─────────────────────────────

    op.create_table(
        "expenses",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column(
            "project_id",
            sa.String(32),
            sa.ForeignKey("projects.id", ondelete="CASCADE", name="fk_expenses_project"),
            nullable=False,
        ),
        sa.Column("created_by", sa.String(32), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("category", sa.String(100), nullable=False, server_default="Other"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("image_path", sa.String(1024), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
    )

    op.create_table(
        "expense_receipts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.String(32),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_expense_receipts_expense"),
            nullable=False,
        ),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("path", sa.String(1024), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "content_type",
            sa.String(100),
            nullable=False,
            server_default="application/octet-stream",
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name="pk_expense_receipts"),
    )

    # ── Step 4: notifications ─────────────────────────────────────────────

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column(
            "recipient_id",
            sa.String(32),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_notifications_recipient"),
            nullable=False,
        ),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("project_id", sa.String(32), nullable=False),
        sa.Column("expense_id", sa.String(32), nullable=False),
        sa.Column("actor_id", sa.String(32), nullable=False),
        sa.Column("actor_name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
    )

    # ── Step 5: Indexes ────────────────────────────────────────────────────

    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])
    op.create_index("ix_projects_owner_id", "projects", ["owner_id"])
    op.create_index("ix_project_members_project_id", "project_members", ["project_id"])
    # Dashboard and project listing: "projects I belong to".
    op.create_index("ix_project_members_user_id", "project_members", ["user_id"])
    op.create_index("ix_expenses_project_id", "expenses", ["project_id"])
    op.create_index("ix_expenses_created_by", "expenses", ["created_by"])
    op.create_index(
        "idx_expenses_project_created",
        "expenses",
        ["project_id", "created_at"],
    )
    op.create_index("ix_expense_receipts_expense_id", "expense_receipts", ["expense_id"])
    op.create_index(
        "idx_notifications_recipient_created",
        "notifications",
        ["recipient_id", "created_at"],
    )


def downgrade() -> None:
    """Drops everything created in upgrade(), children first. Local resets only."""

    op.drop_index("idx_notifications_recipient_created", table_name="notifications")
    op.drop_index("ix_expense_receipts_expense_id",      table_name="expense_receipts")
    op.drop_index("idx_expenses_project_created",        table_name="expenses")
    op.drop_index("ix_expenses_created_by",              table_name="expenses")
    op.drop_index("ix_expenses_project_id",              table_name="expenses")
    op.drop_index("ix_project_members_user_id",          table_name="project_members")
    op.drop_index("ix_project_members_project_id",       table_name="project_members")
    op.drop_index("ix_projects_owner_id",                table_name="projects")
    op.drop_index("ix_refresh_tokens_user_id",           table_name="refresh_tokens")

    op.drop_table("notifications")
    op.drop_table("expense_receipts")
    op.drop_table("expenses")
    op.drop_table("project_members")
    op.drop_table("projects")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
