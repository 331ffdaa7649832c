"""
models/expense.py: Expense table definition.

Key design points:
  - `amount` uses Numeric(12, 2). Never Float. Strictly positive.
  - `category` is a free string. Templates suggest categories; "Other" is the
    catch-all default.
  - `created_at` is client-supplied (the date the money was spent) or the
    time of insertion. Listings and aggregation always order by it, newest
    first.
  - Receipts live in `expense_receipts`. `image_url` / `image_path` are the
    legacy single-attachment fields, still read and cleaned up on delete.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendsync.app.extensions import db
from spendsync.app.models.project import OTHER_CATEGORY
from spendsync.app.models.user import new_id, utcnow


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        # Newest-first listing per project.
        Index("idx_expenses_project_created", "project_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Not a FK on purpose: expenses keep their creator id even when the
    # creator later leaves the project.
    created_by: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    category: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=OTHER_CATEGORY,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Legacy single-attachment fields.
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    image_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # ── Relationships ──────────────────────────────────────────────────────

    project: Mapped["Project"] = relationship(  # noqa: F821
        "Project",
        back_populates="expenses",
    )

    receipts: Mapped[list["ExpenseReceipt"]] = relationship(  # noqa: F821
        "ExpenseReceipt",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseReceipt.position",
    )

    def stored_paths(self) -> list[str]:
        """Every storage path this expense owns, legacy image included."""
        paths = [r.path for r in self.receipts]
        if self.image_path and self.image_path not in paths:
            paths.append(self.image_path)
        return paths

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"project_id={self.project_id} "
            f"amount={self.amount}>"
        )
