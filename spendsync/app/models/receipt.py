"""
models/receipt.py: ExpenseReceipt table definition.

One row per stored receipt file. `path` is the storage key used to delete the
object; `url` is what clients download from.

FK policy: expense_id ON DELETE CASCADE. The storage object itself is deleted
by expense_service, never by the database.
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendsync.app.extensions import db


class ExpenseReceipt(db.Model):
    __tablename__ = "expense_receipts"

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[str] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    url: Mapped[str] = mapped_column(String(1024), nullable=False)

    path: Mapped[str] = mapped_column(String(1024), nullable=False)

    # Original filename as uploaded.
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    content_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="application/octet-stream",
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="receipts",
    )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "path": self.path,
            "name": self.name,
            "content_type": self.content_type,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ExpenseReceipt id={self.id} expense_id={self.expense_id} path={self.path!r}>"
