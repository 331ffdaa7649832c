"""
models/notification.py: Notification table definition.

Each row belongs to one recipient. Rows are written by the notification
fan-out when an expense is added, edited or deleted, one per project member
other than the actor, and removed when the recipient clears the list.

`project_id` and `expense_id` are plain strings, not FKs: a notification about
a deleted expense (or project) must survive the deletion.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from spendsync.app.extensions import db
from spendsync.app.models.user import new_id, utcnow


class NotificationType(str, enum.Enum):
    EXPENSE_ADDED   = "expense_added"
    EXPENSE_EDITED  = "expense_edited"
    EXPENSE_DELETED = "expense_deleted"


class Notification(db.Model):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("idx_notifications_recipient_created", "recipient_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    recipient_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    type: Mapped[NotificationType] = mapped_column(
        Enum(
            NotificationType,
            name="notification_type_enum",
            native_enum=False,
            length=32,
            values_callable=lambda cls: [m.value for m in cls],
        ),
        nullable=False,
    )

    project_id: Mapped[str] = mapped_column(String(32), nullable=False)
    expense_id: Mapped[str] = mapped_column(String(32), nullable=False)

    actor_id: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Snapshot of the expense at the time of the event.
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Notification id={self.id} "
            f"recipient_id={self.recipient_id} "
            f"type={self.type.value}>"
        )
