"""
models/project_member.py: ProjectMember table definition.

One row per (project, user). Display name, email and avatar are copied from
the user record when the member is added, so a project renders its member
list without reading `users`. `contribution` is the member's share of a
shared budget.

FK policy: project_id ON DELETE CASCADE (members go with their project);
user_id ON DELETE RESTRICT.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendsync.app.extensions import db
from spendsync.app.models.user import utcnow


class ProjectMember(db.Model):
    __tablename__ = "project_members"

    __table_args__ = (
        # A user can only belong to a project once.
        UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    display_name: Mapped[str] = mapped_column(String(100), nullable=False)

    email: Mapped[str] = mapped_column(String(255), nullable=False)

    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    contribution: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    # Order in which members were listed when the member set was written.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    project: Mapped["Project"] = relationship(  # noqa: F821
        "Project",
        back_populates="members",
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ProjectMember id={self.id} "
            f"project_id={self.project_id} "
            f"user_id={self.user_id}>"
        )
