"""
models/project.py: Project table definition and the project template catalogue.

Key design points:
  - `project_type` is one of the template names below. The template decides
    whether the project has a shared budget and whether it budgets per month.
  - `total_budget` and `monthly_budget` use Numeric(12, 2). Never Float.
  - Members live in `project_members` (see project_member.py). `member_emails`
    is a denormalized copy of their emails, kept for lookups.
  - `shareable_id` is NULL until the project is shared. The unique index on it
    is the token -> project lookup path for read-only share links.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendsync.app.extensions import db
from spendsync.app.models.user import new_id, utcnow


# ── Enum Definitions ───────────────────────────────────────────────────────

class ProjectType(str, enum.Enum):
    TRIP          = "Trip/Vacation"
    ROOMMATES     = "Roommates/Flatmates"
    EVENT         = "Event/Party"
    OFFICE        = "Office/Work Project"
    WEDDING       = "Wedding"
    FAMILY        = "Family Budget"
    CHARITY       = "Charity/Fundraiser"
    PERSONAL      = "Simple (Personal)"
    CUSTOM        = "Custom"


# Project types whose spending is tracked against a recurring monthly budget.
MONTHLY_BUDGET_TYPES = frozenset({ProjectType.ROOMMATES, ProjectType.FAMILY})

# Catch-all category; any other string is accepted as a custom category.
OTHER_CATEGORY = "Other"

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Construction Material",
    "Labor",
    "Equipment Rental",
    "Transportation",
    "Utilities",
    "Carpentering",
    "Painting",
    "Interior Design",
    "Consultancy",
    "Legal Fees",
    "Permits & Licenses",
    "Cleaning",
    "Miscellaneous",
    OTHER_CATEGORY,
)


@dataclass(frozen=True)
class ProjectTemplate:
    project_type: ProjectType
    description: str
    categories: tuple[str, ...]
    shared_budget: bool
    monthly_budget: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.project_type.value,
            "description": self.description,
            "categories": list(self.categories),
            "shared_budget": self.shared_budget,
            "monthly_budget": self.monthly_budget,
        }


PROJECT_TEMPLATES: tuple[ProjectTemplate, ...] = (
    ProjectTemplate(
        ProjectType.TRIP,
        "For group travel, holidays, or road trips.",
        ("Transport", "Accommodation", "Food", "Activities", "Shopping", "Miscellaneous"),
        shared_budget=True,
    ),
    ProjectTemplate(
        ProjectType.ROOMMATES,
        "For people sharing a home or apartment.",
        ("Rent", "Utilities", "Groceries", "Internet", "Cleaning", "Repairs"),
        shared_budget=True,
        monthly_budget=True,
    ),
    ProjectTemplate(
        ProjectType.EVENT,
        "For organizing parties, birthdays, or celebrations.",
        ("Venue", "Food & Drinks", "Decorations", "Entertainment", "Gifts"),
        shared_budget=True,
    ),
    ProjectTemplate(
        ProjectType.OFFICE,
        "For tracking shared work expenses.",
        ("Office Supplies", "Meals", "Travel", "Software", "Miscellaneous"),
        shared_budget=True,
    ),
    ProjectTemplate(
        ProjectType.WEDDING,
        "For wedding planning and expense tracking.",
        ("Venue", "Catering", "Attire", "Decorations", "Photography", "Gifts", "Miscellaneous"),
        shared_budget=True,
    ),
    ProjectTemplate(
        ProjectType.FAMILY,
        "For managing household or family expenses.",
        ("Groceries", "Utilities", "Education", "Healthcare", "Transport", "Entertainment"),
        shared_budget=True,
        monthly_budget=True,
    ),
    ProjectTemplate(
        ProjectType.CHARITY,
        "For organizing and tracking charity events or fundraisers.",
        ("Donations", "Venue", "Marketing", "Supplies", "Miscellaneous"),
        shared_budget=True,
    ),
    ProjectTemplate(
        ProjectType.PERSONAL,
        "Track your own expenses. No sharing or group calculations.",
        ("Food & Drinks", "Shopping", "Transport", "Entertainment", "Bills", "Miscellaneous"),
        shared_budget=False,
    ),
    ProjectTemplate(
        ProjectType.CUSTOM,
        "Start from scratch and define your own categories.",
        (),
        shared_budget=True,
    ),
)

TEMPLATES_BY_TYPE: dict[ProjectType, ProjectTemplate] = {
    t.project_type: t for t in PROJECT_TEMPLATES
}


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Store enum values (e.g. 'Trip/Vacation'), not names ('TRIP')."""
    return [member.value for member in enum_cls]


# ── Model ──────────────────────────────────────────────────────────────────

class Project(db.Model):
    __tablename__ = "projects"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_projects_name_nonempty",
        ),
        CheckConstraint("total_budget >= 0", name="ck_projects_total_budget_nonnegative"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    project_type: Mapped[ProjectType] = mapped_column(
        Enum(
            ProjectType,
            name="project_type_enum",
            native_enum=False,
            length=50,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ProjectType.CUSTOM,
    )

    total_budget: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    # Only meaningful for MONTHLY_BUDGET_TYPES.
    monthly_budget: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    shared_budget: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    member_emails: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    # ON DELETE RESTRICT: a user who owns a project cannot be deleted.
    owner_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    shareable_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        unique=True,
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

    # ── Relationships ──────────────────────────────────────────────────────

    owner: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[owner_id],
    )

    members: Mapped[list["ProjectMember"]] = relationship(  # noqa: F821
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectMember.position",
    )

    # Expenses are deleted explicitly by project_service.delete_project(),
    # which also removes their receipt files.
    expenses: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="project",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Project id={self.id} name={self.name!r} type={self.project_type.value!r}>"
