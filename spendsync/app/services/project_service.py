"""
services/project_service.py: Project and member business logic.

Rules enforced here:
  - MEMBER_NOT_FOUND (422): every member email must resolve to a user. All
    unresolved emails are reported together in details.emails.
  - CONTRIBUTION_MISMATCH (422): for shared-budget projects the member
    contributions must add up to total_budget, at creation and on every edit
    that touches members or the budget.
  - PERSONAL_PROJECT_MEMBERS (422): a "Simple (Personal)" project only ever
    has its owner as member.
  - FORBIDDEN (403): only members read or edit a project; only the owner
    deletes it.

All checks run before anything is written.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility; only flush here.
"""

from __future__ import annotations

import logging
import secrets
import string
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendsync.app.errors import AppError, ErrorCode
from spendsync.app.models.expense import Expense
from spendsync.app.models.project import (
    DEFAULT_CATEGORIES,
    TEMPLATES_BY_TYPE,
    Project,
    ProjectType,
)
from spendsync.app.models.project_member import ProjectMember
from spendsync.app.models.user import User, utcnow
from spendsync.app.services import aggregation_service, user_service
from spendsync.app.storage import delete_after_commit

logger = logging.getLogger(__name__)

_SHARE_ALPHABET = string.digits + string.ascii_lowercase
_SHARE_SUFFIX_LENGTH = 8


# ── Private helpers ────────────────────────────────────────────────────────

def _get_project_or_404(project_id: str, session: Session) -> Project:
    project = session.get(Project, project_id)
    if project is None:
        raise AppError(
            ErrorCode.PROJECT_NOT_FOUND,
            f"Project {project_id} does not exist.",
            404,
        )
    return project


def find_member(project: Project, user_id: str) -> ProjectMember | None:
    for member in project.members:
        if member.user_id == user_id:
            return member
    return None


def require_member(project: Project, user_id: str) -> ProjectMember:
    """Raises FORBIDDEN (403) if user_id is not a member of the project."""
    member = find_member(project, user_id)
    if member is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of project {project.id}.",
            403,
        )
    return member


def get_member_project(project_id: str, user_id: str, session: Session) -> Project:
    """PROJECT_NOT_FOUND (404) first, then FORBIDDEN (403)."""
    project = _get_project_or_404(project_id, session)
    require_member(project, user_id)
    return project


def _money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(Decimal("0.01"))


def check_contributions(total_budget: Decimal, contributions: Iterable[Decimal]) -> None:
    """
    Raises CONTRIBUTION_MISMATCH (422) unless the contributions add up to the
    total budget exactly.
    """
    total_budget = _money(total_budget)
    contributions_total = sum((_money(c) for c in contributions), Decimal("0.00"))
    if contributions_total != total_budget:
        raise AppError(
            ErrorCode.CONTRIBUTION_MISMATCH,
            f"Member contributions add up to {contributions_total} "
            f"but the total budget is {total_budget}.",
            422,
            field="members",
            details={
                "contributions_total": str(contributions_total),
                "total_budget": str(total_budget),
                "difference": str(contributions_total - total_budget),
            },
        )


def _resolve_members(
        member_inputs: list[dict],
        owner: User,
        session: Session,
        *,
        personal: bool,
) -> list[dict]:
    """
    Turns [{email, contribution}] into member dicts with the user's profile.

    The owner is appended with a zero contribution when not listed.
    Raises MEMBER_NOT_FOUND or PERSONAL_PROJECT_MEMBERS (422).
    """
    found, missing = user_service.resolve_emails(
        (m["email"] for m in member_inputs), session
    )
    if missing:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            "No user is registered with: " + ", ".join(missing) + ".",
            422,
            field="members",
            details={"emails": missing},
        )

    resolved: list[dict] = []
    for entry in member_inputs:
        user = found[user_service.normalise_email(entry["email"])]
        resolved.append({
            "user": user,
            "contribution": _money(entry.get("contribution")),
        })

    if not any(r["user"].id == owner.id for r in resolved):
        resolved.insert(0, {"user": owner, "contribution": Decimal("0.00")})

    if personal:
        extra = [r["user"].email for r in resolved if r["user"].id != owner.id]
        if extra:
            raise AppError(
                ErrorCode.PERSONAL_PROJECT_MEMBERS,
                "A personal project cannot have members other than its owner.",
                422,
                field="members",
                details={"emails": extra},
            )

    return resolved


def _member_rows(resolved: list[dict]) -> list[dict]:
    return [
        {
            "user_id": r["user"].id,
            "display_name": r["user"].display_name,
            "email": r["user"].email,
            "avatar_url": r["user"].avatar_url,
            "contribution": r["contribution"],
        }
        for r in resolved
    ]


def _new_share_token(project_id: str) -> str:
    suffix = "".join(secrets.choice(_SHARE_ALPHABET) for _ in range(_SHARE_SUFFIX_LENGTH))
    return f"shared-{project_id}-{suffix}"


def build_member_dict(member: ProjectMember) -> dict:
    return {
        "user_id": member.user_id,
        "display_name": member.display_name,
        "email": member.email,
        "avatar_url": member.avatar_url,
        "contribution": _money(member.contribution),
    }


def build_project_dict(project: Project) -> dict:
    template = TEMPLATES_BY_TYPE.get(project.project_type)
    categories = list(template.categories) if template and template.categories else list(DEFAULT_CATEGORIES)
    return {
        "id": project.id,
        "name": project.name,
        "project_type": project.project_type.value,
        "budget_mode": aggregation_service.budget_mode(project).value,
        "shared_budget": project.shared_budget,
        "total_budget": _money(project.total_budget),
        "monthly_budget": _money(project.monthly_budget) if project.monthly_budget is not None else None,
        "owner_id": project.owner_id,
        "members": [build_member_dict(m) for m in project.members],
        "member_emails": list(project.member_emails or []),
        "categories": categories,
        "shareable_id": project.shareable_id,
        "created_at": project.created_at.isoformat(),
        "updated_at": project.updated_at.isoformat() if project.updated_at else None,
    }


def project_expenses(project_id: str, session: Session) -> list[Expense]:
    """All expenses of a project, newest first."""
    return list(session.execute(
        select(Expense)
        .where(Expense.project_id == project_id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    ).scalars().all())


# ── Public service functions ───────────────────────────────────────────────

def list_templates() -> list[dict]:
    return [t.to_dict() for t in TEMPLATES_BY_TYPE.values()]


def create_project(
        name: str,
        owner_id: str,
        session: Session,
        project_type: ProjectType = ProjectType.CUSTOM,
        total_budget: Decimal = Decimal("0"),
        monthly_budget: Decimal | None = None,
        members: list[dict] | None = None,
) -> dict:
    """
    Creates a project owned by `owner_id`.

    Raises:
      AppError(MEMBER_NOT_FOUND, 422)
      AppError(PERSONAL_PROJECT_MEMBERS, 422)
      AppError(CONTRIBUTION_MISMATCH, 422)

    Returns: the project dict, id included. shareable_id starts out null.
    """
    owner = user_service.get_user(owner_id, session)
    template = TEMPLATES_BY_TYPE[project_type]
    personal = not template.shared_budget

    resolved = _resolve_members(members or [], owner, session, personal=personal)

    if personal:
        total_budget = Decimal("0.00")
        resolved = [{"user": owner, "contribution": Decimal("0.00")}]
    else:
        check_contributions(total_budget, (r["contribution"] for r in resolved))

    project = Project(
        name=name.strip(),
        project_type=project_type,
        total_budget=_money(total_budget),
        monthly_budget=_money(monthly_budget) if monthly_budget is not None else None,
        shared_budget=template.shared_budget,
        owner_id=owner.id,
        member_emails=[r["user"].email for r in resolved],
        shareable_id=None,
    )
    project.members = [
        ProjectMember(position=position, **row)
        for position, row in enumerate(_member_rows(resolved))
    ]
    session.add(project)
    session.flush()

    logger.info("Project %s created by %s with %d member(s)", project.id, owner.id, len(resolved))
    return build_project_dict(project)


def update_project(project: Project, fields: dict, session: Session) -> Project:
    """
    Merges `fields` into the project as given. Does not re-check the
    contribution rule; edit_project() does that before calling.

    Accepted keys: name, total_budget, monthly_budget, member_emails and
    members (a list of dicts with user_id, display_name, email, avatar_url
    and contribution). `members` replaces the member set and rewrites
    member_emails.
    """
    for key in ("name", "total_budget", "monthly_budget", "member_emails"):
        if key in fields:
            setattr(project, key, fields[key])

    if "members" in fields:
        existing = {m.user_id: m for m in project.members}
        kept: list[ProjectMember] = []
        for position, row in enumerate(fields["members"]):
            member = existing.get(row["user_id"]) or ProjectMember(user_id=row["user_id"])
            member.display_name = row["display_name"]
            member.email = row["email"]
            member.avatar_url = row.get("avatar_url")
            member.contribution = _money(row.get("contribution"))
            member.position = position
            kept.append(member)
        project.members = kept
        project.member_emails = [m.email for m in kept]

    project.updated_at = utcnow()
    session.flush()
    return project


def edit_project(project_id: str, caller_id: str, data: dict, session: Session) -> dict:
    """
    Member-initiated edit of name, budgets and members.

    The contribution rule is checked against the effective values: the
    given fields merged over what is stored.

    Raises:
      AppError(PROJECT_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)
      AppError(MEMBER_NOT_FOUND, 422)
      AppError(PERSONAL_PROJECT_MEMBERS, 422)
      AppError(CONTRIBUTION_MISMATCH, 422)
    """
    project = get_member_project(project_id, caller_id, session)
    owner = user_service.get_user(project.owner_id, session)
    fields: dict = {}

    if "name" in data:
        fields["name"] = data["name"].strip()

    if not project.shared_budget:
        if "members" in data:
            _resolve_members(data["members"], owner, session, personal=True)
        for key in ("total_budget", "monthly_budget"):
            if data.get(key):
                raise AppError(
                    ErrorCode.INVALID_FIELD,
                    "A personal project has no budget.",
                    400,
                    field=key,
                )
        update_project(project, fields, session)
        return build_project_dict(project)

    if "members" in data:
        member_rows = _member_rows(
            _resolve_members(data["members"], owner, session, personal=False)
        )
    else:
        member_rows = [build_member_dict(m) for m in project.members]

    total_budget = data.get("total_budget", project.total_budget)

    if "members" in data or "total_budget" in data:
        check_contributions(total_budget, (r["contribution"] for r in member_rows))
        fields["total_budget"] = _money(total_budget)
    if "members" in data:
        fields["members"] = member_rows
    if "monthly_budget" in data:
        monthly = data["monthly_budget"]
        fields["monthly_budget"] = _money(monthly) if monthly is not None else None

    update_project(project, fields, session)
    logger.info("Project %s edited by %s (%s)", project.id, caller_id, ", ".join(sorted(fields)))
    return build_project_dict(project)


def delete_project(
        project_id: str,
        caller_id: str,
        session: Session,
) -> list[str]:
    """
    Deletes the project and every expense in it. Owner only.
    A second call raises PROJECT_NOT_FOUND (404).

    Receipt files are queued with delete_after_commit() and removed by the
    route once the commit succeeds, so a failed request leaves every file
    in place.

    Returns: the ids of the former members.
    """
    project = _get_project_or_404(project_id, session)
    if project.owner_id != caller_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the project owner may delete the project.",
            403,
        )

    member_ids = [m.user_id for m in project.members]
    expenses = project_expenses(project_id, session)
    paths = [path for e in expenses for path in e.stored_paths()]

    for expense in expenses:
        session.delete(expense)
    session.delete(project)
    session.flush()

    delete_after_commit(session, paths)

    logger.info(
        "Project %s deleted by %s (%d expense(s), %d file(s))",
        project_id, caller_id, len(expenses), len(paths),
    )
    return member_ids


def generate_share_token(project_id: str, session: Session) -> str:
    """Issues a new share token and stores it; any previous token stops working."""
    project = _get_project_or_404(project_id, session)
    project.shareable_id = _new_share_token(project.id)
    session.flush()
    return project.shareable_id


def resolve_by_share_token(token: str, session: Session) -> Project:
    """Raises AppError(SHARE_NOT_FOUND, 404) for an unknown or revoked token."""
    project = session.execute(
        select(Project).where(Project.shareable_id == token)
    ).scalar_one_or_none()
    if project is None:
        raise AppError(
            ErrorCode.SHARE_NOT_FOUND,
            "This share link is invalid or has been replaced.",
            404,
        )
    return project


def list_projects(user_id: str, session: Session) -> list[dict]:
    """Projects the user is a member of, newest first."""
    stmt = (
        select(Project)
        .join(ProjectMember, Project.id == ProjectMember.project_id)
        .where(ProjectMember.user_id == user_id)
        .order_by(Project.created_at.desc())
    )
    return [build_project_dict(p) for p in session.execute(stmt).scalars().all()]


def get_project(project_id: str, caller_id: str, session: Session) -> dict:
    return build_project_dict(get_member_project(project_id, caller_id, session))


def summarize_project(
        project: Project,
        session: Session,
        month: int | None = None,
        year: int | None = None,
) -> dict:
    """Runs the aggregation engine over the stored project and its expenses."""
    expenses = project_expenses(project.id, session)
    declared = {m.user_id for m in project.members}
    outsiders = {e.created_by for e in expenses} - declared
    profiles = user_service.lookup_profiles(outsiders, session)

    return aggregation_service.compute_project_summary(
        project,
        project.members,
        expenses,
        month=month,
        year=year,
        resolve_user=profiles.get,
    )


def get_summary(
        project_id: str,
        caller_id: str,
        session: Session,
        month: int | None = None,
        year: int | None = None,
) -> dict:
    project = get_member_project(project_id, caller_id, session)
    return summarize_project(project, session, month=month, year=year)


def get_dashboard(user_id: str, session: Session) -> dict:
    stmt = (
        select(Project)
        .join(ProjectMember, Project.id == ProjectMember.project_id)
        .where(ProjectMember.user_id == user_id)
        .order_by(Project.created_at.desc())
    )
    projects = session.execute(stmt).scalars().all()
    return aggregation_service.summarize_dashboard(
        (p, summarize_project(p, session)) for p in projects
    )
