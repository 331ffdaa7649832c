"""
services/share_service.py: Read-only share links.

A share token (`shared-<project_id>-<8 base36 chars>`) gives anyone holding
it a read-only view of one project: its public fields, its expenses newest
first and the same analytics members see. No authentication is required to
read a shared view, and every member action is reported as disabled.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from spendsync.app.services import expense_service, project_service

# Actions a viewer of a shared link may not take.
_DISABLED_PERMISSIONS = {
    "can_add_expense": False,
    "can_edit_expense": False,
    "can_delete_expense": False,
    "can_edit_project": False,
    "can_share": False,
}


def share_project(
        project_id: str,
        caller_id: str,
        session: Session,
        regenerate: bool = False,
) -> dict:
    """
    Returns the project's share token, creating one when it has none.
    `regenerate=True` always issues a new token, which revokes the old link.
    """
    project = project_service.get_member_project(project_id, caller_id, session)
    created = False
    if regenerate or not project.shareable_id:
        project_service.generate_share_token(project.id, session)
        created = True
    return {
        "project_id": project.id,
        "shareable_id": project.shareable_id,
        "created": created,
    }


def get_shared_view(
        token: str,
        session: Session,
        month: int | None = None,
        year: int | None = None,
) -> dict:
    """
    Raises:
      AppError(SHARE_NOT_FOUND, 404)
    """
    project = project_service.resolve_by_share_token(token, session)

    project_dict = project_service.build_project_dict(project)
    # Member emails are not shown to anonymous viewers.
    project_dict.pop("member_emails", None)
    for member in project_dict["members"]:
        member.pop("email", None)

    summary = project_service.summarize_project(project, session, month=month, year=year)
    for row in summary["members"]:
        row.pop("email", None)

    expenses = [
        expense_service.build_expense_dict(e)
        for e in project_service.project_expenses(project.id, session)
    ]

    return {
        "project": project_dict,
        "expenses": expenses,
        "summary": summary,
        "read_only": True,
        "permissions": dict(_DISABLED_PERMISSIONS),
    }
