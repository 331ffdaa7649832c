"""
services/notification_service.py: Notification fan-out and inbox.

fan_out() writes one notification row per project member except the actor.
It runs inside the same session as the expense write that caused it, so the
expense change and its notifications commit (or roll back) together.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility; only flush here.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from spendsync.app.errors import AppError, ErrorCode
from spendsync.app.models.notification import Notification, NotificationType
from spendsync.app.models.project import Project

logger = logging.getLogger(__name__)

FALLBACK_ACTOR_NAME = "Someone"


def build_notification_dict(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "project_id": notification.project_id,
        "expense_id": notification.expense_id,
        "actor_id": notification.actor_id,
        "actor_name": notification.actor_name,
        "description": notification.description,
        "amount": Decimal(str(notification.amount)).quantize(Decimal("0.01")),
        "created_at": notification.created_at.isoformat(),
    }


def fan_out(
        project: Project,
        actor_id: str,
        event_type: NotificationType,
        expense_snapshot: dict,
        session: Session,
) -> list[str]:
    """
    Notifies every member of `project` except `actor_id`.

    `expense_snapshot` needs id, description and amount. For deletions it is
    taken before the expense row is removed.

    Returns: the recipient ids.
    """
    actor_name = FALLBACK_ACTOR_NAME
    recipients: list[str] = []
    for member in project.members:
        if member.user_id == actor_id:
            actor_name = member.display_name or FALLBACK_ACTOR_NAME
        else:
            recipients.append(member.user_id)

    for recipient_id in recipients:
        session.add(Notification(
            recipient_id=recipient_id,
            type=event_type,
            project_id=project.id,
            expense_id=expense_snapshot["id"],
            actor_id=actor_id,
            actor_name=actor_name,
            description=expense_snapshot["description"],
            amount=expense_snapshot["amount"],
        ))
    session.flush()

    logger.debug(
        "%s on expense %s fanned out to %d member(s)",
        event_type.value, expense_snapshot["id"], len(recipients),
    )
    return recipients


def list_notifications(recipient_id: str, session: Session) -> dict:
    """Returns {"notifications": [...newest first], "unread_count": n}."""
    rows = session.execute(
        select(Notification)
        .where(Notification.recipient_id == recipient_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
    ).scalars().all()
    notifications = [build_notification_dict(n) for n in rows]
    return {
        "notifications": notifications,
        "unread_count": len(notifications),
    }


def clear_notifications(recipient_id: str, session: Session) -> int:
    """Deletes every notification of the recipient; returns how many."""
    result = session.execute(
        delete(Notification).where(Notification.recipient_id == recipient_id)
    )
    session.flush()
    return result.rowcount or 0


def delete_notification(recipient_id: str, notification_id: str, session: Session) -> None:
    """
    Raises:
      AppError(NOTIFICATION_NOT_FOUND, 404): unknown id, or someone else's.
    """
    notification = session.get(Notification, notification_id)
    if notification is None or notification.recipient_id != recipient_id:
        raise AppError(
            ErrorCode.NOTIFICATION_NOT_FOUND,
            f"Notification {notification_id} does not exist.",
            404,
        )
    session.delete(notification)
    session.flush()
