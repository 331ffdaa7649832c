"""
services/live_service.py: Builds and publishes live snapshots.

Routes call these after a successful commit. A snapshot is only built when
the topic has subscribers.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from spendsync.app.live import (
    ChangeFeed,
    NotificationsSnapshot,
    ProjectSnapshot,
    notifications_topic,
    project_topic,
)
from spendsync.app.models.project import Project
from spendsync.app.services import expense_service, notification_service, project_service


def project_snapshot(project_id: str, session: Session) -> ProjectSnapshot:
    project = session.get(Project, project_id)
    if project is None:
        return ProjectSnapshot.build(project_id, None, [])
    return ProjectSnapshot.build(
        project_id,
        project_service.build_project_dict(project),
        [
            expense_service.build_expense_dict(e)
            for e in project_service.project_expenses(project_id, session)
        ],
    )


def notifications_snapshot(user_id: str, session: Session) -> NotificationsSnapshot:
    listing = notification_service.list_notifications(user_id, session)
    return NotificationsSnapshot.build(user_id, listing["notifications"])


def publish_project(project_id: str, session: Session, feed: ChangeFeed) -> int:
    topic = project_topic(project_id)
    if not feed.has_subscribers(topic):
        return 0
    return feed.publish(topic, project_snapshot(project_id, session))


def publish_expense_change(
        project_id: str,
        actor_id: str,
        session: Session,
        feed: ChangeFeed,
) -> int:
    """Project snapshot plus the inbox of every member the change notified."""
    delivered = publish_project(project_id, session, feed)
    project = session.get(Project, project_id)
    if project is not None:
        recipients = [m.user_id for m in project.members if m.user_id != actor_id]
        delivered += publish_notifications(recipients, session, feed)
    return delivered


def publish_notifications(user_ids: Iterable[str], session: Session, feed: ChangeFeed) -> int:
    delivered = 0
    for user_id in user_ids:
        topic = notifications_topic(user_id)
        if feed.has_subscribers(topic):
            delivered += feed.publish(topic, notifications_snapshot(user_id, session))
    return delivered
