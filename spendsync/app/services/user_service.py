"""
services/user_service.py: User directory.

Resolves people by email when members are assigned to a project, and by id
when the aggregation engine meets an expense creator who is no longer a
declared member.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Read-only: users are created by auth_service.register_user().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spendsync.app.errors import AppError, ErrorCode
from spendsync.app.models.user import User


@dataclass(frozen=True)
class UserProfile:
    """The public part of a user record."""

    id: str
    display_name: str
    email: str
    avatar_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "avatar_url": self.avatar_url,
        }


def normalise_email(email: str) -> str:
    return email.strip().lower()


def to_profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        display_name=user.display_name,
        email=user.email,
        avatar_url=user.avatar_url,
    )


def build_user_dict(user: User) -> dict:
    return {
        **to_profile(user).to_dict(),
        "created_at": user.created_at.isoformat(),
    }


# ── Lookups ────────────────────────────────────────────────────────────────

def find_by_email(email: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.email == normalise_email(email))
    ).scalar_one_or_none()


def get_user(user_id: str, session: Session) -> User:
    """Raises AppError(USER_NOT_FOUND, 404) when the id is unknown."""
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return user


def get_user_by_email(email: str, session: Session) -> dict:
    user = find_by_email(email, session)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"No user is registered with the email '{email}'.",
            404,
        )
    return to_profile(user).to_dict()


def list_users(session: Session, search: str | None = None) -> list[dict]:
    """
    Returns every user's public profile ordered by display name.
    `search` filters case-insensitively on display name or email.
    """
    stmt = select(User).order_by(func.lower(User.display_name).asc(), User.email.asc())
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            func.lower(User.display_name).like(pattern) | User.email.like(pattern)
        )
    return [to_profile(u).to_dict() for u in session.execute(stmt).scalars()]


def resolve_emails(
        emails: Iterable[str],
        session: Session,
) -> tuple[dict[str, User], list[str]]:
    """
    Looks up every email in one query.

    Returns (found, missing): `found` maps normalised email -> User and
    `missing` lists every email without a user, in input order.
    """
    wanted = [normalise_email(e) for e in emails]
    if not wanted:
        return {}, []

    rows = session.execute(
        select(User).where(User.email.in_(set(wanted)))
    ).scalars().all()
    found = {u.email: u for u in rows}

    missing: list[str] = []
    for email in wanted:
        if email not in found and email not in missing:
            missing.append(email)
    return found, missing


def lookup_profiles(user_ids: Iterable[str], session: Session) -> dict[str, UserProfile]:
    """Fetches the profiles for `user_ids`; unknown ids are left out."""
    ids = set(user_ids)
    if not ids:
        return {}
    rows = session.execute(select(User).where(User.id.in_(ids))).scalars().all()
    return {u.id: to_profile(u) for u in rows}
