"""
services/auth_service.py: Accounts, passwords and session tokens.

SpendSync is its own identity provider. A successful register or login opens
a session made of two tokens:

  access token    HS256 JWT whose `sub` is the user id. Short lived and
                  checked on every request by @require_auth.
  refresh token   64 random hex chars handed to the client exactly once.
                  Only its SHA-256 digest is persisted (refresh_tokens table),
                  so a database leak does not leak usable tokens. Logout
                  flips `revoked`; refresh does not rotate it.

Layer rules:
  - Services never touch flask.request or flask.g and never commit.
  - current_app.config is read for the JWT secret, TTLs and bcrypt cost.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from spendsync.app.errors import AppError, ErrorCode
from spendsync.app.models.refresh_token import RefreshToken
from spendsync.app.models.user import User
from spendsync.app.services import user_service

logger = logging.getLogger(__name__)


# ── Password and token primitives ──────────────────────────────────────────

def _hash_token(raw_token: str) -> str:
    """Digest stored in refresh_tokens.token_hash."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _hash_password(password: str) -> str:
    cost = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=cost)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def _password_matches(password: str, stored_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes even for timezone=True columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _issue_access_token(user_id: str) -> str:
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "iat": issued_at,
        "exp": issued_at + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"],
        # Two tokens minted in the same second still differ.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        claims,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def _issue_refresh_token(user_id: str, session: Session) -> str:
    raw = secrets.token_hex(32)
    session.add(RefreshToken(
        user_id=user_id,
        token_hash=_hash_token(raw),
        expires_at=datetime.now(timezone.utc) + current_app.config["JWT_REFRESH_TOKEN_EXPIRES"],
    ))
    session.flush()
    return raw


def _open_session(user: User, session: Session) -> dict:
    """Response body shared by register and login."""
    return {
        "user": user_service.build_user_dict(user),
        "access_token": _issue_access_token(user.id),
        "refresh_token": _issue_refresh_token(user.id, session),
    }


def _find_refresh_token(raw_token: str, session: Session) -> RefreshToken | None:
    return session.execute(
        select(RefreshToken).where(RefreshToken.token_hash == _hash_token(raw_token))
    ).scalar_one_or_none()


def _refresh_rejected(detail: str) -> AppError:
    return AppError(ErrorCode.REFRESH_TOKEN_INVALID, detail, 401)


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        display_name: str,
        email: str,
        password: str,
        session: Session,
        avatar_url: str | None = None,
) -> dict:
    """
    Creates the account and opens a session for it.

    Registration is the "first sign-in" of a user: the directory row written
    here is what project owners resolve member emails against.

    Raises:
      AppError(DUPLICATE_EMAIL, 409) when the email already has an account.
    """
    if user_service.find_by_email(email, session) is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            f"An account for '{email}' already exists.",
            409,
            field="email",
        )

    user = User(
        display_name=display_name,
        email=email,
        avatar_url=avatar_url,
        password_hash=_hash_password(password),
    )
    session.add(user)
    session.flush()

    logger.info("Registered user %s", user.id)
    return _open_session(user, session)


def login_user(email: str, password: str, session: Session) -> dict:
    """
    Opens a new session for an existing account.

    Unknown email and wrong password both raise INVALID_CREDENTIALS (401).
    """
    user = user_service.find_by_email(email, session)
    if user is None or not _password_matches(password, user.password_hash):
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "No account matches that email and password.",
            401,
        )
    return _open_session(user, session)


def refresh_access_token(raw_refresh_token: str, session: Session) -> dict:
    """Trades a live refresh token for a new access token."""
    record = _find_refresh_token(raw_refresh_token, session)

    if record is None:
        raise _refresh_rejected("Unknown refresh token.")
    if record.revoked:
        raise _refresh_rejected("This refresh token was revoked by a logout.")
    if _as_utc(record.expires_at) <= datetime.now(timezone.utc):
        raise _refresh_rejected("This refresh token has expired. Log in again.")

    return {"access_token": _issue_access_token(record.user_id)}


def logout_user(raw_refresh_token: str, session: Session) -> None:
    record = _find_refresh_token(raw_refresh_token, session)
    if record is None or record.revoked:
        raise _refresh_rejected("Unknown or already revoked refresh token.")

    record.revoked = True
    session.flush()


def get_current_user(user_id: str, session: Session) -> dict:
    return user_service.build_user_dict(user_service.get_user(user_id, session))
