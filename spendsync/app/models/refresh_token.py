"""
models/refresh_token.py: Long-lived login sessions.

One row per successful register or login. The client holds the raw token;
the row keeps only its SHA-256 hex digest (auth_service._hash_token), so the
table alone cannot be replayed against POST /auth/refresh.

Lifecycle:
  issued     register_user / login_user, expires_at = now + JWT_REFRESH_TOKEN_EXPIRES
  used       refresh_access_token mints access tokens; the row is not rotated
  revoked    logout_user sets `revoked`; the row stays for auditing

Rows go away with their user (user_id ON DELETE CASCADE).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendsync.app.extensions import db
from spendsync.app.models.user import new_id, utcnow

# hashlib.sha256(...).hexdigest()
TOKEN_DIGEST_LENGTH = 64


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    __table_args__ = (
        Index("ix_refresh_tokens_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    token_hash: Mapped[str] = mapped_column(
        String(TOKEN_DIGEST_LENGTH),
        nullable=False,
        unique=True,
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    revoked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        state = "revoked" if self.revoked else f"expires {self.expires_at}"
        return f"<RefreshToken {self.id} user={self.user_id} {state}>"
