"""
middleware/auth_middleware.py: Bearer token check for protected routes.

@require_auth resolves the caller before the view runs and exposes the id as
`flask.g.user_id`. Any failure becomes a 401 through the global AppError
handler:

  TOKEN_MISSING   no Authorization header at all
  TOKEN_INVALID   not "Bearer <jwt>", bad signature, or no usable `sub`
  TOKEN_EXPIRED   signature fine but `exp` has passed

Who may do what inside a project (member, expense creator, owner) is decided
by the services, which raise 403.
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from spendsync.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Usage:
        @projects_bp.route("/projects", methods=["GET"])
        @require_auth
        def list_projects():
            ... g.user_id ...
    """
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return wrapper


def _unauthorized(code: str, message: str) -> AppError:
    return AppError(code, message, 401)


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    if not header:
        raise _unauthorized(ErrorCode.TOKEN_MISSING, "Sign in first: no Authorization header was sent.")

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _unauthorized(ErrorCode.TOKEN_INVALID, "Expected 'Authorization: Bearer <token>'.")
    return token


def _authenticate_request() -> None:
    token = _bearer_token()

    try:
        claims = jwt.decode(
            token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized(
            ErrorCode.TOKEN_EXPIRED,
            "Access token expired; exchange your refresh token at POST /auth/refresh.",
        )
    except jwt.InvalidTokenError:
        raise _unauthorized(ErrorCode.TOKEN_INVALID, "Access token could not be verified.")

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise _unauthorized(ErrorCode.TOKEN_INVALID, "Access token does not name a user.")

    g.user_id = user_id
