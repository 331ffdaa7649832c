"""
routes/auth.py: Authentication route handlers.

Route pattern:
  - Parse and validate the request body with a schema
  - Call one service function
  - Commit the DB session
  - Return the envelope: {"data": {...}, "warnings": []}

Endpoints (url_prefix=/api/v1/auth):
  POST   /auth/register  -> 201
  POST   /auth/login     -> 200
  POST   /auth/refresh   -> 200
  POST   /auth/logout    -> 200
  GET    /auth/me        -> 200
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from spendsync.app.extensions import db
from spendsync.app.middleware.auth_middleware import require_auth
from spendsync.app.schemas.auth_schema import LoginSchema, RefreshTokenSchema, RegisterSchema
from spendsync.app.services import auth_service

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register: create an account and return tokens."""
    data = RegisterSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.register_user(
        display_name=data["display_name"],
        email=data["email"],
        password=data["password"],
        avatar_url=data.get("avatar_url"),
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login: authenticate and return tokens."""
    data = LoginSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.login_user(
        email=data["email"],
        password=data["password"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh: exchange a refresh token for a new access token."""
    data = RefreshTokenSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.refresh_access_token(
        raw_refresh_token=data["refresh_token"],
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """POST /auth/logout: revoke a refresh token."""
    data = RefreshTokenSchema().load(request.get_json(force=True, silent=True) or {})
    auth_service.logout_user(
        raw_refresh_token=data["refresh_token"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": {"message": "Logged out successfully."}, "warnings": []}), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me: current user profile."""
    result = auth_service.get_current_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
