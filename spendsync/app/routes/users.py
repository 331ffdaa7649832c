"""
routes/users.py: User directory endpoints (member picker).

Endpoints (url_prefix=/api/v1/users):
  GET /users                    -> 200  (optional ?q= search)
  GET /users/by-email/<email>   -> 200
  GET /users/<user_id>          -> 200
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from spendsync.app.extensions import db
from spendsync.app.middleware.auth_middleware import require_auth
from spendsync.app.services import user_service

users_bp = Blueprint("users", __name__)


@users_bp.route("", methods=["GET"])
@require_auth
def list_users():
    result = user_service.list_users(db.session, search=request.args.get("q"))
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/by-email/<string:email>", methods=["GET"])
@require_auth
def get_user_by_email(email: str):
    result = user_service.get_user_by_email(email, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/<string:user_id>", methods=["GET"])
@require_auth
def get_user(user_id: str):
    user = user_service.get_user(user_id, db.session)
    return jsonify({"data": user_service.to_profile(user).to_dict(), "warnings": []}), 200
