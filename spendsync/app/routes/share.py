"""
routes/share.py: Public read-only project view.

Endpoints (url_prefix=/api/v1/share):
  GET /share/:token   -> 200  (no auth; ?month=&year= for monthly projects)
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from spendsync.app.extensions import db
from spendsync.app.routes.projects import summary_warnings
from spendsync.app.schemas.project_schema import PeriodQuerySchema
from spendsync.app.services import share_service

share_bp = Blueprint("share", __name__)


@share_bp.route("/<string:token>", methods=["GET"])
def get_shared_project(token: str):
    period = PeriodQuerySchema().load(request.args.to_dict())
    result = share_service.get_shared_view(
        token,
        db.session,
        month=period["month"],
        year=period["year"],
    )
    return jsonify({"data": result, "warnings": summary_warnings(result["summary"])}), 200
