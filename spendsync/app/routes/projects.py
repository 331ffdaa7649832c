"""
routes/projects.py: Project route handlers.

Registered at url_prefix=/api/v1 because it owns both /projects/... and
/dashboard.

Route pattern: parse, validate, call one service, commit, publish the live
snapshot, return the envelope.

Endpoints:
  GET    /projects/templates        -> 200  template catalogue
  POST   /projects                  -> 201  create project
  GET    /projects                  -> 200  caller's projects
  GET    /projects/:id              -> 200  project + members
  PATCH  /projects/:id              -> 200  edit name, budgets, members
  DELETE /projects/:id              -> 200  delete project (owner only)
  GET    /projects/:id/summary      -> 200  analytics (?month=&year=)
  POST   /projects/:id/share        -> 200  share token (created if absent)
  GET    /dashboard                 -> 200  figures across the caller's projects
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from spendsync.app.errors import WarningCode
from spendsync.app.extensions import change_feed, db
from spendsync.app.middleware.auth_middleware import require_auth
from spendsync.app.schemas.project_schema import (
    CreateProjectSchema,
    PatchProjectSchema,
    PeriodQuerySchema,
    ShareProjectSchema,
)
from spendsync.app.services import live_service, project_service, share_service
from spendsync.app.storage import run_pending_deletes

projects_bp = Blueprint("projects", __name__)


def summary_warnings(summary: dict) -> list[dict]:
    if not summary.get("budget_warning"):
        return []
    return [{
        "code": WarningCode.BUDGET_ALMOST_EXHAUSTED,
        "message": "More than 80% of the budget has been spent.",
    }]


@projects_bp.route("/projects/templates", methods=["GET"])
def list_templates():
    """GET /projects/templates: project types with suggested categories. (No auth.)"""
    return jsonify({"data": project_service.list_templates(), "warnings": []}), 200


@projects_bp.route("/projects", methods=["POST"])
@require_auth
def create_project():
    data = CreateProjectSchema().load(request.get_json(force=True, silent=True) or {})
    result = project_service.create_project(
        name=data["name"],
        owner_id=g.user_id,
        session=db.session,
        project_type=data["project_type"],
        total_budget=data["total_budget"],
        monthly_budget=data["monthly_budget"],
        members=data["members"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@projects_bp.route("/projects", methods=["GET"])
@require_auth
def list_projects():
    result = project_service.list_projects(user_id=g.user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@projects_bp.route("/projects/<string:project_id>", methods=["GET"])
@require_auth
def get_project(project_id: str):
    result = project_service.get_project(project_id, g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@projects_bp.route("/projects/<string:project_id>", methods=["PATCH"])
@require_auth
def edit_project(project_id: str):
    data = PatchProjectSchema().load(request.get_json(force=True, silent=True) or {})
    result = project_service.edit_project(project_id, g.user_id, data, db.session)
    db.session.commit()
    live_service.publish_project(project_id, db.session, change_feed)
    return jsonify({"data": result, "warnings": []}), 200


@projects_bp.route("/projects/<string:project_id>", methods=["DELETE"])
@require_auth
def delete_project(project_id: str):
    """DELETE /projects/:id: removes the project, its expenses and receipt files."""
    project_service.delete_project(project_id, g.user_id, db.session)
    db.session.commit()
    run_pending_deletes(db.session, current_app.extensions["receipt_storage"])
    live_service.publish_project(project_id, db.session, change_feed)
    return jsonify({"data": {"id": project_id, "deleted": True}, "warnings": []}), 200


@projects_bp.route("/projects/<string:project_id>/summary", methods=["GET"])
@require_auth
def get_summary(project_id: str):
    period = PeriodQuerySchema().load(request.args.to_dict())
    result = project_service.get_summary(
        project_id,
        g.user_id,
        db.session,
        month=period["month"],
        year=period["year"],
    )
    return jsonify({"data": result, "warnings": summary_warnings(result)}), 200


@projects_bp.route("/projects/<string:project_id>/share", methods=["POST"])
@require_auth
def share_project(project_id: str):
    data = ShareProjectSchema().load(request.get_json(force=True, silent=True) or {})
    result = share_service.share_project(
        project_id,
        g.user_id,
        db.session,
        regenerate=data["regenerate"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@projects_bp.route("/dashboard", methods=["GET"])
@require_auth
def dashboard():
    result = project_service.get_dashboard(g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200
