"""
routes/expenses.py: Expense route handlers.

Registered at url_prefix=/api/v1/projects.

Bodies are JSON, or multipart/form-data when receipt files are attached:
form fields carry the expense fields, the `files` part carries the uploads,
and on PATCH the `receipts` field is a JSON-encoded list of stored receipts
to keep.

Endpoints:
  POST   /projects/:id/expenses               -> 201  add expense
  GET    /projects/:id/expenses               -> 200  list (?month=&year=)
  GET    /projects/:id/expenses/:expense_id   -> 200  get expense
  PATCH  /projects/:id/expenses/:expense_id   -> 200  edit (creator only)
  DELETE /projects/:id/expenses/:expense_id   -> 200  delete (creator only)
"""

from __future__ import annotations

import json

from flask import Blueprint, current_app, g, jsonify, request

from spendsync.app.errors import AppError, ErrorCode
from spendsync.app.extensions import change_feed, db
from spendsync.app.middleware.auth_middleware import require_auth
from spendsync.app.schemas.expense_schema import CreateExpenseSchema, PatchExpenseSchema
from spendsync.app.schemas.project_schema import PeriodQuerySchema
from spendsync.app.services import expense_service, live_service
from spendsync.app.services.expense_service import ReceiptUpload
from spendsync.app.storage import run_pending_deletes

expenses_bp = Blueprint("expenses", __name__)


# ── Request parsing ────────────────────────────────────────────────────────

def _read_payload() -> tuple[dict, list[ReceiptUpload]]:
    """Returns (fields, uploads) for either a JSON or a multipart body."""
    if request.mimetype != "multipart/form-data":
        return request.get_json(force=True, silent=True) or {}, []

    payload = request.form.to_dict()
    if "receipts" in payload:
        try:
            payload["receipts"] = json.loads(payload["receipts"] or "[]")
        except ValueError:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                "receipts must be a JSON-encoded list.",
                400,
                field="receipts",
            )

    uploads = [
        ReceiptUpload(
            filename=f.filename,
            stream=f.stream,
            content_type=f.mimetype or "application/octet-stream",
        )
        for f in request.files.getlist("files")
        if f.filename
    ]
    return payload, uploads


def _storage():
    return current_app.extensions["receipt_storage"]


# ── Routes ─────────────────────────────────────────────────────────────────

@expenses_bp.route("/<string:project_id>/expenses", methods=["POST"])
@require_auth
def add_expense(project_id: str):
    payload, uploads = _read_payload()
    data = CreateExpenseSchema().load(payload)
    result = expense_service.add_expense(
        project_id,
        g.user_id,
        data,
        db.session,
        _storage(),
        files=uploads,
        max_receipts=current_app.config["MAX_RECEIPTS_PER_EXPENSE"],
    )
    db.session.commit()
    run_pending_deletes(db.session, _storage())
    live_service.publish_expense_change(project_id, g.user_id, db.session, change_feed)
    return jsonify({"data": result, "warnings": []}), 201


@expenses_bp.route("/<string:project_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(project_id: str):
    period = PeriodQuerySchema().load(request.args.to_dict())
    result = expense_service.list_expenses(
        project_id,
        g.user_id,
        db.session,
        month=period["month"],
        year=period["year"],
    )
    return jsonify({"data": result, "warnings": []}), 200


@expenses_bp.route("/<string:project_id>/expenses/<string:expense_id>", methods=["GET"])
@require_auth
def get_expense(project_id: str, expense_id: str):
    result = expense_service.get_expense(project_id, expense_id, g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@expenses_bp.route("/<string:project_id>/expenses/<string:expense_id>", methods=["PATCH"])
@require_auth
def update_expense(project_id: str, expense_id: str):
    payload, uploads = _read_payload()
    data = PatchExpenseSchema().load(payload)
    result = expense_service.update_expense(
        project_id,
        expense_id,
        g.user_id,
        data,
        db.session,
        _storage(),
        files=uploads,
        max_receipts=current_app.config["MAX_RECEIPTS_PER_EXPENSE"],
    )
    db.session.commit()
    run_pending_deletes(db.session, _storage())
    live_service.publish_expense_change(project_id, g.user_id, db.session, change_feed)
    return jsonify({"data": result, "warnings": []}), 200


@expenses_bp.route("/<string:project_id>/expenses/<string:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(project_id: str, expense_id: str):
    expense_service.delete_expense(project_id, expense_id, g.user_id, db.session)
    db.session.commit()
    run_pending_deletes(db.session, _storage())
    live_service.publish_expense_change(project_id, g.user_id, db.session, change_feed)
    return jsonify({"data": {"id": expense_id, "deleted": True}, "warnings": []}), 200
