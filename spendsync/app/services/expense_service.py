"""
services/expense_service.py: Expense business logic.

Authorization rules:
  - Create, list, get: caller must be a project member (FORBIDDEN, 403)
  - Edit, delete:      caller must be the expense creator (FORBIDDEN, 403)

Receipts:
  - Uploads are stored under expenses/<project_id>/<epoch_millis>_<filename>.
    They are removed again if the service fails, or if the route's commit
    does not go through (storage.delete_on_rollback).
  - On edit, `receipts` (when given) is the set of stored receipts to keep;
    newly uploaded files are appended after them. Files of dropped receipts
    are removed only after the route commits (storage.delete_after_commit).
  - On delete, every receipt file and the legacy image_path are queued the
    same way. A failed commit leaves every file in place.

Every write fans out a notification to the other project members in the
same session (notification_service.fan_out).

Layer rules:
  - No Flask imports.
  - Commits are the route's responsibility; only flush here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import BinaryIO

from sqlalchemy.orm import Session

from spendsync.app.errors import AppError, ErrorCode
from spendsync.app.models.expense import Expense
from spendsync.app.models.notification import NotificationType
from spendsync.app.models.project import OTHER_CATEGORY, Project
from spendsync.app.models.receipt import ExpenseReceipt
from spendsync.app.models.user import utcnow
from spendsync.app.services import aggregation_service, notification_service, project_service
from spendsync.app.storage import (
    ReceiptStorage,
    delete_after_commit,
    delete_on_rollback,
    delete_quietly,
    receipt_key,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECEIPTS = 10


@dataclass(frozen=True)
class ReceiptUpload:
    """A file received with the request, not yet stored."""

    filename: str
    stream: BinaryIO
    content_type: str = "application/octet-stream"


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(project: Project, expense_id: str, session: Session) -> Expense:
    expense = session.get(Expense, expense_id)
    if expense is None or expense.project_id != project.id:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _require_creator(expense: Expense, user_id: str) -> None:
    if expense.created_by != user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the member who recorded this expense may change it.",
            403,
        )


def _check_receipt_count(count: int, max_receipts: int) -> None:
    if count > max_receipts:
        raise AppError(
            ErrorCode.TOO_MANY_RECEIPTS,
            f"An expense can have at most {max_receipts} receipts.",
            400,
            field="files",
        )


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _upload_files(
        project_id: str,
        files: list[ReceiptUpload],
        storage: ReceiptStorage,
) -> list[dict]:
    """Stores each upload; returns receipt dicts in upload order."""
    base_ms = int(time.time() * 1000)
    receipts: list[dict] = []
    for offset, upload in enumerate(files):
        # One millisecond apart so equal filenames in one request get distinct keys.
        key = receipt_key(project_id, upload.filename, now_ms=base_ms + offset)
        stored = storage.upload(key, upload.stream, upload.content_type)
        receipts.append({
            "url": stored.url,
            "path": stored.path,
            "name": upload.filename or "receipt",
            "content_type": upload.content_type,
        })
    return receipts


def _snapshot(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "description": expense.description,
        "amount": expense.amount,
    }


def build_expense_dict(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "project_id": expense.project_id,
        "description": expense.description,
        "amount": Decimal(str(expense.amount)).quantize(Decimal("0.01")),
        "category": expense.category,
        "created_by": expense.created_by,
        "created_at": _to_utc(expense.created_at).isoformat(),
        "updated_at": _to_utc(expense.updated_at).isoformat() if expense.updated_at else None,
        "receipts": [r.to_dict() for r in expense.receipts],
        "image_url": expense.image_url,
        "image_path": expense.image_path,
    }


# ── Public service functions ───────────────────────────────────────────────

def add_expense(
        project_id: str,
        caller_id: str,
        data: dict,
        session: Session,
        storage: ReceiptStorage,
        files: list[ReceiptUpload] | None = None,
        max_receipts: int = DEFAULT_MAX_RECEIPTS,
) -> dict:
    """
    Records an expense paid by the caller, with its receipt files.

    Raises:
      AppError(PROJECT_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)
      AppError(TOO_MANY_RECEIPTS, 400)
      AppError(STORAGE_FAILURE, 502)
    """
    project = project_service.get_member_project(project_id, caller_id, session)
    files = list(files or [])
    _check_receipt_count(len(files), max_receipts)

    receipts = _upload_files(project.id, files, storage)
    try:
        created_at = data.get("created_at")
        expense = Expense(
            project_id=project.id,
            created_by=caller_id,
            description=data["description"].strip(),
            amount=data["amount"],
            category=(data.get("category") or OTHER_CATEGORY).strip(),
            created_at=_to_utc(created_at) if created_at else utcnow(),
        )
        expense.receipts = [
            ExpenseReceipt(position=position, **receipt)
            for position, receipt in enumerate(receipts)
        ]
        session.add(expense)
        session.flush()

        notification_service.fan_out(
            project, caller_id, NotificationType.EXPENSE_ADDED, _snapshot(expense), session
        )
    except Exception:
        delete_quietly((r["path"] for r in receipts), storage)
        raise

    delete_on_rollback(session, [r["path"] for r in receipts])

    logger.info("Expense %s added to project %s by %s", expense.id, project.id, caller_id)
    return build_expense_dict(expense)


def update_expense(
        project_id: str,
        expense_id: str,
        caller_id: str,
        data: dict,
        session: Session,
        storage: ReceiptStorage,
        files: list[ReceiptUpload] | None = None,
        max_receipts: int = DEFAULT_MAX_RECEIPTS,
) -> dict:
    """
    Merges the given fields into the expense. Creator only.

    Raises:
      AppError(PROJECT_NOT_FOUND / EXPENSE_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)
      AppError(INVALID_FIELD, 400): a kept receipt is not one of this expense's
      AppError(TOO_MANY_RECEIPTS, 400)
      AppError(STORAGE_FAILURE, 502)
    """
    project = project_service.get_member_project(project_id, caller_id, session)
    expense = _get_expense_or_404(project, expense_id, session)
    _require_creator(expense, caller_id)
    files = list(files or [])

    current = {r.path: r for r in expense.receipts}
    if "receipts" in data:
        unknown = [r["path"] for r in data["receipts"] if r["path"] not in current]
        if unknown:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                "Receipts can only be kept or removed, not added by path: "
                + ", ".join(unknown) + ".",
                400,
                field="receipts",
            )
        kept = [current[r["path"]] for r in data["receipts"]]
    else:
        kept = list(expense.receipts)
    dropped = [path for path in current if path not in {r.path for r in kept}]

    _check_receipt_count(len(kept) + len(files), max_receipts)

    uploaded = _upload_files(project.id, files, storage)
    try:
        if "description" in data:
            expense.description = data["description"].strip()
        if "amount" in data:
            expense.amount = data["amount"]
        if "category" in data:
            expense.category = data["category"].strip()
        if data.get("created_at") is not None:
            expense.created_at = _to_utc(data["created_at"])

        if "receipts" in data or uploaded:
            new_rows = [ExpenseReceipt(**receipt) for receipt in uploaded]
            expense.receipts = kept + new_rows
            for position, receipt in enumerate(expense.receipts):
                receipt.position = position

        expense.updated_at = utcnow()
        session.flush()

        notification_service.fan_out(
            project, caller_id, NotificationType.EXPENSE_EDITED, _snapshot(expense), session
        )
    except Exception:
        delete_quietly((r["path"] for r in uploaded), storage)
        raise

    delete_on_rollback(session, [r["path"] for r in uploaded])
    delete_after_commit(session, dropped)

    logger.info(
        "Expense %s edited by %s (+%d/-%d receipt(s))",
        expense.id, caller_id, len(uploaded), len(dropped),
    )
    return build_expense_dict(expense)


def delete_expense(
        project_id: str,
        expense_id: str,
        caller_id: str,
        session: Session,
) -> dict:
    """
    Deletes the expense. Creator only.

    The notification payload is captured before the row is deleted. Every
    receipt file and the legacy image_path are queued for removal after the
    route commits.

    Returns: the pre-deletion snapshot {id, description, amount}.
    """
    project = project_service.get_member_project(project_id, caller_id, session)
    expense = _get_expense_or_404(project, expense_id, session)
    _require_creator(expense, caller_id)

    snapshot = _snapshot(expense)
    paths = expense.stored_paths()

    session.delete(expense)
    session.flush()

    notification_service.fan_out(
        project, caller_id, NotificationType.EXPENSE_DELETED, snapshot, session
    )

    delete_after_commit(session, paths)

    logger.info("Expense %s deleted by %s (%d file(s))", expense_id, caller_id, len(paths))
    return snapshot


def list_expenses(
        project_id: str,
        caller_id: str,
        session: Session,
        month: int | None = None,
        year: int | None = None,
) -> list[dict]:
    """
    Expenses of the project, newest first.

    With `month` the listing is limited to that month (of `year`, or of the
    current year). With only `year` it covers the whole year.
    """
    project = project_service.get_member_project(project_id, caller_id, session)
    expenses = project_service.project_expenses(project.id, session)

    if month is not None or year is not None:
        year = year or datetime.now(timezone.utc).year
        if month is not None:
            expenses = [e for e in expenses if aggregation_service.in_period(e.created_at, month, year)]
        else:
            expenses = [e for e in expenses if _to_utc(e.created_at).year == year]

    return [build_expense_dict(e) for e in expenses]


def get_expense(project_id: str, expense_id: str, caller_id: str, session: Session) -> dict:
    project = project_service.get_member_project(project_id, caller_id, session)
    return build_expense_dict(_get_expense_or_404(project, expense_id, session))
