"""
routes/receipts.py: Serves receipt files written by LocalReceiptStorage.

Registered at RECEIPT_BASE_URL (default /receipts) only when the local
storage backend is active. Cloudinary receipts are downloaded from their
Cloudinary URL instead.
"""

from __future__ import annotations

from flask import Blueprint, abort, current_app, send_file

from spendsync.app.errors import AppError

receipts_bp = Blueprint("receipts", __name__)


@receipts_bp.route("/<path:path>", methods=["GET"])
def get_receipt(path: str):
    storage = current_app.extensions["receipt_storage"]
    try:
        target = storage.resolve(path)
    except AppError:
        abort(404)
    if not target.is_file():
        abort(404)
    return send_file(target)
