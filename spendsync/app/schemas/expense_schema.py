"""
schemas/expense_schema.py: Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, decimal precision
      - Non-empty-after-trim enforcement for description and category
      - Receipt entries carry url and path
  - services/expense_service.py:
      - FORBIDDEN (403): caller is not a member / not the expense creator
      - TOO_MANY_RECEIPTS (400): kept receipts plus uploads over the limit

Receipts arrive two ways. Uploaded files come in the multipart `files` part
and are handled by the route. The `receipts` field on PATCH is the list of
already-stored receipts to keep; anything left out is deleted from storage.

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from spendsync.app.errors import ErrorCode
from spendsync.app.models.project import OTHER_CATEGORY


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Amounts with more than 2 decimal places are REJECTED with
# INVALID_AMOUNT_PRECISION, never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Strictly greater than zero, at most 2 decimal places.

    The error handler recognises INVALID_AMOUNT_PRECISION by matching the
    ValidationError message against the ErrorCode constants.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    # Decimal("10.123").as_tuple().exponent == -3  -> 3 dp -> reject
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_DESCRIPTION_VALIDATORS = [
    validate.Length(
        min=1,
        max=255,
        error="Description must be between 1 and 255 characters.",
    ),
    _validate_non_empty_after_trim,
]

_CATEGORY_VALIDATORS = [
    validate.Length(
        min=1,
        max=100,
        error="Category must be between 1 and 100 characters.",
    ),
    _validate_non_empty_after_trim,
]


class ReceiptInputSchema(Schema):
    """One stored receipt the client wants to keep."""

    url = fields.Str(required=True, validate=validate.Length(min=1, max=1024))
    path = fields.Str(required=True, validate=validate.Length(min=1, max=1024))
    name = fields.Str(load_default="receipt", validate=validate.Length(max=255))
    content_type = fields.Str(
        load_default="application/octet-stream",
        validate=validate.Length(max=100),
    )


class CreateExpenseSchema(Schema):
    """
    POST /projects/:id/expenses

    `created_at` is the date the money was spent; the service uses the
    current time when it is absent. Naive datetimes are read as UTC.
    """

    description = fields.Str(required=True, validate=_DESCRIPTION_VALIDATORS)

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    category = fields.Str(
        load_default=OTHER_CATEGORY,
        validate=_CATEGORY_VALIDATORS,
    )

    created_at = fields.DateTime(load_default=None, allow_none=True)


class PatchExpenseSchema(Schema):
    """
    PATCH /projects/:id/expenses/:expense_id

    All fields are optional; only provided fields are updated.
    `receipts`, when present, replaces the stored receipt set.
    """

    description = fields.Str(required=False, validate=_DESCRIPTION_VALIDATORS)

    amount = fields.Decimal(required=False, validate=_validate_monetary_amount)

    category = fields.Str(required=False, validate=_CATEGORY_VALIDATORS)

    created_at = fields.DateTime(required=False)

    receipts = fields.List(fields.Nested(ReceiptInputSchema), required=False)

    @validates_schema
    def validate_receipt_paths(self, data: dict, **kwargs) -> None:
        receipts = data.get("receipts")
        if receipts is None:
            return
        paths = [r["path"] for r in receipts]
        if len(paths) != len(set(paths)):
            raise ValidationError({"receipts": ["The same receipt path is listed twice."]})
