"""
schemas/project_schema.py: Marshmallow schemas for project endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, project type names, decimal precision
      - DUPLICATE_MEMBER_EMAIL (400): same email listed twice
  - services/project_service.py:
      - MEMBER_NOT_FOUND         (422): email without a user (DB lookup)
      - CONTRIBUTION_MISMATCH    (422): sum(contributions) != total_budget
      - PERSONAL_PROJECT_MEMBERS (422): extra members on a personal project
      - FORBIDDEN                (403): caller not a member / not the owner

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from spendsync.app.errors import ErrorCode
from spendsync.app.models.project import ProjectType


def _validate_budget_amount(value: Decimal) -> None:
    """Budgets and contributions: zero or more, at most 2 decimal places."""
    if value < Decimal("0"):
        raise ValidationError("Amount must not be negative.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _check_duplicate_emails(members: list[dict] | None) -> None:
    if not members:
        return
    emails = [m["email"].strip().lower() for m in members]
    if len(emails) != len(set(emails)):
        raise ValidationError({"members": [ErrorCode.DUPLICATE_MEMBER_EMAIL]})


_NAME_FIELD_VALIDATORS = [
    validate.Length(
        min=1,
        max=100,
        error="Project name must be between 1 and 100 characters.",
    ),
    _validate_non_empty_after_trim,
]


class MemberInputSchema(Schema):
    """One entry of the `members` array. The email is resolved in the service."""

    email = fields.Email(required=True)

    contribution = fields.Decimal(
        load_default=Decimal("0"),
        validate=_validate_budget_amount,
    )


class CreateProjectSchema(Schema):
    """
    POST /projects

    The owner does not need to list themselves; the service adds the owner
    with a zero contribution when absent.
    """

    name = fields.Str(required=True, validate=_NAME_FIELD_VALIDATORS)

    project_type = fields.Enum(
        ProjectType,
        load_default=ProjectType.CUSTOM,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_PROJECT_TYPE},
    )

    total_budget = fields.Decimal(
        load_default=Decimal("0"),
        validate=_validate_budget_amount,
    )

    # Only used by monthly-budget project types.
    monthly_budget = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_budget_amount,
    )

    members = fields.List(
        fields.Nested(MemberInputSchema),
        load_default=list,
    )

    @validates_schema
    def validate_members(self, data: dict, **kwargs) -> None:
        _check_duplicate_emails(data.get("members"))


class PatchProjectSchema(Schema):
    """
    PATCH /projects/:id

    All fields optional. When `members` is given it replaces the member set.
    The contribution rule is re-checked in the service against the effective
    values (given fields merged over the stored ones).
    """

    name = fields.Str(required=False, validate=_NAME_FIELD_VALIDATORS)

    total_budget = fields.Decimal(required=False, validate=_validate_budget_amount)

    monthly_budget = fields.Decimal(
        required=False,
        allow_none=True,
        validate=_validate_budget_amount,
    )

    members = fields.List(fields.Nested(MemberInputSchema), required=False)

    @validates_schema
    def validate_members(self, data: dict, **kwargs) -> None:
        _check_duplicate_emails(data.get("members"))
        if not data:
            raise ValidationError("At least one field must be provided.")


class ShareProjectSchema(Schema):
    """POST /projects/:id/share"""

    regenerate = fields.Bool(load_default=False)


class PeriodQuerySchema(Schema):
    """
    ?month=&year= selector used by summaries and the expense listing.
    Months are 1-12. Missing values are filled in by the service.
    """

    class Meta:
        unknown = EXCLUDE

    month = fields.Int(
        load_default=None,
        validate=validate.Range(min=1, max=12, error="month must be between 1 and 12."),
    )

    year = fields.Int(
        load_default=None,
        validate=validate.Range(min=1970, max=9999, error="year must be between 1970 and 9999."),
    )
