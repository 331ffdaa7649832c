"""
errors.py: AppError base class and error code registry.

Every error returned by the SpendSync API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Validation errors (MEMBER_NOT_FOUND, CONTRIBUTION_MISMATCH) are raised
    before any write. I/O errors (STORAGE_FAILURE, WRITE_FAILURE) may surface
    after some sub-operations already happened.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
            details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field    # which request field caused the error
        self.details     = details  # structured context, e.g. unresolved emails

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_PROJECT_TYPE       = "INVALID_PROJECT_TYPE"
    DUPLICATE_MEMBER_EMAIL     = "DUPLICATE_MEMBER_EMAIL"
    TOO_MANY_RECEIPTS          = "TOO_MANY_RECEIPTS"
    PAYLOAD_TOO_LARGE          = "PAYLOAD_TOO_LARGE"           # 413

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    PROJECT_NOT_FOUND          = "PROJECT_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    SHARE_NOT_FOUND            = "SHARE_NOT_FOUND"
    NOTIFICATION_NOT_FOUND     = "NOTIFICATION_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    MEMBER_NOT_FOUND           = "MEMBER_NOT_FOUND"          # unresolved member emails
    CONTRIBUTION_MISMATCH      = "CONTRIBUTION_MISMATCH"     # sum(contributions) != total_budget
    PERSONAL_PROJECT_MEMBERS   = "PERSONAL_PROJECT_MEMBERS"  # personal project has one member

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (not a member,
    #       not the expense creator, not the project owner)
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── I/O Errors ─────────────────────────────────────────────────────────
    STORAGE_FAILURE            = "STORAGE_FAILURE"        # 502 receipt upload/delete failed
    WRITE_FAILURE              = "WRITE_FAILURE"          # 503 database write failed

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Spending passed 80% of the applicable budget. Overspend is not an error.
    BUDGET_ALMOST_EXHAUSTED = "BUDGET_ALMOST_EXHAUSTED"
