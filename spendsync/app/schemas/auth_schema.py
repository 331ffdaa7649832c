"""
schemas/auth_schema.py: Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field types, lengths, formats.
  - services/auth_service.py: DUPLICATE_EMAIL (needs a DB lookup).

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema; it requires an active Flask app context
           and breaks unit tests. See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, post_load, validate, validates


class RegisterSchema(Schema):
    """
    POST /auth/register

    Field rules:
      display_name : 1-100 chars after trimming
      email        : valid email format, stored lower-cased
      password     : min 8 chars, at least one letter and one digit
      avatar_url   : optional URL
    """

    display_name = fields.Str(
        required=True,
        validate=validate.Length(
            min=1,
            max=100,
            error="Display name must be between 1 and 100 characters.",
        ),
    )

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    password = fields.Str(required=True, load_only=True)

    avatar_url = fields.Url(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=1024),
    )

    @validates("display_name")
    def validate_display_name(self, value: str, **kwargs) -> None:
        if not value.strip():
            raise ValidationError("Display name must not be blank.")

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long.")
        if not any(c.isalpha() for c in value):
            raise ValidationError("Password must contain at least one letter.")
        if not any(c.isdigit() for c in value):
            raise ValidationError("Password must contain at least one digit.")

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        data["display_name"] = data["display_name"].strip()
        data["email"] = data["email"].strip().lower()
        return data


class LoginSchema(Schema):
    """
    POST /auth/login

    Credential correctness is checked in auth_service.py
    (INVALID_CREDENTIALS, 401).
    """

    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True)

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        data["email"] = data["email"].strip().lower()
        return data


class RefreshTokenSchema(Schema):
    """POST /auth/refresh and POST /auth/logout"""

    refresh_token = fields.Str(required=True)
