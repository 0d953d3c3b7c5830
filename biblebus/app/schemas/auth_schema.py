"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Field types, lengths and formats live here. The duplicate-email check needs
a DB lookup and belongs to services/auth_service.py.

IMPORTANT: All schemas inherit from marshmallow.Schema directly, never
ma.Schema, so unit tests can load them without a Flask app context.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates


class RegisterSchema(Schema):
    """
    POST /auth/register

      name     : at least 2 characters after trimming
      email    : valid email format
      password : min 8 chars, at least one letter and one digit
      phone    : optional, digits with common separators
      city     : optional
    """

    name = fields.Str(
        required=True,
        validate=validate.Length(
            min=2,
            max=100,
            error="Name must be between 2 and 100 characters.",
        ),
    )

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    password = fields.Str(required=True, load_only=True)

    phone = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Regexp(
            r"^\+?[0-9 ()\-.]{7,20}$",
            error="Must be a valid phone number.",
        ),
    )

    city = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=100),
    )

    @validates("name")
    def validate_name_not_blank(self, value: str, **kwargs) -> None:
        if len(value.strip()) < 2:
            raise ValidationError("Name must be at least 2 characters.")

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long.")
        if not any(c.isalpha() for c in value):
            raise ValidationError("Password must contain at least one letter.")
        if not any(c.isdigit() for c in value):
            raise ValidationError("Password must contain at least one digit.")


class LoginSchema(Schema):
    """POST /auth/login"""

    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True)
