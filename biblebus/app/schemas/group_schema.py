"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, ranges, allowed statuses, URL formats.
  - services/group_service.py: quarter alignment, derived dates, capacity,
    duplicate membership, single open group, GROUP_NOT_FOUND.

Dates arrive as YYYY-MM-DD and are loaded into datetime.date; the service
aligns them to the quarter anchor, so any day of the quarter is accepted.

IMPORTANT: Inherits from marshmallow.Schema directly, never ma.Schema.
           See extensions.py.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from biblebus.app.models.group import GroupStatus


def _validate_non_empty_after_trim(value: str) -> None:
    """Rejects whitespace-only strings, mirroring CHECK(LENGTH(TRIM(name)) > 0)."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_status_field = dict(
    validate=validate.OneOf(
        GroupStatus.ALL,
        error="Status must be one of: upcoming, active, closed, completed.",
    ),
)

_name_validators = [
    validate.Length(min=3, max=200, error="Name must be between 3 and 200 characters."),
    _validate_non_empty_after_trim,
]

_max_members_validator = validate.Range(min=1, error="max_members must be a positive integer.")


class CreateGroupSchema(Schema):
    """POST /admin/groups"""

    start_date = fields.Date(required=True)
    max_members = fields.Int(strict=True, validate=_max_members_validator)
    status = fields.Str(**_status_field)
    name = fields.Str(validate=_name_validators)
    whatsapp_invite_url = fields.URL()
    youversion_plan_url = fields.URL()


class UpdateGroupSchema(Schema):
    """PUT /admin/groups/:id — every field optional."""

    start_date = fields.Date()
    max_members = fields.Int(strict=True, validate=_max_members_validator)
    status = fields.Str(**_status_field)
    name = fields.Str(validate=_name_validators)
    whatsapp_invite_url = fields.URL()
    youversion_plan_url = fields.URL()


class GroupStatusSchema(Schema):
    """POST /admin/groups/:id/status"""

    status = fields.Str(required=True, **_status_field)


class AddMemberSchema(Schema):
    """POST /admin/groups/:id/members"""

    user_id = fields.Int(
        required=True,
        strict=True,  # reject floats like 1.0 — integers only
        validate=validate.Range(
            min=1,
            error="user_id must be a positive integer.",
        ),
    )


class BackfillSchema(Schema):
    """POST /admin/groups/backfill-quarterly"""

    start_date = fields.Date(required=True)
    count = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, max=100, error="count must be 1-100."),
    )
    status = fields.Str(load_default=GroupStatus.COMPLETED, **_status_field)


class SortOrderSchema(Schema):
    """
    POST /admin/groups/sort-order

    order: group ids that get sort_index 1..n in this order.
    clear: group ids dropped back to start-date ordering.
    """

    order = fields.List(
        fields.Int(strict=True, validate=validate.Range(min=1)),
        load_default=list,
        validate=validate.Length(min=1, error="order must be a non-empty array."),
    )
    clear = fields.List(
        fields.Int(strict=True, validate=validate.Range(min=1)),
        load_default=list,
    )

    @validates_schema
    def validate_not_empty(self, data: dict, **kwargs) -> None:
        if not data.get("order") and not data.get("clear"):
            raise ValidationError(
                "Missing data for required field.", field_name="order",
            )
