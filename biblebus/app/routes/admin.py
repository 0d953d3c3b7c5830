"""
routes/admin.py — Admin group management.

Layer rules: parse, validate, call the service, commit, return envelope.
Not-found reads (service returns None) become GROUP_NOT_FOUND here; failed
AssignmentResults become 400s with the result's error code.

Endpoints (url_prefix=/api/v1/admin, all require role=admin):
  GET    /groups                        → 200  all groups with member counts
  POST   /groups                        → 201  create group (quarter-aligned)
  GET    /groups/current/active         → 200  group open for registration
  GET    /groups/next/upcoming          → 200  next upcoming group
  POST   /groups/normalize              → 200  re-align every group
  POST   /groups/backfill-quarterly     → 201  create consecutive quarters
  POST   /groups/sort-order             → 200  set or clear manual ordering
  GET    /groups/:id                    → 200  group + members
  PUT    /groups/:id                    → 200  edit group
  POST   /groups/:id/status             → 200  status-only change
  POST   /groups/:id/members            → 200  add member
  DELETE /groups/:id/members/:uid       → 200  remove member
  POST   /cron/run                      → 200  run maintenance jobs now
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from biblebus.app.errors import AppError, ErrorCode
from biblebus.app.extensions import db
from biblebus.app.middleware.auth_middleware import require_admin
from biblebus.app.schemas.group_schema import (
    AddMemberSchema,
    BackfillSchema,
    CreateGroupSchema,
    GroupStatusSchema,
    SortOrderSchema,
    UpdateGroupSchema,
)
from biblebus.app.services import cron_service, group_service

admin_bp = Blueprint("admin", __name__)


def _group_or_404(group):
    if group is None:
        raise AppError(ErrorCode.GROUP_NOT_FOUND, "Group not found.", 404)
    return group


def _members_envelope(group_id: int, message: str):
    members = group_service.get_group_members(group_id, db.session)
    return jsonify({
        "data": {"members": members, "message": message},
        "warnings": [],
    }), 200


@admin_bp.route("/groups", methods=["GET"])
@require_admin
def list_groups():
    result = group_service.get_all_groups_with_member_counts(db.session)
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/groups", methods=["POST"])
@require_admin
def create_group():
    """POST /admin/groups — start_date is aligned to its quarter anchor."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    group = group_service.create_group_with_start(
        data["start_date"],
        db.session,
        max_members=data.get("max_members"),
        status=data.get("status"),
        name=data.get("name"),
        whatsapp_invite_url=data.get("whatsapp_invite_url"),
        youversion_plan_url=data.get("youversion_plan_url"),
    )
    db.session.commit()
    return jsonify({"data": group_service.group_to_dict(group), "warnings": []}), 201


@admin_bp.route("/groups/current/active", methods=["GET"])
@require_admin
def current_active_group():
    group = group_service.get_current_active_group(db.session)
    result = group_service.group_to_dict(group) if group is not None else None
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/groups/next/upcoming", methods=["GET"])
@require_admin
def next_upcoming_group():
    group = group_service.get_next_upcoming_group(db.session)
    result = group_service.group_to_dict(group) if group is not None else None
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/groups/normalize", methods=["POST"])
@require_admin
def normalize_groups():
    result = group_service.normalize_all_groups(db.session)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/groups/backfill-quarterly", methods=["POST"])
@require_admin
def backfill_groups():
    data = BackfillSchema().load(request.get_json(force=True) or {})
    created = group_service.backfill_quarterly_groups(
        data["start_date"],
        data["count"],
        db.session,
        status=data["status"],
    )
    db.session.commit()
    return jsonify({
        "data": {
            "count": len(created),
            "groups": [group_service.group_to_dict(g) for g in created],
        },
        "warnings": [],
    }), 201


@admin_bp.route("/groups/sort-order", methods=["POST"])
@require_admin
def sort_groups():
    data = SortOrderSchema().load(request.get_json(force=True) or {})
    if data["clear"]:
        group_service.clear_sort_order(data["clear"], db.session)
    if data["order"]:
        group_service.set_sort_order(data["order"], db.session)
    db.session.commit()
    return jsonify({
        "data": {"order": data["order"], "cleared": data["clear"]},
        "warnings": [],
    }), 200


@admin_bp.route("/groups/<int:group_id>", methods=["GET"])
@require_admin
def get_group(group_id: int):
    group = _group_or_404(group_service.get_group_by_id(group_id, db.session))
    return jsonify({
        "data": {
            "group": group_service.group_to_dict(group),
            "members": group_service.get_group_members(group_id, db.session),
        },
        "warnings": [],
    }), 200


@admin_bp.route("/groups/<int:group_id>", methods=["PUT"])
@require_admin
def update_group(group_id: int):
    """PUT /admin/groups/:id — a new start_date re-derives dates and name."""
    data = UpdateGroupSchema().load(request.get_json(force=True) or {})
    group = _group_or_404(group_service.update_group(group_id, db.session, **data))
    db.session.commit()
    return jsonify({"data": group_service.group_to_dict(group), "warnings": []}), 200


@admin_bp.route("/groups/<int:group_id>/status", methods=["POST"])
@require_admin
def set_group_status(group_id: int):
    data = GroupStatusSchema().load(request.get_json(force=True) or {})
    group = _group_or_404(
        group_service.set_group_status(group_id, data["status"], db.session)
    )
    db.session.commit()
    return jsonify({"data": group_service.group_to_dict(group), "warnings": []}), 200


@admin_bp.route("/groups/<int:group_id>/members", methods=["POST"])
@require_admin
def add_member(group_id: int):
    data = AddMemberSchema().load(request.get_json(force=True) or {})
    result = group_service.add_member_to_group(group_id, data["user_id"], db.session)
    if not result.success:
        raise AppError(result.error_code, result.message, 400)
    db.session.commit()
    return _members_envelope(group_id, result.message)


@admin_bp.route("/groups/<int:group_id>/members/<int:target_uid>", methods=["DELETE"])
@require_admin
def remove_member(group_id: int, target_uid: int):
    group_service.remove_member_from_group(group_id, target_uid, db.session)
    db.session.commit()
    return _members_envelope(group_id, "User removed from group")


@admin_bp.route("/cron/run", methods=["POST"])
@require_admin
def run_cron():
    """POST /admin/cron/run — Run the daily maintenance jobs immediately."""
    result = cron_service.run_all_cron_jobs(db.session)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
