"""
routes/groups.py — Member-facing group endpoints.

Endpoints (url_prefix=/api/v1/groups, all require auth):
  GET    /current          → 200  group currently open for registration (or null)
  GET    /next             → 200  next upcoming group + caller's join status (or null)
  POST   /<id>/join        → 200  join an upcoming group
  POST   /<id>/cancel      → 200  withdraw from an upcoming group
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from biblebus.app.errors import AppError
from biblebus.app.extensions import db
from biblebus.app.middleware.auth_middleware import require_auth
from biblebus.app.services import group_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/current", methods=["GET"])
@require_auth
def current_group():
    """GET /groups/current — The group new registrants are placed in."""
    group = group_service.get_current_active_group(db.session)
    result = group_service.group_to_dict(group) if group is not None else None
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/next", methods=["GET"])
@require_auth
def next_group():
    """GET /groups/next — Next upcoming group with capacity and join status."""
    result = group_service.get_next_group_status(g.user_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/join", methods=["POST"])
@require_auth
def join_group(group_id: int):
    """POST /groups/:id/join — Join an upcoming group before its deadline."""
    result = group_service.join_group(group_id, g.user_id, db.session)
    if not result.success:
        raise AppError(result.error_code, result.message, 400)
    db.session.commit()
    return jsonify({"data": result.to_dict(), "warnings": []}), 200


@groups_bp.route("/<int:group_id>/cancel", methods=["POST"])
@require_auth
def cancel_join(group_id: int):
    """POST /groups/:id/cancel — Withdraw from an upcoming group."""
    group_service.cancel_group_join(group_id, g.user_id, db.session)
    db.session.commit()
    return jsonify({
        "data": {"cancelled": True, "group_id": group_id},
        "warnings": [],
    }), 200
