"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body, validate with the schema, call ONE service,
    commit, return the envelope {"data": {...}, "warnings": []}.
  - AppError propagates to the global error handler; routes never catch it.

Endpoints (url_prefix=/api/v1/auth):
  POST   /register  → 201  create account + group assignment
  POST   /login     → 200
  GET    /me        → 200
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from biblebus.app.extensions import db
from biblebus.app.middleware.auth_middleware import require_auth
from biblebus.app.schemas.auth_schema import LoginSchema, RegisterSchema
from biblebus.app.services import auth_service

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create account, join the open group, return a token."""
    data = RegisterSchema().load(request.get_json(force=True) or {})
    result = auth_service.register_user(
        name=data["name"],
        email=data["email"],
        password=data["password"],
        phone=data["phone"],
        city=data["city"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate; return a token."""
    data = LoginSchema().load(request.get_json(force=True) or {})
    result = auth_service.login_user(
        email=data["email"],
        password=data["password"],
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Current user profile with active groups."""
    result = auth_service.get_current_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
