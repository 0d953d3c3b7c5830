"""
middleware/auth_middleware.py — JWT authentication decorators.

@require_auth:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Decodes and verifies the JWT signature
  3. Attaches user_id (int) to flask.g for the duration of the request
  4. Raises the appropriate 401 AppError if any step fails

@require_admin:
  Everything @require_auth does, then loads the user and requires the
  'admin' role (403 FORBIDDEN otherwise). The role is read from the
  database, not the token, so a demoted admin loses access immediately.

Services receive user_id as a plain integer argument, with no knowledge of
JWT or HTTP headers.
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from biblebus.app.errors import AppError, ErrorCode
from biblebus.app.extensions import db
from biblebus.app.models.user import User


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Usage:
        @groups_bp.route("/current")
        @require_auth
        def current_group():
            user_id = g.user_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_admin(f: Callable) -> Callable:
    """Route decorator: authenticated AND role == 'admin'."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        user = db.session.get(User, g.user_id)
        if user is None:
            raise AppError(
                ErrorCode.TOKEN_INVALID,
                "Invalid token. User not found.",
                401,
            )
        if not user.is_admin:
            raise AppError(
                ErrorCode.FORBIDDEN,
                "Admin privileges required.",
                403,
            )
        return f(*args, **kwargs)

    return decorated


def _authenticate_request() -> None:
    """
    Performs the full JWT authentication sequence and sets flask.g.user_id.

    Raises AppError on any authentication failure; the global Flask error
    handler turns it into the JSON response.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    try:
        payload = jwt.decode(
            parts[1],
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Log in again.",
            401,
        )
    except jwt.InvalidTokenError:
        # Bad signature, malformed token, invalid claims.
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    try:
        g.user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token does not carry a valid user id.",
            401,
        )
