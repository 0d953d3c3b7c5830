"""
services/auth_service.py — Registration, login and access tokens.

Responsibilities:
  - User registration, which also places the new user in the open group
  - Credential validation (bcrypt) and JWT access token creation (HS256)
  - Admin account creation for the CLI

Layer rules:
  - No imports from routes or schemas; no flask.request / flask.g.
  - current_app.config is read ONLY for the JWT secret/expiry and bcrypt
    cost, so secrets stay behind the config layer.

Password storage: bcrypt, cost from BCRYPT_LOG_ROUNDS. The raw password is
never stored and never logged.
"""

from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from biblebus.app.errors import AppError, ErrorCode
from biblebus.app.models.group import BibleGroup
from biblebus.app.models.membership import GroupMember, MembershipStatus
from biblebus.app.models.user import User, UserRole
from biblebus.app.services import group_service

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _hash_password(password: str) -> str:
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def _create_access_token(user: User) -> str:
    """
    Creates a signed JWT access token.
    Payload: sub (user id as str), role, iat, exp, jti.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "iat": now,
        "exp": now + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"],
        # Unique even when two tokens are issued in the same second.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def _find_user_by_email(email: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()


def _build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. Never includes the password hash."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "city": user.city,
        "role": user.role,
        "status": user.status,
    }


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        name: str,
        email: str,
        password: str,
        session: Session,
        phone: str | None = None,
        city: str | None = None,
        today: date | None = None,
) -> dict:
    """
    Creates a user and assigns them to the group open for registration.

    Registration and assignment succeed or fail together: if the user cannot
    be placed in a group, AppError is raised and the caller's transaction
    (which holds the new user row) is never committed.

    Raises:
      AppError(DUPLICATE_EMAIL, 409)
      AppError(GROUP_FULL | NO_OPEN_GROUP, 400)

    Returns: {"user": {...}, "group": {...}, "message": "...", "access_token": "..."}
    """
    if _find_user_by_email(email, session) is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            "A user with this email already exists.",
            409,
            field="email",
        )

    user = User(
        name=name.strip(),
        email=email.strip().lower(),
        password_hash=_hash_password(password),
        phone=phone,
        city=city,
    )
    session.add(user)
    session.flush()  # populate user.id before the group assignment

    assignment = group_service.assign_user_to_group(user.id, session, today)
    if not assignment.success:
        raise AppError(assignment.error_code, assignment.message, 400)

    group = group_service.get_group_by_id(assignment.group_id, session)
    logger.info("Registered user %s into group %s", user.id, assignment.group_id)

    return {
        "user": _build_user_dict(user),
        "group": {
            "id": group.id,
            "name": group.name,
            "start_date": group.start_date.isoformat(),
            "registration_deadline": group.registration_deadline.isoformat(),
        },
        "message": assignment.message,
        "access_token": _create_access_token(user),
    }


def login_user(email: str, password: str, session: Session) -> dict:
    """
    Validates credentials and issues an access token.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — unknown email or wrong password.
      The same error for both avoids email enumeration.
    """
    user = _find_user_by_email(email, session)

    if user is None or not bcrypt.checkpw(
            password.encode("utf-8"),
            user.password_hash.encode("utf-8"),
    ):
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "The email or password is incorrect.",
            401,
        )

    return {
        "user": _build_user_dict(user),
        "access_token": _create_access_token(user),
    }


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Profile of the authenticated user plus the groups they are active in.

    Raises:
      AppError(USER_NOT_FOUND, 404) — user deleted after the token was issued.
    """
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )

    groups = session.execute(
        select(BibleGroup)
        .join(GroupMember, GroupMember.group_id == BibleGroup.id)
        .where(
            GroupMember.user_id == user_id,
            GroupMember.status == MembershipStatus.ACTIVE,
        )
        .order_by(BibleGroup.start_date.desc())
    ).scalars().all()

    return {
        **_build_user_dict(user),
        "groups": [group_service.group_to_dict(g) for g in groups],
    }


def create_admin(email: str, name: str, password: str, session: Session) -> User:
    """
    Creates an admin account, or promotes and re-keys an existing user with
    that email. Admins are not placed in reading groups.
    """
    user = _find_user_by_email(email, session)
    if user is None:
        user = User(name=name.strip(), email=email.strip().lower(), password_hash="")
        session.add(user)

    user.role = UserRole.ADMIN
    user.password_hash = _hash_password(password)
    session.flush()
    return user
