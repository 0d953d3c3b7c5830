"""
services/group_service.py — Quarterly group lifecycle and membership logic.

Owns every write to bible_groups and group_members:
  - creating groups on quarter anchors (admin-driven or automatic)
  - date-driven status transitions: upcoming → active → closed → completed
  - assigning users to the group that is currently open for registration,
    with a hard capacity ceiling and idempotent membership

Clock: every temporal function takes an optional `today`. When omitted,
quarter_calendar.utc_today() is read. Tests pass explicit dates.

Single open group: at most one group may be 'active' while its registration
window is still open. Explicit activations (admin create/update/status change)
and moving an active group's start_date are rejected with
ACTIVE_GROUP_CONFLICT when another open active group exists.
The date-driven batch in update_group_statuses() is not gated; quarter
anchors plus the 17-day window keep it from overlapping.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the caller's responsibility; services only flush.
  - Reads return None on absence; only writes raise AppError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from biblebus.app.errors import AppError, ErrorCode
from biblebus.app.models.group import BibleGroup, GroupStatus
from biblebus.app.models.membership import GroupMember, MembershipStatus
from biblebus.app.models.user import User
from biblebus.app.services import quarter_calendar
from biblebus.app.services.quarter_calendar import (
    add_quarters,
    align_to_quarter_start,
    compute_derived_dates,
    derive_group_name,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_MEMBERS = 50

# First quarter the ministry ran on this system; used when the table is empty.
INITIAL_QUARTER_START = date(2025, 10, 1)


@dataclass(frozen=True)
class AssignmentResult:
    """Outcome of placing a user in a group. error_code is set only on failure."""

    success: bool
    message: str
    group_id: int | None = None
    error_code: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "group_id": self.group_id,
            "message": self.message,
        }


# ── Private helpers ────────────────────────────────────────────────────────

def _today(today: date | None) -> date:
    return today if today is not None else quarter_calendar.utc_today()


def _get_group_or_404(group_id: int, session: Session) -> BibleGroup:
    """Returns the BibleGroup or raises GROUP_NOT_FOUND (404)."""
    group = session.get(BibleGroup, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def _lock_group(group_id: int, session: Session) -> BibleGroup | None:
    """
    Re-reads the group with SELECT ... FOR UPDATE so that the capacity check
    and the membership insert that follows happen under one row lock.
    SQLite ignores FOR UPDATE but serialises writers on its own.
    """
    return session.execute(
        select(BibleGroup).where(BibleGroup.id == group_id).with_for_update()
    ).scalar_one_or_none()


def _active_member_count(group_id: int, session: Session) -> int:
    return session.execute(
        select(func.count(GroupMember.id)).where(
            GroupMember.group_id == group_id,
            GroupMember.status == MembershipStatus.ACTIVE,
        )
    ).scalar_one()


def _find_active_membership(
        group_id: int,
        user_id: int,
        session: Session,
) -> GroupMember | None:
    return session.execute(
        select(GroupMember).where(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id,
            GroupMember.status == MembershipStatus.ACTIVE,
        )
    ).scalar_one_or_none()


def _insert_membership(
        group_id: int,
        user_id: int,
        today: date,
        session: Session,
) -> bool:
    """
    Inserts an active membership inside a savepoint.

    Returns False when the partial unique index rejects the row, which means a
    concurrent request already made this user an active member.
    """
    try:
        with session.begin_nested():
            session.add(GroupMember(
                group_id=group_id,
                user_id=user_id,
                join_date=today,
                status=MembershipStatus.ACTIVE,
            ))
    except IntegrityError:
        logger.info(
            "Concurrent duplicate membership for user %s in group %s ignored",
            user_id, group_id,
        )
        return False
    return True


def _admit(
        group_id: int,
        user_id: int,
        today: date,
        session: Session,
        *,
        full_message: str,
        duplicate_message: str,
        success_message: str,
) -> AssignmentResult:
    """
    Capacity check, duplicate check, insert. Shared by every path that adds a
    user to an existing group so the ceiling is enforced in one place.
    """
    group = _lock_group(group_id, session)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )

    if _active_member_count(group_id, session) >= group.max_members:
        return AssignmentResult(
            success=False,
            message=full_message,
            group_id=group_id,
            error_code=ErrorCode.GROUP_FULL,
        )

    if _find_active_membership(group_id, user_id, session) is not None:
        return AssignmentResult(True, duplicate_message, group_id)

    if not _insert_membership(group_id, user_id, today, session):
        return AssignmentResult(True, duplicate_message, group_id)

    logger.info("User %s joined group %s", user_id, group_id)
    return AssignmentResult(True, success_message, group_id)


def _ensure_single_open_group(
        registration_deadline: date,
        today: date,
        session: Session,
        exclude_id: int | None = None,
) -> None:
    """
    Raises ACTIVE_GROUP_CONFLICT (409) if activating a group whose window is
    still open would leave two active groups accepting registrations.
    """
    if registration_deadline < today:
        return

    stmt = select(BibleGroup.id).where(
        BibleGroup.status == GroupStatus.ACTIVE,
        BibleGroup.registration_deadline >= today,
    )
    if exclude_id is not None:
        stmt = stmt.where(BibleGroup.id != exclude_id)

    conflict_id = session.execute(stmt.limit(1)).scalar_one_or_none()
    if conflict_id is not None:
        raise AppError(
            ErrorCode.ACTIVE_GROUP_CONFLICT,
            f"Group {conflict_id} is already active and accepting registrations.",
            409,
        )


def _validate_status(status: str) -> None:
    if status not in GroupStatus.ALL:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            f"Status must be one of: {', '.join(GroupStatus.ALL)}.",
            400,
            field="status",
        )


def _apply_status(group: BibleGroup, status: str, today: date, session: Session) -> None:
    _validate_status(status)
    if status == GroupStatus.ACTIVE and group.status != GroupStatus.ACTIVE:
        _ensure_single_open_group(
            group.registration_deadline, today, session, exclude_id=group.id,
        )
    group.status = status


def _registration_open(group: BibleGroup, today: date) -> bool:
    return group.status == GroupStatus.UPCOMING and group.registration_deadline >= today


def group_to_dict(group: BibleGroup, member_count: int | None = None) -> dict:
    """Serialises a BibleGroup to a plain dict with ISO date strings."""
    data = {
        "id": group.id,
        "name": group.name,
        "start_date": group.start_date.isoformat(),
        "end_date": group.end_date.isoformat(),
        "registration_deadline": group.registration_deadline.isoformat(),
        "max_members": group.max_members,
        "status": group.status,
        "sort_index": group.sort_index,
        "whatsapp_invite_url": group.whatsapp_invite_url,
        "youversion_plan_url": group.youversion_plan_url,
        "created_at": group.created_at.isoformat() if group.created_at else None,
    }
    if member_count is not None:
        data["member_count"] = int(member_count)
    return data


# ── Lookups ────────────────────────────────────────────────────────────────

def get_current_active_group(session: Session, today: date | None = None) -> BibleGroup | None:
    """
    The group new registrants go to: earliest-starting 'active' or 'upcoming'
    group whose registration deadline is today or later.
    """
    today = _today(today)
    return session.execute(
        select(BibleGroup)
        .where(
            BibleGroup.status.in_((GroupStatus.ACTIVE, GroupStatus.UPCOMING)),
            BibleGroup.registration_deadline >= today,
        )
        .order_by(BibleGroup.start_date.asc(), BibleGroup.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def get_next_upcoming_group(session: Session) -> BibleGroup | None:
    """Earliest-starting group whose status is exactly 'upcoming'."""
    return session.execute(
        select(BibleGroup)
        .where(BibleGroup.status == GroupStatus.UPCOMING)
        .order_by(BibleGroup.start_date.asc(), BibleGroup.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def get_group_by_id(group_id: int, session: Session) -> BibleGroup | None:
    return session.get(BibleGroup, group_id)


def get_all_groups_with_member_counts(session: Session) -> list[dict]:
    """
    Every group with its count of active members. Manually ordered groups
    (sort_index set) come first, the rest newest-start first.
    """
    member_count = func.count(GroupMember.id).label("member_count")
    stmt = (
        select(BibleGroup, member_count)
        .outerjoin(
            GroupMember,
            and_(
                GroupMember.group_id == BibleGroup.id,
                GroupMember.status == MembershipStatus.ACTIVE,
            ),
        )
        .group_by(BibleGroup.id)
        .order_by(
            BibleGroup.sort_index.is_(None).asc(),
            BibleGroup.sort_index.asc(),
            BibleGroup.start_date.desc(),
        )
    )
    return [
        group_to_dict(group, member_count=count)
        for group, count in session.execute(stmt).all()
    ]


def get_group_members(group_id: int, session: Session) -> list[dict]:
    """Active members of a group with their contact fields, oldest join first."""
    stmt = (
        select(GroupMember, User)
        .join(User, User.id == GroupMember.user_id)
        .where(
            GroupMember.group_id == group_id,
            GroupMember.status == MembershipStatus.ACTIVE,
        )
        .order_by(GroupMember.join_date.asc(), GroupMember.id.asc())
    )
    return [
        {
            "id": membership.id,
            "group_id": membership.group_id,
            "user_id": membership.user_id,
            "join_date": membership.join_date.isoformat(),
            "status": membership.status,
            "name": user.name,
            "email": user.email,
            "city": user.city,
        }
        for membership, user in session.execute(stmt).all()
    ]


# ── Group creation ─────────────────────────────────────────────────────────

def create_group_with_start(
        start,
        session: Session,
        max_members: int | None = DEFAULT_MAX_MEMBERS,
        status: str | None = GroupStatus.UPCOMING,
        name: str | None = None,
        whatsapp_invite_url: str | None = None,
        youversion_plan_url: str | None = None,
        today: date | None = None,
) -> BibleGroup:
    """
    Creates a group on the quarter containing `start`.

    end_date, registration_deadline and (unless `name` is given) the display
    name are all derived from the aligned start. Past start dates are
    accepted; admins backfill history this way.

    Raises:
      AppError(MALFORMED_DATE, 400)         — `start` is not a date
      AppError(INVALID_FIELD, 400)          — unknown status
      AppError(ACTIVE_GROUP_CONFLICT, 409)  — status 'active' while another
                                              open group is already active
    """
    today = _today(today)
    aligned = align_to_quarter_start(start)
    derived = compute_derived_dates(aligned)
    status = status or GroupStatus.UPCOMING
    _validate_status(status)

    if status == GroupStatus.ACTIVE:
        _ensure_single_open_group(derived.registration_deadline, today, session)

    group = BibleGroup(
        name=derive_group_name(aligned, name),
        start_date=aligned,
        end_date=derived.end_date,
        registration_deadline=derived.registration_deadline,
        max_members=max_members or DEFAULT_MAX_MEMBERS,
        status=status,
        whatsapp_invite_url=whatsapp_invite_url,
        youversion_plan_url=youversion_plan_url,
    )
    session.add(group)
    session.flush()

    logger.info(
        "Created group %s %r starting %s (status=%s)",
        group.id, group.name, group.start_date, group.status,
    )
    return group


def create_group(start, session: Session) -> BibleGroup:
    """Creates an 'upcoming' group of default capacity on the quarter of `start`."""
    return create_group_with_start(start, session)


def create_next_quarterly_group(session: Session, today: date | None = None) -> BibleGroup | None:
    """
    Creates the group one quarter after the most recently started group, but
    only if that quarter is still in the future. Creates at most one group
    per call. With no groups at all, bootstraps INITIAL_QUARTER_START.
    """
    today = _today(today)
    last = session.execute(
        select(BibleGroup)
        .order_by(BibleGroup.start_date.desc(), BibleGroup.id.desc())
        .limit(1)
    ).scalar_one_or_none()

    if last is None:
        logger.info("No groups exist yet; creating the initial group")
        return create_group(INITIAL_QUARTER_START, session)

    next_start = add_quarters(last.start_date, 1)
    if next_start > today:
        return create_group(next_start, session)

    logger.info(
        "Next quarter after group %s starts %s, not after %s; nothing created",
        last.id, next_start, today,
    )
    return None


# ── Status transitions ─────────────────────────────────────────────────────

def update_group_statuses(session: Session, today: date | None = None) -> dict:
    """
    Date-driven batch transition over all groups, in fixed order:

      1. upcoming → active          where start_date <= today
      2. active   → closed          where registration_deadline < today
      3. active/closed → completed  where end_date < today

    Each step selects by current status, so a group can pass through several
    steps in one call. No step ever moves a group backward.

    Returns: {"activated": n, "closed": n, "completed": n}
    """
    today = _today(today)

    activated = session.execute(
        update(BibleGroup)
        .where(
            BibleGroup.status == GroupStatus.UPCOMING,
            BibleGroup.start_date <= today,
        )
        .values(status=GroupStatus.ACTIVE)
    ).rowcount

    closed = session.execute(
        update(BibleGroup)
        .where(
            BibleGroup.status == GroupStatus.ACTIVE,
            BibleGroup.registration_deadline < today,
        )
        .values(status=GroupStatus.CLOSED)
    ).rowcount

    completed = session.execute(
        update(BibleGroup)
        .where(
            BibleGroup.status.in_((GroupStatus.ACTIVE, GroupStatus.CLOSED)),
            BibleGroup.end_date < today,
        )
        .values(status=GroupStatus.COMPLETED)
    ).rowcount

    session.flush()
    counts = {"activated": activated, "closed": closed, "completed": completed}
    logger.info("Group statuses updated for %s: %s", today, counts)
    return counts


# ── Membership ─────────────────────────────────────────────────────────────

def assign_user_to_group(
        user_id: int,
        session: Session,
        today: date | None = None,
) -> AssignmentResult:
    """
    Places a user in the group currently open for registration.

    If no group is open, tries to create the next quarterly group and
    activates it. A full group is a failure result, not an exception; an
    existing active membership is a success without a new row.
    """
    today = _today(today)
    current = get_current_active_group(session, today)

    if current is None:
        created = create_next_quarterly_group(session, today)
        if created is None:
            logger.warning("No open group for user %s", user_id)
            return AssignmentResult(
                success=False,
                message="No groups are currently accepting registrations",
                error_code=ErrorCode.NO_OPEN_GROUP,
            )
        _apply_status(created, GroupStatus.ACTIVE, today, session)
        _insert_membership(created.id, user_id, today, session)
        logger.info("User %s assigned to new group %s", user_id, created.id)
        return AssignmentResult(True, "Assigned to new group", created.id)

    return _admit(
        current.id,
        user_id,
        today,
        session,
        full_message="Current group is full. Please try again later.",
        duplicate_message="Already a member of this group",
        success_message="Successfully assigned to group",
    )


def add_member_to_group(
        group_id: int,
        user_id: int,
        session: Session,
        today: date | None = None,
) -> AssignmentResult:
    """
    Admin: adds a user to a specific group, any status, same capacity and
    duplicate rules as assign_user_to_group().

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(USER_NOT_FOUND, 404)
    """
    today = _today(today)
    _get_group_or_404(group_id, session)

    if session.get(User, user_id) is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
            404,
        )

    return _admit(
        group_id,
        user_id,
        today,
        session,
        full_message="Group is full",
        duplicate_message="User already in group",
        success_message="User added to group",
    )


def remove_member_from_group(group_id: int, user_id: int, session: Session) -> None:
    """
    Admin: removes every membership row the user has in the group.

    Raises:
      AppError(MEMBERSHIP_NOT_FOUND, 404) — user is not an active member
    """
    if _find_active_membership(group_id, user_id, session) is None:
        raise AppError(
            ErrorCode.MEMBERSHIP_NOT_FOUND,
            f"User {user_id} is not a member of group {group_id}.",
            404,
        )

    session.execute(
        delete(GroupMember).where(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id,
        )
    )
    session.flush()
    logger.info("User %s removed from group %s", user_id, group_id)


def get_next_group_status(
        user_id: int,
        session: Session,
        today: date | None = None,
) -> dict | None:
    """
    The next upcoming group as seen by one user: capacity, whether they are
    already in it, and whether they may still join.
    """
    today = _today(today)
    group = get_next_upcoming_group(session)
    if group is None:
        return None

    member_count = _active_member_count(group.id, session)
    return {
        **group_to_dict(group, member_count=member_count),
        "already_joined": _find_active_membership(group.id, user_id, session) is not None,
        "can_join": _registration_open(group, today) and member_count < group.max_members,
    }


def join_group(
        group_id: int,
        user_id: int,
        session: Session,
        today: date | None = None,
) -> AssignmentResult:
    """
    User self-join of an upcoming group before its registration deadline.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(REGISTRATION_CLOSED, 400)
    """
    today = _today(today)
    group = _get_group_or_404(group_id, session)

    if not _registration_open(group, today):
        raise AppError(
            ErrorCode.REGISTRATION_CLOSED,
            "Registration is closed for this group.",
            400,
        )

    return _admit(
        group_id,
        user_id,
        today,
        session,
        full_message="Group is full",
        duplicate_message="Already joined",
        success_message="Joined next group",
    )


def cancel_group_join(group_id: int, user_id: int, session: Session) -> None:
    """
    Withdraws a user from a group that has not started yet.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(REGISTRATION_CLOSED, 400) — group is no longer 'upcoming'
    """
    group = _get_group_or_404(group_id, session)
    if group.status != GroupStatus.UPCOMING:
        raise AppError(
            ErrorCode.REGISTRATION_CLOSED,
            "Cannot cancel for a group that is not upcoming.",
            400,
        )

    session.execute(
        delete(GroupMember).where(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id,
        )
    )
    session.flush()


# ── Admin maintenance ──────────────────────────────────────────────────────

def normalize_all_groups(session: Session) -> dict:
    """
    Re-aligns every group to its quarter anchor and rewrites name, start,
    end and registration deadline when any of them drifted. Leaves status
    and max_members alone. Running it twice in a row updates nothing the
    second time.

    Returns: {"updated": n}
    """
    groups = session.execute(
        select(BibleGroup).order_by(BibleGroup.start_date.asc())
    ).scalars().all()

    updated = 0
    for group in groups:
        aligned = align_to_quarter_start(group.start_date)
        derived = compute_derived_dates(aligned)
        expected_name = derive_group_name(aligned)

        stored = (group.name, group.start_date, group.end_date, group.registration_deadline)
        expected = (expected_name, aligned, derived.end_date, derived.registration_deadline)
        if stored != expected:
            group.name = expected_name
            group.start_date = aligned
            group.end_date = derived.end_date
            group.registration_deadline = derived.registration_deadline
            updated += 1

    session.flush()
    logger.info("Normalised %s of %s groups", updated, len(groups))
    return {"updated": updated}


def update_group(
        group_id: int,
        session: Session,
        *,
        name: str | None = None,
        status: str | None = None,
        start_date=None,
        max_members: int | None = None,
        whatsapp_invite_url: str | None = None,
        youversion_plan_url: str | None = None,
        today: date | None = None,
) -> BibleGroup | None:
    """
    Edits a group. A new start_date is aligned and the derived dates follow;
    the name re-syncs to the new quarter unless a name is given too.

    Returns None if the group does not exist.
    """
    today = _today(today)
    group = session.get(BibleGroup, group_id)
    if group is None:
        return None

    name_given = name is not None and bool(name.strip())
    if name_given:
        group.name = name.strip()

    if max_members is not None and max_members > 0:
        group.max_members = max_members

    dates_moved = False
    if start_date is not None and not (isinstance(start_date, str) and not start_date.strip()):
        aligned = align_to_quarter_start(start_date)
        derived = compute_derived_dates(aligned)
        group.start_date = aligned
        group.end_date = derived.end_date
        group.registration_deadline = derived.registration_deadline
        if not name_given:
            group.name = derive_group_name(aligned)
        dates_moved = True

    if whatsapp_invite_url is not None:
        group.whatsapp_invite_url = whatsapp_invite_url
    if youversion_plan_url is not None:
        group.youversion_plan_url = youversion_plan_url

    # After the date change, so the open-window check sees the new deadline.
    if status is not None:
        _apply_status(group, status, today, session)

    # A moved active group may reopen its registration window.
    if dates_moved and group.status == GroupStatus.ACTIVE:
        _ensure_single_open_group(
            group.registration_deadline, today, session, exclude_id=group.id,
        )

    session.flush()
    return group


def set_group_status(
        group_id: int,
        status: str,
        session: Session,
        today: date | None = None,
) -> BibleGroup | None:
    """Status-only change; dates and name untouched. None if missing."""
    group = session.get(BibleGroup, group_id)
    if group is None:
        return None
    _apply_status(group, status, _today(today), session)
    session.flush()
    return group


def set_sort_order(group_ids: list[int], session: Session) -> None:
    """Gives the listed groups sort_index 1..n in the order provided."""
    for index, group_id in enumerate(group_ids, start=1):
        session.execute(
            update(BibleGroup)
            .where(BibleGroup.id == group_id)
            .values(sort_index=index)
        )
    session.flush()


def clear_sort_order(group_ids: list[int], session: Session) -> None:
    """Drops the listed groups back to start-date ordering."""
    session.execute(
        update(BibleGroup)
        .where(BibleGroup.id.in_(group_ids))
        .values(sort_index=None)
    )
    session.flush()


def backfill_quarterly_groups(
        start,
        count: int,
        session: Session,
        status: str = GroupStatus.COMPLETED,
        today: date | None = None,
) -> list[BibleGroup]:
    """
    Creates `count` consecutive quarterly groups beginning with the quarter of
    `start`, then re-runs the status transitions for today.
    """
    today = _today(today)
    first = align_to_quarter_start(start)
    created = [
        create_group_with_start(
            add_quarters(first, offset),
            session,
            status=status,
            today=today,
        )
        for offset in range(count)
    ]
    update_group_statuses(session, today)
    return created


def ensure_baseline_groups(
        session: Session,
        past_quarters: int = 8,
        future_quarters: int = 2,
        today: date | None = None,
) -> list[BibleGroup]:
    """
    Seeds an empty database with the current quarter plus `past_quarters`
    before it and `future_quarters` after it. Does nothing if any group exists.
    """
    today = _today(today)
    existing = session.execute(select(func.count(BibleGroup.id))).scalar_one()
    if existing:
        return []

    first = add_quarters(align_to_quarter_start(today), -past_quarters)
    created = [
        create_group_with_start(add_quarters(first, offset), session, today=today)
        for offset in range(past_quarters + future_quarters + 1)
    ]
    update_group_statuses(session, today)
    return created
