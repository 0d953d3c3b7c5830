"""
models/group.py — bible_groups table definition.

One row per quarterly reading group. start_date is always a quarter anchor
(Jan 1, Apr 1, Jul 1, Oct 1); end_date and registration_deadline are derived
from it by services/quarter_calendar.py and must be rewritten together
whenever start_date changes.

No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from biblebus.app.extensions import db


class GroupStatus:
    """Allowed values for BibleGroup.status, in lifecycle order."""

    UPCOMING  = "upcoming"
    ACTIVE    = "active"
    CLOSED    = "closed"
    COMPLETED = "completed"

    ALL = (UPCOMING, ACTIVE, CLOSED, COMPLETED)


class BibleGroup(db.Model):
    __tablename__ = "bible_groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_bible_groups_name_nonempty",
        ),
        CheckConstraint(
            "max_members > 0",
            name="ck_bible_groups_max_members_positive",
        ),
        CheckConstraint(
            "status IN ('upcoming', 'active', 'closed', 'completed')",
            name="ck_bible_groups_status",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    registration_deadline: Mapped[date] = mapped_column(Date, nullable=False)

    max_members: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=50,
        server_default="50",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=GroupStatus.UPCOMING,
        server_default=GroupStatus.UPCOMING,
    )

    # Manual ordering set from the admin dashboard. NULL sorts last.
    sort_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    whatsapp_invite_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    youversion_plan_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    memberships: Mapped[list["GroupMember"]] = relationship(  # noqa: F821
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<BibleGroup id={self.id} name={self.name!r} "
            f"start={self.start_date} status={self.status}>"
        )
