"""
models/membership.py — group_members junction table definition.

A user may have several membership rows for the same group over time (an
admin can deactivate and re-add), but at most one with status 'active'.
That rule is enforced by the partial unique index below, so two concurrent
assignments of the same user cannot both land.

FK policy: group_id ON DELETE CASCADE (memberships belong to their group),
user_id ON DELETE RESTRICT.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, String, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from biblebus.app.extensions import db


class MembershipStatus:
    ACTIVE   = "active"
    INACTIVE = "inactive"

    ALL = (ACTIVE, INACTIVE)


class GroupMember(db.Model):
    __tablename__ = "group_members"

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive')",
            name="ck_group_members_status",
        ),
        Index(
            "uq_group_members_active_user_group",
            "user_id",
            "group_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("bible_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    join_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=MembershipStatus.ACTIVE,
        server_default=MembershipStatus.ACTIVE,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="memberships",
    )

    group: Mapped["BibleGroup"] = relationship(  # noqa: F821
        "BibleGroup",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<GroupMember id={self.id} "
            f"user_id={self.user_id} "
            f"group_id={self.group_id} "
            f"status={self.status}>"
        )
