"""Initial schema — users, bible_groups, group_members.

Revision: 001_initial_schema
Created:  2025-09-15

Append-only: never edit this file once it has been applied to a database.
Schema changes go in a new revision.

Creation order:
  1. Tables in FK dependency order (users → bible_groups → group_members)
  2. Indexes, including the partial unique index that allows at most one
     active membership per (user, group)

ON DELETE policies:
  group_members.group_id → CASCADE   (memberships go with their group)
  group_members.user_id  → RESTRICT  (cannot delete a user with memberships)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    # ── users ──────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_users_name_nonempty"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_users_email_format"),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
    )

    # ── bible_groups ───────────────────────────────────────────────────────
    # start_date is always a quarter anchor (Jan/Apr/Jul/Oct 1); end_date and
    # registration_deadline are derived from it by the service layer.
    op.create_table(
        "bible_groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("registration_deadline", sa.Date(), nullable=False),
        sa.Column("max_members", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("status", sa.String(20), nullable=False, server_default="upcoming"),
        sa.Column("sort_index", sa.Integer(), nullable=True),
        sa.Column("whatsapp_invite_url", sa.String(500), nullable=True),
        sa.Column("youversion_plan_url", sa.String(500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_bible_groups"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_bible_groups_name_nonempty"),
        sa.CheckConstraint("max_members > 0", name="ck_bible_groups_max_members_positive"),
        sa.CheckConstraint(
            "status IN ('upcoming', 'active', 'closed', 'completed')",
            name="ck_bible_groups_status",
        ),
    )
    op.create_index("ix_bible_groups_start_date", "bible_groups", ["start_date"])

    # ── group_members ──────────────────────────────────────────────────────
    op.create_table(
        "group_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("bible_groups.id", ondelete="CASCADE", name="fk_group_members_group"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_group_members_user"),
            nullable=False,
        ),
        sa.Column("join_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_group_members"),
        sa.CheckConstraint(
            "status IN ('active', 'inactive')",
            name="ck_group_members_status",
        ),
    )
    op.create_index("ix_group_members_group_id", "group_members", ["group_id"])
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"])

    # At most one ACTIVE row per (user, group); inactive history rows may repeat.
    op.create_index(
        "uq_group_members_active_user_group",
        "group_members",
        ["user_id", "group_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )


def downgrade() -> None:
    op.drop_index("uq_group_members_active_user_group", table_name="group_members")
    op.drop_index("ix_group_members_user_id",   table_name="group_members")
    op.drop_index("ix_group_members_group_id",  table_name="group_members")
    op.drop_index("ix_bible_groups_start_date", table_name="bible_groups")

    op.drop_table("group_members")
    op.drop_table("bible_groups")
    op.drop_table("users")
