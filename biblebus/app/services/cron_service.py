"""
services/cron_service.py — Periodic group maintenance.

Run once a day by the background scheduler (see app/__init__.py), on demand
by POST /admin/cron/run, and by `flask groups run-cron`. Every step is safe
to re-run: status transitions never move backward and
create_next_quarterly_group() only creates a quarter that is still ahead.

Like the other services this only flushes; the caller commits.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.orm import Session

from biblebus.app.services import group_service
from biblebus.app.services.group_service import group_to_dict

logger = logging.getLogger(__name__)


def update_statuses(session: Session, today: date | None = None) -> dict:
    """
    Applies the date-driven transitions, then bootstraps a group if there is
    neither an open group nor an upcoming one left.
    """
    counts = group_service.update_group_statuses(session, today)

    current = group_service.get_current_active_group(session, today)
    upcoming = group_service.get_next_upcoming_group(session)

    created = None
    if current is None and upcoming is None:
        logger.info("No open or upcoming group; creating the next quarterly group")
        created = group_service.create_next_quarterly_group(session, today)

    return {
        "transitions": counts,
        "created_group": group_to_dict(created) if created is not None else None,
    }


def ensure_next_group_exists(session: Session, today: date | None = None) -> dict | None:
    """Creates the next quarterly group when no 'upcoming' group exists."""
    upcoming = group_service.get_next_upcoming_group(session)
    if upcoming is not None:
        logger.debug("Next group already exists: %s", upcoming.name)
        return None

    created = group_service.create_next_quarterly_group(session, today)
    return group_to_dict(created) if created is not None else None


def run_all_cron_jobs(session: Session, today: date | None = None) -> dict:
    """Runs every maintenance step in order and returns what each one did."""
    logger.info("Running group maintenance jobs")
    status_summary = update_statuses(session, today)
    next_group = ensure_next_group_exists(session, today)

    summary = {
        "transitions": status_summary["transitions"],
        "created_groups": [
            g for g in (status_summary["created_group"], next_group) if g is not None
        ],
    }
    logger.info(
        "Group maintenance finished: %s, %d group(s) created",
        summary["transitions"], len(summary["created_groups"]),
    )
    return summary
