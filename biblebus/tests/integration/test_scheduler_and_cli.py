"""
tests/integration/test_scheduler_and_cli.py — Maintenance entry points.

  - start_scheduler() registers one interval job and is a no-op when disabled
  - the job body commits on success and rolls back (and keeps running) on error
  - `flask groups ...` / `flask users ...` commands commit their work
"""

from __future__ import annotations

from datetime import date
from unittest.mock import patch

from sqlalchemy import select

from biblebus.app import _run_group_maintenance, start_scheduler
from biblebus.app.extensions import db
from biblebus.app.models.group import BibleGroup, GroupStatus
from biblebus.app.models.user import User, UserRole

from .conftest import make_group


class TestScheduler:

    def test_disabled_in_testing(self, app):
        with patch("biblebus.app.extensions.scheduler") as scheduler:
            start_scheduler(app)

        scheduler.add_job.assert_not_called()

    def test_registers_interval_job(self, app):
        app.config["SCHEDULER_ENABLED"] = True
        try:
            with patch("biblebus.app.extensions.scheduler") as scheduler:
                scheduler.running = False
                start_scheduler(app)
        finally:
            app.config["SCHEDULER_ENABLED"] = False

        args, kwargs = scheduler.add_job.call_args
        assert args[0] is _run_group_maintenance
        assert args[1] == "interval"
        assert kwargs["hours"] == app.config["CRON_INTERVAL_HOURS"]
        assert kwargs["id"] == "group_maintenance"
        assert kwargs["max_instances"] == 1
        scheduler.start.assert_called_once()

    def test_job_commits_changes(self, app, open_group):
        _run_group_maintenance(app)

        with app.app_context():
            group = db.session.get(BibleGroup, open_group)
            assert group.status == GroupStatus.ACTIVE
            starts = db.session.execute(
                select(BibleGroup.start_date).order_by(BibleGroup.start_date)
            ).scalars().all()
            assert starts == [date(2026, 1, 1), date(2026, 4, 1)]

    def test_job_failure_is_logged_not_raised(self, app, open_group):
        with patch(
            "biblebus.app.services.cron_service.run_all_cron_jobs",
            side_effect=RuntimeError("database went away"),
        ), patch.object(app.logger, "exception") as log_exception:
            _run_group_maintenance(app)

        log_exception.assert_called_once()
        with app.app_context():
            assert db.session.get(BibleGroup, open_group).status == GroupStatus.UPCOMING


class TestCli:

    def test_run_cron(self, app, open_group):
        result = app.test_cli_runner().invoke(args=["groups", "run-cron"])

        assert result.exit_code == 0, result.output
        assert "Created: Bible Bus April 2026 Travelers (2026-04-01)" in result.output

    def test_normalize(self, app, open_group):
        result = app.test_cli_runner().invoke(args=["groups", "normalize"])

        assert result.exit_code == 0, result.output
        assert "Updated 0 group(s)." in result.output

    def test_update_statuses(self, app):
        with app.app_context():
            group_id = make_group(db.session, "2025-10-01").id

        result = app.test_cli_runner().invoke(args=["groups", "update-statuses"])

        assert result.exit_code == 0, result.output
        with app.app_context():
            assert db.session.get(BibleGroup, group_id).status == GroupStatus.CLOSED

    def test_seed_baseline_only_once(self, app):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["groups", "seed-baseline", "--past", "1", "--future", "1"])
        second = runner.invoke(args=["groups", "seed-baseline"])

        assert first.exit_code == 0, first.output
        assert "Bible Bus October 2025 Travelers" in first.output
        assert "Bible Bus April 2026 Travelers" in first.output
        assert "nothing seeded" in second.output

    def test_create_admin(self, app):
        result = app.test_cli_runner().invoke(
            args=["users", "create-admin", "pastor@test.com", "Pastor Dan",
                  "--password", "Shepherd123"],
        )

        assert result.exit_code == 0, result.output
        with app.app_context():
            user = db.session.execute(
                select(User).where(User.email == "pastor@test.com")
            ).scalar_one()
            assert user.role == UserRole.ADMIN
