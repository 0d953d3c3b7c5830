"""
cli.py — Flask CLI commands for group maintenance and admin setup.

    flask --app biblebus.app:create_app groups run-cron
    flask --app biblebus.app:create_app groups update-statuses
    flask --app biblebus.app:create_app groups normalize
    flask --app biblebus.app:create_app groups seed-baseline --past 8 --future 2
    flask --app biblebus.app:create_app users create-admin admin@example.org "Admin"

Each command commits its own transaction.
"""

from __future__ import annotations

import click
from flask.cli import AppGroup

from biblebus.app.extensions import db
from biblebus.app.services import auth_service, cron_service, group_service

groups_cli = AppGroup("groups", help="Quarterly group maintenance.")
users_cli = AppGroup("users", help="User administration.")


@groups_cli.command("run-cron")
def run_cron_command():
    """Run every periodic maintenance job once."""
    summary = cron_service.run_all_cron_jobs(db.session)
    db.session.commit()
    click.echo(f"Transitions: {summary['transitions']}")
    for group in summary["created_groups"]:
        click.echo(f"Created: {group['name']} ({group['start_date']})")


@groups_cli.command("update-statuses")
def update_statuses_command():
    """Apply date-driven status transitions."""
    counts = group_service.update_group_statuses(db.session)
    db.session.commit()
    click.echo(f"Transitions: {counts}")


@groups_cli.command("normalize")
def normalize_command():
    """Re-align every group to its quarter anchor."""
    result = group_service.normalize_all_groups(db.session)
    db.session.commit()
    click.echo(f"Updated {result['updated']} group(s).")


@groups_cli.command("seed-baseline")
@click.option("--past", "past_quarters", default=8, show_default=True, type=click.IntRange(min=0))
@click.option("--future", "future_quarters", default=2, show_default=True, type=click.IntRange(min=0))
def seed_baseline_command(past_quarters: int, future_quarters: int):
    """Seed quarterly groups around today when the table is empty."""
    created = group_service.ensure_baseline_groups(
        db.session,
        past_quarters=past_quarters,
        future_quarters=future_quarters,
    )
    db.session.commit()
    if not created:
        click.echo("Groups already exist; nothing seeded.")
        return
    for group in created:
        click.echo(f"{group.start_date}  {group.status:<10} {group.name}")


@users_cli.command("create-admin")
@click.argument("email")
@click.argument("name")
@click.password_option()
def create_admin_command(email: str, name: str, password: str):
    """Create an admin account (or promote an existing user)."""
    user = auth_service.create_admin(email, name, password, db.session)
    db.session.commit()
    click.echo(f"Admin ready: {user.email} (id={user.id})")
