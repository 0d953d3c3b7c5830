"""
extensions.py — Flask extension singletons.

SQLAlchemy, marshmallow and the background scheduler live here as
module-level objects so they can be imported anywhere without circular
imports. The app factory attaches them with init_app(); the scheduler is
started by start_scheduler() from the server entry point (wsgi.py).

    from biblebus.app.extensions import db, ma
"""

from apscheduler.schedulers.background import BackgroundScheduler
from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Validation schemas in app/schemas/ inherit from marshmallow.Schema directly,
# NOT ma.Schema: ma.Schema needs an app context and the unit tests run
# without one.
ma = Marshmallow()

# Runs the periodic group maintenance job. Started from wsgi.py only.
scheduler = BackgroundScheduler(timezone="UTC")
