"""
wsgi.py — Server entry point.

    gunicorn biblebus.wsgi:app
    flask --app biblebus.wsgi run

Builds the app from FLASK_ENV (production by default) and starts the daily
group maintenance scheduler.
"""

import os

from biblebus.app import create_app, start_scheduler

app = create_app(os.getenv("FLASK_ENV", "production"))
start_scheduler(app)
