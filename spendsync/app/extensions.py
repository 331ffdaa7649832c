"""
extensions.py: Flask extension singletons.

Initialises SQLAlchemy, marshmallow and the live change feed as module-level
objects so they can be imported anywhere without creating circular
dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db`, `ma` or `change_feed` from here wherever needed.

    from spendsync.app.extensions import db, ma, change_feed

Do not pass the app object directly to SQLAlchemy() or Marshmallow() at
import time; that would prevent running tests with a separate test app
instance.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

from spendsync.app.live import ChangeFeed

db = SQLAlchemy()

# Marshmallow instance, available for serialization helpers.
#
# IMPORTANT: schema inheritance rule.
#   All validation Schema classes (in app/schemas/) must inherit from
#   marshmallow.Schema directly, NOT from ma.Schema.
#
#   ma.Schema requires an active Flask application context. Unit tests in
#   tests/unit/ run without a Flask app.
#
#   Correct:
#       from marshmallow import Schema, fields
#       class CreateExpenseSchema(Schema): ...
#
#   Incorrect:
#       class CreateExpenseSchema(ma.Schema): ...   # breaks unit tests
ma = Marshmallow()

# Process-wide publish/subscribe hub for project and notification snapshots.
# Routes publish after a successful commit; subscribers hold a Subscription
# handle and cancel it when their view goes away.
change_feed = ChangeFeed()
