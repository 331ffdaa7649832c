"""
tests/unit/conftest.py: Shared setup for DB-free unit tests.

Importing every model module registers all mapped classes, so SQLAlchemy can
configure relationships (User.refresh_tokens, Project.members, ...) the first
time a test instantiates a model.
"""

from spendsync.app.models import (  # noqa: F401
    expense,
    notification,
    project,
    project_member,
    receipt,
    refresh_token,
    user,
)
