"""
tests/unit/conftest.py — Shared setup for DB-free unit tests.

Unit tests never call create_app(), so the model modules are imported here
to register every mapped class. Without them, building an ORM object in a
test fails on relationship names such as "User" that nothing else imported.
"""

from backend.app.models import (  # noqa: F401
    expense,
    expense_extra,
    expense_participant,
    line_item,
    membership,
    settlement,
    transfer,
    trip,
    user,
)
