"""
extensions.py — Flask extension singletons.

`db` and `ma` are created here without an app and bound in create_app()
via init_app(), so tests can build isolated app instances.

    from backend.app.extensions import db, ma

Schema inheritance rule:
  Validation schemas in app/schemas/ inherit from marshmallow.Schema, NOT
  ma.Schema. ma.Schema needs an application context, and the unit tests in
  tests/unit/ load schemas without one.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ma = Marshmallow()
