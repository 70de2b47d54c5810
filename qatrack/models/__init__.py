"""
QA Track
Models package: shared SQLAlchemy instance.

Import ``db`` from here; model modules register themselves on import
(see ``qatrack.create_app``).
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
