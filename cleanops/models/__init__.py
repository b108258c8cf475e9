"""
Cleaning Operations Platform
Shared SQLAlchemy handle for all domain models.

Usage:
    from cleanops.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
