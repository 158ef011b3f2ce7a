"""
Precast Kanban backend
SQLAlchemy extension instance shared by every model module.

Usage:
    from precast.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
