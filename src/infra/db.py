"""
Unified database infrastructure module.

Models, services and routes import the shared SQLAlchemy instance from here
rather than from src.database directly.
"""

from src.database import db

__all__ = ["db"]
