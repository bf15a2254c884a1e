"""Database package — async SQLAlchemy engine, session factory, models, and stores."""
from .engine import get_engine, get_session_factory, dispose_engine, create_tables
from .base import Base

__all__ = ["get_engine", "get_session_factory", "dispose_engine", "create_tables", "Base"]
