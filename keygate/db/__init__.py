"""Database package providing SQLAlchemy models and session helpers."""

from .models import ApiKey, Base  # noqa: F401
from .session import create_schema, get_async_engine, get_session_maker  # noqa: F401

__all__ = ["ApiKey", "Base", "create_schema", "get_async_engine", "get_session_maker"]
