"""Database package."""
from electionpoll.db.session import engine, SessionLocal, get_db, get_db_context
from electionpoll.db.base import Base

__all__ = ["engine", "SessionLocal", "get_db", "get_db_context", "Base"]
