"""Shared API dependencies."""
from electionpoll.db import get_db, get_db_context
from electionpoll.core.security import verify_admin_token

__all__ = ["get_db", "get_db_context", "verify_admin_token"]
