"""Identity model."""
from datetime import datetime, timezone as tz
from sqlalchemy import Column, Integer, String, DateTime

from electionpoll.db.base import Base


class Identity(Base):
    __tablename__ = "identities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(20), unique=True, nullable=False, index=True)  # canonical +8801XXXXXXXXX
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(tz.utc))
