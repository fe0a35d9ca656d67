"""Poll and PollOption models."""
from datetime import datetime, timezone as tz
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from electionpoll.db.base import Base


class Poll(Base):
    __tablename__ = "polls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    public_id = Column(String(16), unique=True, nullable=False, index=True)
    question = Column(Text, nullable=False)
    creator_phone = Column(String(20), ForeignKey("identities.phone"), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)  # null only while pending
    status = Column(String(10), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(tz.utc))
    ended_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    creator = relationship("Identity")
    options = relationship(
        "PollOption",
        back_populates="poll",
        cascade="all, delete-orphan",
        order_by="PollOption.id",
    )
    votes = relationship("Vote", back_populates="poll", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_polls_status_end", "status", "end_time"),
        CheckConstraint(
            "status IN ('pending', 'active', 'ended', 'rejected')",
            name="ck_poll_status",
        ),
        CheckConstraint(
            "end_time IS NOT NULL OR status = 'pending'",
            name="ck_poll_end_time",
        ),
    )


class PollOption(Base):
    """An answer of a poll. Vote counts are always derived from ``votes``."""

    __tablename__ = "poll_options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    poll_id = Column(Integer, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    text = Column(String(255), nullable=False)
    color = Column(String(7), nullable=False)

    # Relationships
    poll = relationship("Poll", back_populates="options")
    votes = relationship("Vote", back_populates="option")

    __table_args__ = (Index("idx_poll_options_poll", "poll_id"),)
