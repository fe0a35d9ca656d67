"""Vote model."""
from datetime import datetime, timezone as tz
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import relationship

from electionpoll.db.base import Base


class Vote(Base):
    __tablename__ = "votes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    poll_id = Column(Integer, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    option_id = Column(Integer, ForeignKey("poll_options.id", ondelete="CASCADE"), nullable=False)
    identity_phone = Column(String(20), ForeignKey("identities.phone"), nullable=False)
    cast_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(tz.utc))
    is_winner = Column(Boolean, nullable=False, default=False)

    # Relationships
    poll = relationship("Poll", back_populates="votes")
    option = relationship("PollOption", back_populates="votes")

    __table_args__ = (
        Index("idx_votes_poll_option", "poll_id", "option_id"),
        UniqueConstraint("poll_id", "identity_phone", name="uq_vote_poll_identity"),
        # At most one winner row per poll
        Index(
            "uq_vote_poll_winner",
            "poll_id",
            unique=True,
            sqlite_where=text("is_winner = 1"),
            postgresql_where=text("is_winner"),
        ),
    )
