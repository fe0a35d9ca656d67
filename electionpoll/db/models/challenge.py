"""VerificationChallenge model."""
from datetime import datetime, timezone as tz
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)

from electionpoll.db.base import Base


class VerificationChallenge(Base):
    __tablename__ = "verification_challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identity_phone = Column(String(20), nullable=False)
    code_lookup_key = Column(String(64), nullable=False)  # HMAC-SHA256 output (64 hex chars)
    purpose = Column(String(20), nullable=False)
    target_poll_id = Column(Integer, ForeignKey("polls.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(tz.utc))
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_challenges_lookup", "identity_phone", "code_lookup_key", "purpose"),
        Index("idx_challenges_expires", "expires_at"),
        CheckConstraint(
            "purpose IN ('create_poll', 'cast_vote', 'admin_login')",
            name="ck_challenge_purpose",
        ),
    )
