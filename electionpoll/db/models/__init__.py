"""Database models."""
from electionpoll.db.models.identity import Identity
from electionpoll.db.models.challenge import VerificationChallenge
from electionpoll.db.models.poll import Poll, PollOption
from electionpoll.db.models.vote import Vote

__all__ = ["Identity", "VerificationChallenge", "Poll", "PollOption", "Vote"]
