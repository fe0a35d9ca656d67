"""Database base class and model imports."""
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import all models here for Alembic to detect them
from electionpoll.db.models.identity import Identity  # noqa: F401, E402
from electionpoll.db.models.challenge import VerificationChallenge  # noqa: F401, E402
from electionpoll.db.models.poll import Poll, PollOption  # noqa: F401, E402
from electionpoll.db.models.vote import Vote  # noqa: F401, E402
