"""Vote ledger: admission control for votes."""
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from electionpoll.core.constants import DEFAULT_VOTER_NAME, POLL_STATUS_ACTIVE, PURPOSE_CAST_VOTE
from electionpoll.core.errors import (
    DuplicateVote,
    InvalidOption,
    InvalidVerification,
    PollNotActive,
    PollNotFound,
    StorageUnavailable,
)
from electionpoll.core.sanitization import mask_phone
from electionpoll.core.utils import has_passed, utcnow
from electionpoll.db.models import Poll, PollOption, Vote
from electionpoll.services.broadcast import BroadcastHub
from electionpoll.services.identity import find_or_create
from electionpoll.services.poll import is_accepting_votes
from electionpoll.services.tally import publish_vote_cast
from electionpoll.services.verification import verify_challenge

logger = structlog.get_logger(__name__)


def _is_duplicate_vote_error(error: IntegrityError) -> bool:
    message = str(error.orig)
    return (
        "uq_vote_poll_identity" in message
        or "votes.poll_id, votes.identity_phone" in message
    )


def _still_accepting_votes(db: Session, poll_id: int) -> bool:
    status, end_time = db.query(Poll.status, Poll.end_time).filter(Poll.id == poll_id).one()
    return status == POLL_STATUS_ACTIVE and end_time is not None and not has_passed(end_time)


def cast_vote(
    db: Session,
    poll_id: int,
    option_id: int,
    phone: str,
    code: str,
    broadcaster: Optional[BroadcastHub] = None,
) -> Vote:
    """
    Cast a vote in a poll.

    Checks run in order and stop at the first failure: the poll accepts votes,
    the code verifies for this poll, the option belongs to the poll, the
    identity has not voted yet. The poll row is read with a shared lock so an
    end-of-poll transition cannot interleave with the insert. SQLite has no
    row locks, so the status is read again after the vote row is flushed,
    when the transaction already holds the database write lock. The code is
    consumed in the same transaction as the vote; a rejected vote leaves it
    unconsumed.

    The unique constraint on (poll_id, identity_phone) is the final arbiter:
    of two concurrent requests from one identity the loser gets DuplicateVote.

    After commit the new tally is published on the poll channel.

    Args:
        db: Database session
        poll_id: Internal poll id
        option_id: Chosen option
        phone: Canonical phone number of the voter
        code: Verification code issued for ``cast_vote`` on this poll
        broadcaster: Hub to publish on (defaults to the process hub)

    Returns:
        The committed Vote

    Raises:
        PollNotFound, PollNotActive, InvalidVerification, InvalidOption,
        DuplicateVote, StorageUnavailable
    """
    try:
        poll = (
            db.query(Poll)
            .filter(Poll.id == poll_id)
            .with_for_update(read=True)
            .first()
        )
        if poll is None:
            raise PollNotFound()

        if not is_accepting_votes(poll):
            raise PollNotActive()

        if not verify_challenge(db, phone, code, PURPOSE_CAST_VOTE, target_poll_id=poll_id, commit=False):
            raise InvalidVerification()

        option = (
            db.query(PollOption)
            .filter(PollOption.id == option_id, PollOption.poll_id == poll_id)
            .first()
        )
        if option is None:
            raise InvalidOption()

        existing_vote = (
            db.query(Vote.id)
            .filter(Vote.poll_id == poll_id, Vote.identity_phone == phone)
            .first()
        )
        if existing_vote is not None:
            raise DuplicateVote()

        find_or_create(db, phone, DEFAULT_VOTER_NAME)

        vote = Vote(
            poll_id=poll_id,
            option_id=option_id,
            identity_phone=phone,
            cast_at=utcnow(),
            is_winner=False,
        )
        db.add(vote)
        db.flush()

        # The transaction holds the write lock from here on; an end that
        # committed after the first read shows up in this one
        if not _still_accepting_votes(db, poll_id):
            raise PollNotActive()

        db.commit()
    except IntegrityError as e:
        db.rollback()
        # Handle race condition: duplicate vote due to concurrent requests
        if _is_duplicate_vote_error(e):
            raise DuplicateVote()
        raise
    except OperationalError as e:
        db.rollback()
        logger.error("vote_storage_error", poll_id=poll_id, error=str(e))
        raise StorageUnavailable()
    except Exception:
        db.rollback()
        raise

    db.refresh(vote)
    logger.info(
        "vote_cast",
        poll_id=poll_id,
        option_id=option_id,
        vote_id=vote.id,
        phone=mask_phone(phone),
    )

    publish_vote_cast(db, poll_id, option_id, broadcaster=broadcaster)
    return vote


def list_votes(db: Session, poll_id: int) -> List[Vote]:
    """All votes of a poll in insertion order (admin view)."""
    return (
        db.query(Vote)
        .filter(Vote.poll_id == poll_id)
        .order_by(Vote.cast_at, Vote.id)
        .all()
    )
