"""Tally computation and live broadcast of vote counts."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from electionpoll.core.config import settings
from electionpoll.core.constants import EVENT_POLL_ENDED, EVENT_VOTE_CAST
from electionpoll.core.errors import PollNotFound, StorageUnavailable
from electionpoll.db.models import Poll, PollOption, Vote
from electionpoll.services.broadcast import BroadcastHub, hub as default_hub, poll_channel

logger = structlog.get_logger(__name__)


@dataclass
class Tally:
    """Vote counts of one poll, derived from the vote rows."""

    poll_id: int
    total: int = 0
    per_option: Dict[int, int] = field(default_factory=dict)

    def as_payload(self) -> Dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "total": self.total,
            "per_option": {str(option_id): count for option_id, count in self.per_option.items()},
        }


def count_votes_by_option(db: Session, poll_id: int) -> Dict[int, int]:
    """
    Count vote rows per option with a single grouped query.

    Every option of the poll is present, options without votes at 0, in option
    id order.
    """
    option_ids: List[int] = [
        option_id
        for (option_id,) in db.query(PollOption.id)
        .filter(PollOption.poll_id == poll_id)
        .order_by(PollOption.id)
        .all()
    ]
    counts = {option_id: 0 for option_id in option_ids}

    rows = (
        db.query(Vote.option_id, func.count(Vote.id))
        .filter(Vote.poll_id == poll_id)
        .group_by(Vote.option_id)
        .all()
    )
    for option_id, count in rows:
        counts[option_id] = count

    return counts


def compute_tally(db: Session, poll_id: int) -> Tally:
    """Tally of the poll as seen by the current transaction."""
    per_option = count_votes_by_option(db, poll_id)
    return Tally(poll_id=poll_id, total=sum(per_option.values()), per_option=per_option)


def get_tally(db: Session, poll_id: int, retries: Optional[int] = None) -> Tally:
    """
    Read-only tally for callers, retried on transient database errors.

    Args:
        db: Database session
        poll_id: Internal poll id
        retries: Extra attempts after the first (defaults to TALLY_READ_RETRIES)

    Raises:
        PollNotFound: Unknown poll
        StorageUnavailable: Database still failing after all attempts
    """
    attempts = 1 + (settings.TALLY_READ_RETRIES if retries is None else retries)

    for attempt in range(1, attempts + 1):
        try:
            if db.query(Poll.id).filter(Poll.id == poll_id).first() is None:
                raise PollNotFound()
            return compute_tally(db, poll_id)
        except OperationalError as e:
            db.rollback()
            logger.warning(
                "tally_read_failed",
                poll_id=poll_id,
                attempt=attempt,
                max_attempts=attempts,
                error=str(e),
            )

    raise StorageUnavailable()


def publish_vote_cast(
    db: Session,
    poll_id: int,
    option_id: int,
    broadcaster: Optional[BroadcastHub] = None,
) -> Optional[Dict[str, Any]]:
    """
    Publish the post-vote tally on the poll channel.

    Runs after the vote transaction committed. Broadcast is an optimization:
    failures are logged and swallowed so the vote itself still succeeds.

    Returns:
        The published payload, or None if publishing failed
    """
    try:
        payload = compute_tally(db, poll_id).as_payload()
        payload["event"] = EVENT_VOTE_CAST
        payload["changed_option_id"] = option_id
        (broadcaster or default_hub).publish(poll_channel(poll_id), payload)
        return payload
    except Exception as e:
        logger.warning("vote_broadcast_failed", poll_id=poll_id, error=str(e))
        return None


def publish_poll_ended(
    db: Session,
    poll_id: int,
    winner_vote_id: Optional[int] = None,
    broadcaster: Optional[BroadcastHub] = None,
) -> Optional[Dict[str, Any]]:
    """Publish the final tally once a poll has ended."""
    try:
        payload = compute_tally(db, poll_id).as_payload()
        payload["event"] = EVENT_POLL_ENDED
        payload["has_winner"] = winner_vote_id is not None
        (broadcaster or default_hub).publish(poll_channel(poll_id), payload)
        return payload
    except Exception as e:
        logger.warning("poll_end_broadcast_failed", poll_id=poll_id, error=str(e))
        return None
