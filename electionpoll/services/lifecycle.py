"""
Poll lifecycle: pending -> active -> ended, or pending -> rejected.

Transitions only move forward. Every transition takes the poll row lock, so an
ending poll and an in-flight vote (which holds a shared lock) serialize.
"""
import random
from typing import Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from electionpoll.core.constants import (
    POLL_STATUS_ACTIVE,
    POLL_STATUS_ENDED,
    POLL_STATUS_PENDING,
    POLL_STATUS_REJECTED,
)
from electionpoll.core.errors import InvalidTransition, ValidationFailed
from electionpoll.core.utils import has_passed, utcnow
from electionpoll.db.models import Poll, Vote
from electionpoll.services.broadcast import BroadcastHub
from electionpoll.services.lottery import award_winner, get_winner, notify_winner, select_winner
from electionpoll.services.notifications import NotificationSink
from electionpoll.services.poll import get_poll
from electionpoll.services.tally import publish_poll_ended

logger = structlog.get_logger(__name__)


def activate_poll(db: Session, poll_id: int) -> Poll:
    """
    Approve a pending poll.

    Raises:
        PollNotFound: Unknown poll
        InvalidTransition: Poll is not pending
        ValidationFailed: Poll has no end time, or it already passed
    """
    try:
        poll = get_poll(db, poll_id, lock=True)
        if poll.status != POLL_STATUS_PENDING:
            raise InvalidTransition(f"Cannot activate a poll that is {poll.status}")
        if poll.end_time is None or has_passed(poll.end_time):
            raise ValidationFailed("Set an end time in the future before activating")

        poll.status = POLL_STATUS_ACTIVE
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(poll)
    logger.info("poll_activated", poll_id=poll.id)
    return poll


def reject_poll(db: Session, poll_id: int) -> Poll:
    """
    Reject a pending poll. Rejected polls never accept votes.

    A poll rejected before it had an end time is closed at the moment of
    rejection; only pending polls may lack one.

    Raises:
        PollNotFound: Unknown poll
        InvalidTransition: Poll is not pending
    """
    try:
        poll = get_poll(db, poll_id, lock=True)
        if poll.status != POLL_STATUS_PENDING:
            raise InvalidTransition(f"Cannot reject a poll that is {poll.status}")

        if poll.end_time is None:
            poll.end_time = utcnow()
        poll.status = POLL_STATUS_REJECTED
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(poll)
    logger.info("poll_rejected", poll_id=poll.id)
    return poll


def end_poll(
    db: Session,
    poll_id: int,
    rng: Optional[random.Random] = None,
    notifier: Optional[NotificationSink] = None,
    broadcaster: Optional[BroadcastHub] = None,
) -> Optional[Poll]:
    """
    Close an active poll.

    When the poll's end time has passed, the winner is drawn in the same
    transaction as the status change, so the sweep ends a poll and awards its
    winner exactly once. An early administrative close leaves the draw to an
    explicit ``select_winner``.

    Ending a poll that already ended is a no-op.

    Returns:
        The ended Poll, or None if it had already ended

    Raises:
        PollNotFound: Unknown poll
        InvalidTransition: Poll is pending or rejected
    """
    winner: Optional[Vote] = None
    try:
        poll = get_poll(db, poll_id, lock=True)
        if poll.status == POLL_STATUS_ENDED:
            db.rollback()
            return None
        if poll.status != POLL_STATUS_ACTIVE:
            raise InvalidTransition(f"Cannot end a poll that is {poll.status}")

        # Conditional on the status we just read; a concurrent ender leaves no row
        now = utcnow()
        transitioned = (
            db.query(Poll)
            .filter(Poll.id == poll_id, Poll.status == POLL_STATUS_ACTIVE)
            .update({Poll.status: POLL_STATUS_ENDED, Poll.ended_at: now}, synchronize_session=False)
        )
        if transitioned != 1:
            db.rollback()
            return None

        if poll.end_time is not None and has_passed(poll.end_time, now):
            winner = award_winner(db, poll, rng)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(poll)
    logger.info(
        "poll_ended",
        poll_id=poll.id,
        winner_vote_id=winner.id if winner else None,
    )

    if winner is not None:
        notify_winner(db, poll, winner, notifier)
    publish_poll_ended(db, poll.id, winner.id if winner else None, broadcaster=broadcaster)
    return poll


def sweep_expired_polls(
    db: Session,
    rng: Optional[random.Random] = None,
    notifier: Optional[NotificationSink] = None,
    broadcaster: Optional[BroadcastHub] = None,
) -> Dict[str, int]:
    """
    End every active poll whose end time has passed, and draw any winner
    still missing for a poll that ended at its end time.

    Failures are logged per poll; one bad poll does not stop the sweep.

    Returns:
        Counts of ``ended``, ``winners`` and ``failed`` polls
    """
    now = utcnow()
    counts = {"ended": 0, "winners": 0, "failed": 0}

    expired_ids = [
        poll_id
        for (poll_id,) in db.query(Poll.id)
        .filter(Poll.status == POLL_STATUS_ACTIVE, Poll.end_time <= now)
        .order_by(Poll.end_time, Poll.id)
        .all()
    ]
    for poll_id in expired_ids:
        try:
            if end_poll(db, poll_id, rng=rng, notifier=notifier, broadcaster=broadcaster) is not None:
                counts["ended"] += 1
                if get_winner(db, poll_id) is not None:
                    counts["winners"] += 1
        except Exception as e:
            counts["failed"] += 1
            logger.error("poll_sweep_failed", poll_id=poll_id, error=str(e))

    has_winner = select(Vote.id).where(Vote.poll_id == Poll.id, Vote.is_winner.is_(True)).exists()
    has_votes = select(Vote.id).where(Vote.poll_id == Poll.id).exists()
    pending_lottery_ids = [
        poll_id
        for (poll_id,) in db.query(Poll.id)
        .filter(
            Poll.status == POLL_STATUS_ENDED,
            Poll.end_time <= now,
            ~has_winner,
            has_votes,
        )
        .order_by(Poll.id)
        .all()
    ]
    for poll_id in pending_lottery_ids:
        try:
            if select_winner(db, poll_id, rng=rng, notifier=notifier) is not None:
                counts["winners"] += 1
        except Exception as e:
            counts["failed"] += 1
            logger.error("lottery_sweep_failed", poll_id=poll_id, error=str(e))

    logger.info("poll_sweep_completed", **counts)
    return counts
