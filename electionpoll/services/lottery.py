"""
Winner lottery.

One winner per poll, drawn uniformly at random among the voters of the
winning option. The winning option is the one with the most votes; ties go to
the option created first (lowest option id).

Each voter of the winning option has probability 1/N. The draw is a single
``choice`` over the full voter list, never a chain of per-voter coin flips,
which would favour early voters.
"""
import random
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from electionpoll.core.config import settings
from electionpoll.core.constants import POLL_STATUS_ENDED
from electionpoll.core.errors import PollNotEnded
from electionpoll.core.sanitization import mask_phone
from electionpoll.core.utils import isoformat_utc
from electionpoll.db.models import Poll, PollOption, Vote
from electionpoll.services.notifications import (
    NotificationSink,
    get_notifier,
    poll_ended_message,
    winner_message,
)
from electionpoll.services.poll import get_poll
from electionpoll.services.tally import count_votes_by_option

logger = structlog.get_logger(__name__)

_system_random = random.SystemRandom()


def pick_winning_option(counts: Dict[int, int]) -> Optional[Tuple[int, int]]:
    """
    Option with the strictly highest count, lowest id on ties.

    Args:
        counts: option id -> vote count

    Returns:
        (option_id, count), or None when no option has a vote
    """
    best: Optional[Tuple[int, int]] = None
    for option_id in sorted(counts):
        count = counts[option_id]
        if best is None or count > best[1]:
            best = (option_id, count)

    if best is None or best[1] == 0:
        return None
    return best


def draw_winner(candidates: Sequence[Any], rng: Optional[random.Random] = None) -> Any:
    """Pick one candidate uniformly at random."""
    if not candidates:
        raise ValueError("Cannot draw a winner from an empty candidate list")
    return (rng or _system_random).choice(candidates)


def get_winner(db: Session, poll_id: int) -> Optional[Vote]:
    return (
        db.query(Vote)
        .filter(Vote.poll_id == poll_id, Vote.is_winner.is_(True))
        .first()
    )


def _winning_option_votes(db: Session, poll_id: int) -> Tuple[Optional[int], List[Vote]]:
    winning = pick_winning_option(count_votes_by_option(db, poll_id))
    if winning is None:
        return None, []

    option_id, _ = winning
    votes = (
        db.query(Vote)
        .filter(Vote.poll_id == poll_id, Vote.option_id == option_id)
        .order_by(Vote.cast_at, Vote.id)
        .all()
    )
    return option_id, votes


def award_winner(db: Session, poll: Poll, rng: Optional[random.Random] = None) -> Optional[Vote]:
    """
    Flag one winner inside the caller's transaction. Does not commit.

    The caller must hold the poll row lock. An existing winner is returned
    unchanged. The flag write is conditional on no winner existing and backed by
    the one-winner-per-poll unique index.

    Returns:
        The winning Vote, or None if the poll has no votes
    """
    existing = get_winner(db, poll.id)
    if existing is not None:
        return existing

    option_id, candidates = _winning_option_votes(db, poll.id)
    if not candidates:
        logger.info("winner_not_selected", poll_id=poll.id, reason="no_votes")
        return None

    chosen = draw_winner(candidates, rng)
    other = aliased(Vote)

    result = db.execute(
        update(Vote)
        .where(
            Vote.id == chosen.id,
            Vote.is_winner.is_(False),
            ~select(other.id)
            .where(other.poll_id == poll.id, other.is_winner.is_(True))
            .exists(),
        )
        .values(is_winner=True)
        .execution_options(synchronize_session=False)
    )
    db.flush()
    if result.rowcount != 1:
        return get_winner(db, poll.id)

    db.refresh(chosen)
    logger.info(
        "winner_selected",
        poll_id=poll.id,
        option_id=option_id,
        vote_id=chosen.id,
        candidates=len(candidates),
        winner=mask_phone(chosen.identity_phone),
    )
    return chosen


def notify_winner(
    db: Session,
    poll: Poll,
    winner: Vote,
    notifier: Optional[NotificationSink] = None,
) -> None:
    """
    Tell the winner, and a bounded number of other winning-option voters.

    Called after commit. Delivery problems are logged, never raised.
    """
    sink = notifier or get_notifier()
    try:
        sink.send(winner.identity_phone, winner_message(poll.question))

        others = [
            phone
            for (phone,) in db.query(Vote.identity_phone)
            .filter(
                Vote.poll_id == poll.id,
                Vote.option_id == winner.option_id,
                Vote.id != winner.id,
            )
            .order_by(Vote.cast_at, Vote.id)
            .limit(settings.WINNER_NOTIFY_LIMIT)
            .all()
        ]
        for phone in others:
            sink.send(phone, poll_ended_message(poll.question))
    except Exception as e:
        logger.error("winner_notification_failed", poll_id=poll.id, error=str(e))


def _require_ended(poll: Poll) -> None:
    if poll.status != POLL_STATUS_ENDED:
        raise PollNotEnded()


def select_winner(
    db: Session,
    poll_id: int,
    rng: Optional[random.Random] = None,
    notifier: Optional[NotificationSink] = None,
) -> Optional[Vote]:
    """
    Select the poll's winner; idempotent.

    A second call returns the same Vote without drawing again. Only ended polls
    are eligible, so the voter set is frozen.

    Args:
        db: Database session
        poll_id: Internal poll id
        rng: Random source (defaults to ``SystemRandom``)
        notifier: Sink for winner notifications

    Returns:
        The winning Vote, or None if nobody voted

    Raises:
        PollNotFound: Unknown poll
        PollNotEnded: Poll can still accept votes or was never run
    """
    try:
        poll = get_poll(db, poll_id, lock=True)
        _require_ended(poll)

        already = get_winner(db, poll_id)
        if already is not None:
            db.rollback()
            return already

        winner = award_winner(db, poll, rng)
        db.commit()
    except IntegrityError:
        # A concurrent draw flagged its winner first
        db.rollback()
        return get_winner(db, poll_id)
    except Exception:
        db.rollback()
        raise

    if winner is not None:
        notify_winner(db, poll, winner, notifier)
    return winner


def rerun_lottery(
    db: Session,
    poll_id: int,
    rng: Optional[random.Random] = None,
    notifier: Optional[NotificationSink] = None,
) -> Optional[Vote]:
    """
    Administrative re-draw: clear every winner flag of the poll, then draw again.

    Both steps run in one transaction, so observers never see two winners.
    """
    try:
        poll = get_poll(db, poll_id, lock=True)
        _require_ended(poll)

        cleared = db.execute(
            update(Vote)
            .where(Vote.poll_id == poll_id, Vote.is_winner.is_(True))
            .values(is_winner=False)
            .execution_options(synchronize_session=False)
        )
        db.flush()
        db.expire_all()
        logger.info("winner_flags_cleared", poll_id=poll_id, cleared=cleared.rowcount)

        winner = award_winner(db, poll, rng)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if winner is not None:
        notify_winner(db, poll, winner, notifier)
    return winner


def get_winner_ranking(db: Session, poll_id: int) -> Dict[str, Any]:
    """
    The winner, the winning option and its voters ranked by vote time.

    Phones are masked.

    Raises:
        PollNotFound: Unknown poll
        PollNotEnded: Poll still running
    """
    poll = get_poll(db, poll_id)
    _require_ended(poll)

    counts = count_votes_by_option(db, poll_id)
    winning = pick_winning_option(counts)
    winner = get_winner(db, poll_id)

    winning_option = None
    voters: List[Dict[str, Any]] = []
    if winning is not None:
        option_id, count = winning
        option = db.query(PollOption).filter(PollOption.id == option_id).one()
        winning_option = {
            "id": option.id,
            "text": option.text,
            "color": option.color,
            "votes": count,
        }
        _, votes = _winning_option_votes(db, poll_id)
        voters = [
            {
                "rank": index + 1,
                "phone": mask_phone(vote.identity_phone),
                "voted_at": isoformat_utc(vote.cast_at),
            }
            for index, vote in enumerate(votes)
        ]

    return {
        "poll_id": poll.id,
        "winner": {
            "phone": mask_phone(winner.identity_phone),
            "voted_at": isoformat_utc(winner.cast_at),
        } if winner else None,
        "winning_option": winning_option,
        "winning_option_voters": voters,
    }
