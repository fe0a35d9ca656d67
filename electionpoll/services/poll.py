"""Poll/option aggregate business logic."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from electionpoll.core.constants import (
    DEFAULT_OPTION_COLORS,
    MAX_POLL_OPTIONS,
    MIN_POLL_OPTIONS,
    POLL_STATUS_ACTIVE,
    POLL_STATUS_ENDED,
    POLL_STATUS_PENDING,
)
from electionpoll.core.errors import (
    InvalidOption,
    InvalidTransition,
    PollNotFound,
    StorageUnavailable,
    ValidationFailed,
)
from electionpoll.core.sanitization import mask_phone, sanitize_option_text, sanitize_question, validate_color
from electionpoll.core.utils import has_passed, isoformat_utc, make_public_id, to_utc, utcnow
from electionpoll.db.models import Identity, Poll, PollOption

logger = structlog.get_logger(__name__)


def default_color(index: int) -> str:
    """Palette colour for the option at ``index``."""
    return DEFAULT_OPTION_COLORS[index % len(DEFAULT_OPTION_COLORS)]


def is_accepting_votes(poll: Poll, now: Optional[datetime] = None) -> bool:
    """Derived status: stored status is active and the end time is still ahead."""
    return (
        poll.status == POLL_STATUS_ACTIVE
        and poll.end_time is not None
        and not has_passed(poll.end_time, now)
    )


def _clean_options(options: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    if not MIN_POLL_OPTIONS <= len(options) <= MAX_POLL_OPTIONS:
        raise ValidationFailed(
            f"A poll needs between {MIN_POLL_OPTIONS} and {MAX_POLL_OPTIONS} options"
        )

    cleaned = []
    for index, option in enumerate(options):
        cleaned.append({
            "text": sanitize_option_text(option.get("text", "")),
            "color": validate_color(option.get("color")) or default_color(index),
        })
    return cleaned


def validate_new_poll(
    question: str,
    end_time: Optional[datetime],
    options: Sequence[Dict[str, Any]],
    auto_activate: bool = False,
) -> Tuple[str, Optional[datetime], List[Dict[str, str]]]:
    """
    Check and clean the fields of a new poll without touching the database.

    Returns:
        The sanitized question, the UTC end time and the cleaned options

    Raises:
        ValidationFailed: Bad question, option count, option text/colour or end time
    """
    question = sanitize_question(question)
    cleaned = _clean_options(options)

    if end_time is not None:
        end_time = to_utc(end_time)
        if has_passed(end_time):
            raise ValidationFailed("End time must be in the future")
    elif auto_activate:
        raise ValidationFailed("An active poll needs an end time")

    return question, end_time, cleaned


def create_poll(
    db: Session,
    creator: Identity,
    question: str,
    end_time: Optional[datetime],
    options: Sequence[Dict[str, Any]],
    auto_activate: bool = False,
) -> Poll:
    """
    Create a poll with its 2-5 options.

    Args:
        db: Database session
        creator: Verified identity creating the poll
        question: Poll question
        end_time: When voting closes (required unless the poll starts pending)
        options: Sequence of ``{"text": ..., "color": ...}``; colour optional
        auto_activate: Start the poll as active instead of pending

    Returns:
        The committed Poll with its options loaded

    Raises:
        ValidationFailed: Bad question, option count, option text/colour or end time
        StorageUnavailable: No free public id after repeated collisions
    """
    question, end_time, cleaned = validate_new_poll(question, end_time, options, auto_activate)
    status = POLL_STATUS_ACTIVE if auto_activate else POLL_STATUS_PENDING

    # Try to create poll with a unique public id
    for _ in range(3):
        poll = Poll(
            public_id=make_public_id(),
            question=question,
            creator_phone=creator.phone,
            end_time=end_time,
            status=status,
            created_at=utcnow(),
        )
        poll.options = [PollOption(text=o["text"], color=o["color"]) for o in cleaned]

        try:
            db.add(poll)
            db.commit()
            db.refresh(poll)
        except IntegrityError as e:
            db.rollback()
            if "public_id" in str(e.orig):
                continue
            raise

        logger.info(
            "poll_created",
            poll_id=poll.id,
            public_id=poll.public_id,
            status=poll.status,
            options=len(cleaned),
            creator=mask_phone(creator.phone),
        )
        return poll

    logger.error("poll_public_id_exhausted", creator=mask_phone(creator.phone))
    raise StorageUnavailable("Could not allocate a poll id, try again")


def get_poll(db: Session, poll_id: int, lock: bool = False) -> Poll:
    """
    Load a poll by internal id.

    Args:
        lock: Take a row lock (``SELECT ... FOR UPDATE``) for status transitions

    Raises:
        PollNotFound: If no such poll exists
    """
    query = db.query(Poll).filter(Poll.id == poll_id)
    if lock:
        query = query.with_for_update()
    poll = query.first()
    if poll is None:
        raise PollNotFound()
    return poll


def get_poll_by_public_id(db: Session, public_id: str) -> Poll:
    poll = db.query(Poll).filter(Poll.public_id == public_id).first()
    if poll is None:
        raise PollNotFound()
    return poll


def find_poll(db: Session, reference: str) -> Poll:
    """Look a poll up by internal id or public id."""
    if reference.isdigit():
        poll = db.query(Poll).filter(Poll.id == int(reference)).first()
        if poll is not None:
            return poll
    return get_poll_by_public_id(db, reference)


def serialize_poll(poll: Poll, tally: Optional[Dict[int, int]] = None) -> Dict[str, Any]:
    """Plain dict view of a poll; vote counts come from ``tally`` when given."""
    counts = tally or {}
    options = [
        {
            "id": option.id,
            "text": option.text,
            "color": option.color,
            "votes": counts.get(option.id, 0),
        }
        for option in poll.options
    ]
    return {
        "id": poll.id,
        "public_id": poll.public_id,
        "question": poll.question,
        "creator_name": poll.creator.name if poll.creator else None,
        "status": poll.status,
        "accepting_votes": is_accepting_votes(poll),
        "end_time": isoformat_utc(poll.end_time),
        "created_at": isoformat_utc(poll.created_at),
        "total_votes": sum(counts.values()),
        "options": options,
    }


def list_featured_polls(db: Session) -> List[Poll]:
    """Latest poll still running and latest poll that has ended."""
    now = utcnow()

    running = (
        db.query(Poll)
        .filter(Poll.status == POLL_STATUS_ACTIVE, Poll.end_time > now)
        .order_by(Poll.created_at.desc(), Poll.id.desc())
        .first()
    )
    ended = (
        db.query(Poll)
        .filter(Poll.status == POLL_STATUS_ENDED)
        .order_by(Poll.end_time.desc(), Poll.id.desc())
        .first()
    )
    return [poll for poll in (running, ended) if poll is not None]


def list_polls(db: Session, status: Optional[str] = None) -> List[Poll]:
    """All polls, newest first (admin view)."""
    query = db.query(Poll)
    if status:
        query = query.filter(Poll.status == status)
    return query.order_by(Poll.created_at.desc(), Poll.id.desc()).all()


def update_poll(
    db: Session,
    poll_id: int,
    question: Optional[str] = None,
    end_time: Optional[datetime] = None,
    options: Optional[Sequence[Dict[str, Any]]] = None,
) -> Poll:
    """
    Administrative edit of a poll that has not ended.

    Options with an ``id`` are edited in place; options without one are added.
    Options are never removed, and the total stays within 2-5. Status is not
    editable here; use the lifecycle functions.

    Raises:
        PollNotFound: Unknown poll
        InvalidTransition: Poll already ended or rejected
        InvalidOption: An option id that does not belong to this poll
        ValidationFailed: Bad question, end time, option text or option count
    """
    poll = get_poll(db, poll_id, lock=True)

    try:
        if poll.status not in (POLL_STATUS_PENDING, POLL_STATUS_ACTIVE):
            raise InvalidTransition("Only pending or active polls can be edited")

        if question is not None:
            poll.question = sanitize_question(question)

        if end_time is not None:
            end_time = to_utc(end_time)
            if has_passed(end_time):
                raise ValidationFailed("End time must be in the future")
            poll.end_time = end_time

        if options:
            by_id = {option.id: option for option in poll.options}
            added = 0
            for data in options:
                text = sanitize_option_text(data.get("text", ""))
                color = validate_color(data.get("color"))
                option_id = data.get("id")
                if option_id is not None:
                    option = by_id.get(option_id)
                    if option is None:
                        raise InvalidOption()
                    option.text = text
                    option.color = color or option.color
                else:
                    index = len(by_id) + added
                    poll.options.append(PollOption(text=text, color=color or default_color(index)))
                    added += 1

            if len(by_id) + added > MAX_POLL_OPTIONS:
                raise ValidationFailed(f"A poll can have at most {MAX_POLL_OPTIONS} options")

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(poll)
    logger.info("poll_updated", poll_id=poll.id)
    return poll
