"""Public poll endpoints, including the live tally stream."""
import asyncio
import json
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from electionpoll.api.deps import get_db, get_db_context
from electionpoll.core.config import settings
from electionpoll.core.constants import DEFAULT_CREATOR_NAME, EVENT_POLL_ENDED, EVENT_TALLY, PURPOSE_CREATE_POLL
from electionpoll.core.errors import InvalidVerification, PollEngineError
from electionpoll.core.rate_limit import limiter, RATE_LIMITS
from electionpoll.core.sanitization import sanitize_display_name
from electionpoll.db.models import Poll
from electionpoll.schemas import (
    PollCreate,
    PollDetail,
    TallyResponse,
    VoteRequest,
    VoteResponse,
    WinnerRanking,
)
from electionpoll.services.broadcast import BroadcastHub, hub, poll_channel
from electionpoll.services.identity import find_or_create
from electionpoll.services.lottery import get_winner_ranking
from electionpoll.services.poll import (
    create_poll,
    get_poll_by_public_id,
    list_featured_polls,
    serialize_poll,
    validate_new_poll,
)
from electionpoll.services.tally import get_tally
from electionpoll.services.verification import verify_challenge
from electionpoll.services.vote import cast_vote

logger = structlog.get_logger(__name__)
router = APIRouter()


def poll_detail(db: Session, poll: Poll) -> Dict[str, Any]:
    """Serialized poll with counts read from the vote rows."""
    return serialize_poll(poll, get_tally(db, poll.id).per_option)


@router.get("", response_model=List[PollDetail])
@limiter.limit(RATE_LIMITS["read"])
async def list_polls_endpoint(request: Request, db: Session = Depends(get_db)):
    """
    Featured polls: the latest poll still taking votes and the latest ended one.
    """
    return [poll_detail(db, poll) for poll in list_featured_polls(db)]


@router.post("", response_model=PollDetail, status_code=201)
@limiter.limit(RATE_LIMITS["create_poll"])
async def create_poll_endpoint(
    request: Request,
    poll: PollCreate,
    db: Session = Depends(get_db)
):
    """
    Create a poll with 2-5 options.

    The creator proves the phone number with a ``create_poll`` code. New polls
    wait for administrator approval unless POLL_AUTO_ACTIVATE is set.

    Example:
        Request:
            POST /api/v1/polls
            {
                "phone": "01712345678",
                "code": "482910",
                "creator_name": "Rahim",
                "question": "Who will win Dhaka-10?",
                "end_time": "2026-12-31T18:00:00Z",
                "options": [{"text": "Candidate A"}, {"text": "Candidate B", "color": "#1E90FF"}]
            }

        Response (201): the poll, with ``status`` "pending"

        Response (401):
            {
                "success": false,
                "error": {"code": "invalid_verification", "message": "Invalid or expired code"}
            }
    """
    options = [option.model_dump() for option in poll.options]
    # Bad input must not burn the creator's code
    validate_new_poll(poll.question, poll.end_time, options, auto_activate=settings.POLL_AUTO_ACTIVATE)

    if not verify_challenge(db, poll.phone, poll.code, PURPOSE_CREATE_POLL):
        raise InvalidVerification()

    creator = find_or_create(
        db,
        poll.phone,
        sanitize_display_name(poll.creator_name, DEFAULT_CREATOR_NAME),
    )
    created = create_poll(
        db,
        creator,
        poll.question,
        poll.end_time,
        options,
        auto_activate=settings.POLL_AUTO_ACTIVATE,
    )
    return poll_detail(db, created)


@router.get("/{public_id}", response_model=PollDetail)
@limiter.limit(RATE_LIMITS["read"])
async def get_poll_endpoint(request: Request, public_id: str, db: Session = Depends(get_db)):
    poll = get_poll_by_public_id(db, public_id)
    return poll_detail(db, poll)


@router.post("/{public_id}/votes", response_model=VoteResponse, status_code=201)
@limiter.limit(RATE_LIMITS["vote"])
async def vote_endpoint(
    request: Request,
    public_id: str,
    vote_request: VoteRequest,
    db: Session = Depends(get_db)
) -> VoteResponse:
    """
    Cast a vote with a ``cast_vote`` code issued for this poll.

    One vote per phone per poll; votes cannot be changed.

    Example:
        Request:
            POST /api/v1/polls/3f9c2a7be1d04c55/votes
            {
                "phone": "01712345678",
                "option_id": 12,
                "code": "551203"
            }

        Response (201):
            {
                "success": true,
                "vote_id": 301,
                "tally": {"poll_id": 7, "total": 42, "per_option": {"12": 30, "13": 12}}
            }

        Response (409):
            {
                "success": false,
                "error": {"code": "duplicate_vote", "message": "You have already voted on this poll"}
            }

    Errors:
        - 404 poll_not_found
        - 409 poll_not_active: poll pending, rejected, ended or past its end time
        - 401 invalid_verification
        - 422 invalid_option: option belongs to another poll
        - 409 duplicate_vote
    """
    poll = get_poll_by_public_id(db, public_id)
    vote = cast_vote(db, poll.id, vote_request.option_id, vote_request.phone, vote_request.code)
    tally = get_tally(db, poll.id)
    return VoteResponse(vote_id=vote.id, tally=TallyResponse(**tally.as_payload()))


@router.get("/{public_id}/tally", response_model=TallyResponse)
@limiter.limit(RATE_LIMITS["read"])
async def tally_endpoint(request: Request, public_id: str, db: Session = Depends(get_db)):
    """Current counts; the resynchronization source for stream consumers."""
    poll = get_poll_by_public_id(db, public_id)
    return get_tally(db, poll.id).as_payload()


@router.get("/{public_id}/winner-ranking", response_model=WinnerRanking)
@limiter.limit(RATE_LIMITS["read"])
async def winner_ranking_endpoint(request: Request, public_id: str, db: Session = Depends(get_db)):
    """Winner and ranked voters of the winning option, once the poll has ended."""
    poll = get_poll_by_public_id(db, public_id)
    return get_winner_ranking(db, poll.id)


def format_event(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def tally_event_stream(
    request: Request,
    poll_id: int,
    session_factory: Callable = get_db_context,
    broadcaster: Optional[BroadcastHub] = None,
    keepalive: Optional[float] = None,
) -> AsyncIterator[str]:
    """
    SSE generator for one poll.

    Sends the tally on connect, then forwards every message published on the
    poll channel. When the channel stays quiet for ``keepalive`` seconds the
    tally is read and sent again, so a client that missed a dropped message
    converges anyway. The stream ends after ``poll.ended``.

    Args:
        request: FastAPI request object to check for client disconnect
        poll_id: Internal poll id
        session_factory: Context manager yielding a database session
        broadcaster: Hub to subscribe to (defaults to the process hub)
        keepalive: Idle seconds before a resync (defaults to SSE_KEEPALIVE_SECONDS)
    """
    broadcaster = broadcaster or hub
    keepalive = keepalive or settings.SSE_KEEPALIVE_SECONDS
    subscription = broadcaster.subscribe(poll_channel(poll_id))

    def read_tally() -> Dict[str, Any]:
        with session_factory() as db:
            payload = get_tally(db, poll_id).as_payload()
        payload["event"] = EVENT_TALLY
        return payload

    try:
        yield format_event(EVENT_TALLY, read_tally())

        while True:
            if await request.is_disconnected():
                break

            message = await subscription.get(timeout=keepalive)
            if message is None:
                yield format_event(EVENT_TALLY, read_tally())
                continue

            event = message.get("event", EVENT_TALLY)
            yield format_event(event, message)
            if event == EVENT_POLL_ENDED:
                break

    except asyncio.CancelledError:
        # Client disconnected
        pass
    except (SQLAlchemyError, PollEngineError) as e:
        logger.warning("tally_stream_error", poll_id=poll_id, error=str(e))
        yield f"event: error\ndata: {json.dumps({'error': 'Service temporarily unavailable'})}\n\n"
    finally:
        broadcaster.unsubscribe(subscription)


@router.get("/{public_id}/stream")
async def tally_stream_endpoint(request: Request, public_id: str, db: Session = Depends(get_db)):
    """
    Server-Sent Events stream of live tallies.

    Events: ``tally`` (on connect and as idle resync), ``vote.cast`` after each
    accepted vote, ``poll.ended`` once the poll closes. Delivery is
    best-effort; the client should reconnect automatically if disconnected.
    """
    poll = get_poll_by_public_id(db, public_id)

    return StreamingResponse(
        tally_event_stream(request, poll.id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable buffering in nginx
        }
    )
