"""Admin endpoints."""
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from electionpoll.api.deps import get_db, verify_admin_token
from electionpoll.api.v1.endpoints.polls import poll_detail
from electionpoll.core.constants import POLL_STATUSES
from electionpoll.core.errors import ValidationFailed
from electionpoll.core.rate_limit import limiter, RATE_LIMITS
from electionpoll.db.models import Vote
from electionpoll.schemas import PollDetail, PollUpdate, SweepResponse, VoteRecord, WinnerResponse
from electionpoll.services.lifecycle import activate_poll, end_poll, reject_poll, sweep_expired_polls
from electionpoll.services.lottery import get_winner, rerun_lottery, select_winner
from electionpoll.services.poll import get_poll, list_polls, update_poll
from electionpoll.services.vote import list_votes

logger = structlog.get_logger(__name__)
router = APIRouter(dependencies=[Depends(verify_admin_token)])


def _winner_response(poll_id: int, winner: Optional[Vote]) -> WinnerResponse:
    return WinnerResponse(
        poll_id=poll_id,
        winner=VoteRecord.model_validate(winner) if winner else None,
    )


@router.get("/polls", response_model=List[PollDetail])
@limiter.limit(RATE_LIMITS["admin_read"])
async def list_polls_endpoint(
    request: Request,
    status: Optional[str] = Query(None, description="Filter by stored status"),
    db: Session = Depends(get_db)
):
    """Every poll, newest first, with live counts (admin only)."""
    if status is not None and status not in POLL_STATUSES:
        raise ValidationFailed(f"Unknown status: {status}")
    return [poll_detail(db, poll) for poll in list_polls(db, status)]


@router.post("/polls/sweep", response_model=SweepResponse)
@limiter.limit(RATE_LIMITS["admin_write"])
async def sweep_endpoint(request: Request, db: Session = Depends(get_db)):
    """
    Run the expiry sweep now (admin only).

    Same procedure as the scheduler: ends active polls past their end time and
    draws winners still missing.
    """
    return sweep_expired_polls(db)


@router.get("/polls/{poll_id}", response_model=PollDetail)
@limiter.limit(RATE_LIMITS["admin_read"])
async def get_poll_endpoint(request: Request, poll_id: int, db: Session = Depends(get_db)):
    return poll_detail(db, get_poll(db, poll_id))


@router.patch("/polls/{poll_id}", response_model=PollDetail)
@limiter.limit(RATE_LIMITS["admin_write"])
async def update_poll_endpoint(
    request: Request,
    poll_id: int,
    changes: PollUpdate,
    db: Session = Depends(get_db)
):
    """
    Edit question, end time or options of a poll that has not ended (admin only).

    Options with an ``id`` are edited, options without one are added. Status
    changes go through approve/reject/end.
    """
    poll = update_poll(
        db,
        poll_id,
        question=changes.question,
        end_time=changes.end_time,
        options=[option.model_dump() for option in changes.options] if changes.options else None,
    )
    return poll_detail(db, poll)


@router.post("/polls/{poll_id}/approve", response_model=PollDetail)
@limiter.limit(RATE_LIMITS["admin_write"])
async def approve_poll_endpoint(request: Request, poll_id: int, db: Session = Depends(get_db)):
    """Move a pending poll to active (admin only)."""
    return poll_detail(db, activate_poll(db, poll_id))


@router.post("/polls/{poll_id}/reject", response_model=PollDetail)
@limiter.limit(RATE_LIMITS["admin_write"])
async def reject_poll_endpoint(request: Request, poll_id: int, db: Session = Depends(get_db)):
    """Reject a pending poll (admin only)."""
    return poll_detail(db, reject_poll(db, poll_id))


@router.post("/polls/{poll_id}/end", response_model=PollDetail)
@limiter.limit(RATE_LIMITS["admin_write"])
async def end_poll_endpoint(request: Request, poll_id: int, db: Session = Depends(get_db)):
    """
    End an active poll now (admin only).

    Runs the same ending procedure as the sweep. A poll ended before its end
    time gets its winner from the sweep once the end time passes, or from an
    explicit select-winner call. Ending an ended poll changes nothing.
    """
    poll = end_poll(db, poll_id)
    if poll is None:
        poll = get_poll(db, poll_id)
    return poll_detail(db, poll)


@router.post("/polls/{poll_id}/select-winner", response_model=WinnerResponse)
@limiter.limit(RATE_LIMITS["admin_write"])
async def select_winner_endpoint(request: Request, poll_id: int, db: Session = Depends(get_db)):
    """
    Draw the winner of an ended poll (admin only).

    Idempotent: a poll that already has a winner returns it unchanged.
    """
    return _winner_response(poll_id, select_winner(db, poll_id))


@router.post("/polls/{poll_id}/rerun-lottery", response_model=WinnerResponse)
@limiter.limit(RATE_LIMITS["admin_write"])
async def rerun_lottery_endpoint(request: Request, poll_id: int, db: Session = Depends(get_db)):
    """Clear the current winner and draw again (admin only)."""
    previous = get_winner(db, poll_id)
    previous_vote_id = previous.id if previous else None
    winner = rerun_lottery(db, poll_id)
    logger.info(
        "lottery_rerun",
        poll_id=poll_id,
        previous_vote_id=previous_vote_id,
        winner_vote_id=winner.id if winner else None,
    )
    return _winner_response(poll_id, winner)


@router.get("/polls/{poll_id}/votes", response_model=List[VoteRecord])
@limiter.limit(RATE_LIMITS["admin_read"])
async def list_votes_endpoint(request: Request, poll_id: int, db: Session = Depends(get_db)):
    """Every vote of a poll in the order it was cast, with full phone numbers (admin only)."""
    get_poll(db, poll_id)
    return list_votes(db, poll_id)
