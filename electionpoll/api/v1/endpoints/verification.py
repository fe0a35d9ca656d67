"""Verification code endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from electionpoll.api.deps import get_db
from electionpoll.core.errors import InvalidVerification
from electionpoll.core.rate_limit import limiter, RATE_LIMITS
from electionpoll.schemas import ChallengeRequest, ChallengeResponse, SuccessResponse, VerifyRequest
from electionpoll.services.poll import get_poll_by_public_id
from electionpoll.services.verification import issue_challenge, verify_challenge

router = APIRouter()


def _target_poll_id(db: Session, public_id: Optional[str]) -> Optional[int]:
    if public_id is None:
        return None
    return get_poll_by_public_id(db, public_id).id


@router.post("/challenges", response_model=ChallengeResponse)
@limiter.limit(RATE_LIMITS["issue_challenge"])
async def issue_challenge_endpoint(
    request: Request,
    challenge: ChallengeRequest,
    db: Session = Depends(get_db)
) -> ChallengeResponse:
    """
    Send a one-time code to a phone number.

    A ``cast_vote`` code is scoped to the poll given by ``poll_id`` and cannot
    be used on any other poll. The response says whether the code was handed
    to the delivery service; it never contains the code or its expiry.

    Example:
        Request:
            POST /api/v1/verification/challenges
            {
                "phone": "01712345678",
                "purpose": "cast_vote",
                "poll_id": "3f9c2a7be1d04c55"
            }

        Response (200):
            {
                "success": true,
                "delivered": true,
                "message": "Code sent"
            }

    Rate Limit:
        5 requests per minute per IP
    """
    issued = issue_challenge(
        db,
        challenge.phone,
        challenge.purpose,
        target_poll_id=_target_poll_id(db, challenge.poll_id),
    )
    message = "Code sent" if issued.delivered else "Code created but could not be delivered, try again"
    return ChallengeResponse(delivered=issued.delivered, message=message)


@router.post("/verify", response_model=SuccessResponse)
@limiter.limit(RATE_LIMITS["verify_challenge"])
async def verify_challenge_endpoint(
    request: Request,
    verification: VerifyRequest,
    db: Session = Depends(get_db)
) -> SuccessResponse:
    """
    Check and consume a one-time code.

    Every failure (wrong, expired, already used, other poll) answers
    401 ``invalid_verification`` with the same message.
    """
    verified = verify_challenge(
        db,
        verification.phone,
        verification.code,
        verification.purpose,
        target_poll_id=_target_poll_id(db, verification.poll_id),
    )
    if not verified:
        raise InvalidVerification()
    return SuccessResponse(success=True, message="Code verified")
