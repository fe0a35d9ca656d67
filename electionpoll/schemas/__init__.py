"""Pydantic schemas for request/response validation."""
from electionpoll.schemas.auth import AdminLoginRequest
from electionpoll.schemas.poll import (
    OptionCreate,
    OptionUpdate,
    OptionDetail,
    PollCreate,
    PollUpdate,
    PollDetail,
    TallyResponse,
    RankedVoter,
    WinnerSummary,
    WinnerRanking,
    SweepResponse,
)
from electionpoll.schemas.verification import ChallengeRequest, ChallengeResponse, VerifyRequest
from electionpoll.schemas.vote import VoteRequest, VoteResponse, VoteRecord, WinnerResponse
from electionpoll.schemas.common import SuccessResponse, ErrorResponse, ErrorDetail

__all__ = [
    "AdminLoginRequest",
    "ChallengeRequest",
    "ChallengeResponse",
    "VerifyRequest",
    "OptionCreate",
    "OptionUpdate",
    "OptionDetail",
    "PollCreate",
    "PollUpdate",
    "PollDetail",
    "TallyResponse",
    "RankedVoter",
    "WinnerSummary",
    "WinnerRanking",
    "SweepResponse",
    "VoteRequest",
    "VoteResponse",
    "VoteRecord",
    "WinnerResponse",
    "SuccessResponse",
    "ErrorResponse",
    "ErrorDetail",
]
