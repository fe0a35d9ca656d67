"""Vote schemas."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from electionpoll.schemas.poll import TallyResponse
from electionpoll.schemas.verification import PhoneField


class VoteRequest(PhoneField):
    option_id: int
    code: str = Field(..., min_length=1, max_length=16)


class VoteResponse(BaseModel):
    success: bool = True
    vote_id: int
    tally: TallyResponse


class VoteRecord(BaseModel):
    """Full vote row, admin view."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    poll_id: int
    option_id: int
    identity_phone: str
    cast_at: datetime
    is_winner: bool


class WinnerResponse(BaseModel):
    poll_id: int
    winner: Optional[VoteRecord] = None
