"""Poll schemas."""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

from electionpoll.core.constants import MAX_POLL_OPTIONS, MIN_POLL_OPTIONS
from electionpoll.core.sanitization import sanitize_option_text, sanitize_question
from electionpoll.schemas.verification import PhoneField


class OptionCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=255)
    color: Optional[str] = Field(None, max_length=7)

    @field_validator('text')
    @classmethod
    def sanitize_text_field(cls, v: str) -> str:
        return sanitize_option_text(v)


class OptionUpdate(OptionCreate):
    id: Optional[int] = None


class PollCreate(PhoneField):
    code: str = Field(..., min_length=1, max_length=16)
    creator_name: Optional[str] = Field(None, max_length=255)
    question: str = Field(..., min_length=1, max_length=255)
    end_time: Optional[datetime] = None
    options: List[OptionCreate] = Field(..., min_length=MIN_POLL_OPTIONS, max_length=MAX_POLL_OPTIONS)

    @field_validator('question')
    @classmethod
    def sanitize_question_field(cls, v: str) -> str:
        """Sanitize and validate the question."""
        return sanitize_question(v)


class PollUpdate(BaseModel):
    question: Optional[str] = Field(None, min_length=1, max_length=255)
    end_time: Optional[datetime] = None
    options: Optional[List[OptionUpdate]] = Field(None, max_length=MAX_POLL_OPTIONS)


class OptionDetail(BaseModel):
    id: int
    text: str
    color: str
    votes: int = 0


class PollDetail(BaseModel):
    id: int
    public_id: str
    question: str
    creator_name: Optional[str] = None
    status: str
    accepting_votes: bool
    end_time: Optional[str] = None
    created_at: Optional[str] = None
    total_votes: int = 0
    options: List[OptionDetail]


class TallyResponse(BaseModel):
    poll_id: int
    total: int
    per_option: Dict[str, int]


class RankedVoter(BaseModel):
    rank: int
    phone: str
    voted_at: Optional[str] = None


class WinnerSummary(BaseModel):
    phone: str
    voted_at: Optional[str] = None


class WinnerRanking(BaseModel):
    poll_id: int
    winner: Optional[WinnerSummary] = None
    winning_option: Optional[OptionDetail] = None
    winning_option_voters: List[RankedVoter] = []


class SweepResponse(BaseModel):
    ended: int
    winners: int
    failed: int
