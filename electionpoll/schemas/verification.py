"""Verification code schemas."""
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from electionpoll.core.sanitization import normalize_phone

Purpose = Literal["create_poll", "cast_vote", "admin_login"]


class PhoneField(BaseModel):
    phone: str = Field(..., min_length=1, max_length=32)

    @field_validator('phone')
    @classmethod
    def normalize_phone_field(cls, v: str) -> str:
        """Canonicalize the phone number."""
        return normalize_phone(v)


class ChallengeRequest(PhoneField):
    purpose: Purpose
    poll_id: Optional[str] = Field(None, max_length=32, description="Public id of the poll (cast_vote only)")


class ChallengeResponse(BaseModel):
    success: bool = True
    delivered: bool
    message: Optional[str] = None


class VerifyRequest(PhoneField):
    code: str = Field(..., min_length=1, max_length=16)
    purpose: Purpose
    poll_id: Optional[str] = Field(None, max_length=32)
