"""Authentication schemas."""
from pydantic import Field

from electionpoll.schemas.verification import PhoneField


class AdminLoginRequest(PhoneField):
    code: str = Field(..., min_length=1, max_length=16)
