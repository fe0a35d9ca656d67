"""Common response schemas."""
from pydantic import BaseModel
from typing import Optional

from electionpoll.core.errors import PollEngineError


class SuccessResponse(BaseModel):
    """Standard success response."""
    success: bool = True
    message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Error detail structure."""
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error response, returned for every domain error."""
    success: bool = False
    error: ErrorDetail

    @classmethod
    def from_error(cls, exc: PollEngineError) -> "ErrorResponse":
        return cls(error=ErrorDetail(code=exc.code, message=exc.message))
