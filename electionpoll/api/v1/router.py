"""Main API router for v1."""
from fastapi import APIRouter

from electionpoll.api.v1.endpoints import admin, auth, polls, verification

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(verification.router, prefix="/verification", tags=["Verification"])
api_router.include_router(polls.router, prefix="/polls", tags=["Polls"])
api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
