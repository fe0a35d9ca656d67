import uvicorn

from electionpoll.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "electionpoll.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
    )
