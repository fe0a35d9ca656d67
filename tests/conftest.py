"""Shared test fixtures and configuration."""
import os

# Must be set before the application settings are imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import timedelta  # noqa: E402
from typing import List, Optional, Tuple  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from electionpoll.main import app  # noqa: E402
from electionpoll.db.base import Base  # noqa: E402
from electionpoll.db.models import Poll, PollOption  # noqa: E402
from electionpoll.api.deps import get_db  # noqa: E402
from electionpoll.core.constants import POLL_STATUS_ACTIVE, PURPOSE_CAST_VOTE  # noqa: E402
from electionpoll.core.security import create_access_token  # noqa: E402
from electionpoll.core.utils import make_public_id, utcnow  # noqa: E402
from electionpoll.services.identity import find_or_create  # noqa: E402
from electionpoll.services.notifications import set_notifier  # noqa: E402
from electionpoll.services.verification import issue_challenge  # noqa: E402
from electionpoll.services.vote import cast_vote  # noqa: E402


# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

CREATOR_PHONE = "+8801700000000"
ADMIN_PHONE = "+8801800000001"


def voter_phone(n: int) -> str:
    """Distinct valid canonical phone number for voter ``n``."""
    return f"+88017{n:08d}"


class RecordingNotifier:
    """Notification sink that keeps everything it was asked to send."""

    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.codes: List[Tuple[str, str, str]] = []
        self.messages: List[Tuple[str, str]] = []

    def send_code(self, phone: str, code: str, purpose: str) -> bool:
        self.codes.append((phone, code, purpose))
        return self.deliver

    def send(self, phone: str, message: str) -> bool:
        self.messages.append((phone, message))
        return self.deliver

    def last_code(self, phone: str, purpose: Optional[str] = None) -> str:
        for sent_phone, code, sent_purpose in reversed(self.codes):
            if sent_phone == phone and (purpose is None or sent_purpose == purpose):
                return code
        raise AssertionError(f"No code sent to {phone}")


@pytest.fixture(autouse=True)
def disable_rate_limiting_for_tests(request):
    """Disable rate limiting for all tests except rate limiting tests."""
    from electionpoll.core.rate_limit import limiter

    limiter.reset()
    if "rate_limit" in request.keywords:
        limiter.enabled = True
        yield
    else:
        limiter.enabled = False
        yield
        limiter.enabled = True
    limiter.reset()


@pytest.fixture(autouse=True)
def notifier():
    """Capture codes and messages instead of sending them."""
    recorder = RecordingNotifier()
    set_notifier(recorder)
    yield recorder
    set_notifier(None)


@pytest.fixture
def failing_notifier():
    """Sink whose deliveries all fail."""
    return RecordingNotifier(deliver=False)


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh database for each test."""
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a new database session for a test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """
    Session factory on a file-backed SQLite database.

    Every session gets its own connection, so threads really contend on the
    database the way concurrent requests do.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with a test database."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT token."""
    return create_access_token({"is_admin": True, "sub": ADMIN_PHONE})


@pytest.fixture
def admin_client(client, admin_token):
    """Create a test client with admin cookie already set."""
    client.cookies.set("admin_token", admin_token)
    return client


@pytest.fixture
def admin_phones(monkeypatch):
    """Register ADMIN_PHONE as the only administrator."""
    from electionpoll.core.config import settings

    monkeypatch.setattr(settings, "ADMIN_PHONES", [ADMIN_PHONE])
    return [ADMIN_PHONE]


def create_test_poll(
    session,
    status: str = POLL_STATUS_ACTIVE,
    options=("Option A", "Option B"),
    end_in: Optional[timedelta] = timedelta(hours=1),
    question: str = "Who will win?",
) -> Poll:
    """Insert a poll directly, bypassing creation rules (e.g. for past end times)."""
    creator = find_or_create(session, CREATOR_PHONE, "Test Creator")
    poll = Poll(
        public_id=make_public_id(),
        question=question,
        creator_phone=creator.phone,
        end_time=utcnow() + end_in if end_in is not None else None,
        status=status,
        created_at=utcnow(),
    )
    poll.options = [PollOption(text=text, color="#C8102E") for text in options]
    session.add(poll)
    session.commit()
    session.refresh(poll)
    return poll


def vote_for(session, poll: Poll, option: PollOption, phone: str):
    """Issue a fresh vote code and cast the vote with it."""
    code = issue_challenge(session, phone, PURPOSE_CAST_VOTE, target_poll_id=poll.id).code
    return cast_vote(session, poll.id, option.id, phone, code)


def expire_poll(session, poll: Poll) -> None:
    """Move a poll's end time into the past without changing its status."""
    poll.end_time = utcnow() - timedelta(seconds=1)
    session.commit()


@pytest.fixture
def make_poll(db_session):
    def _make(**kwargs) -> Poll:
        return create_test_poll(db_session, **kwargs)
    return _make


@pytest.fixture
def vote(db_session):
    def _vote(poll: Poll, option: PollOption, phone: str):
        return vote_for(db_session, poll, option, phone)
    return _vote


@pytest.fixture
def expire(db_session):
    def _expire(poll: Poll) -> None:
        expire_poll(db_session, poll)
    return _expire


@pytest.fixture
def phone():
    """Factory of distinct voter phone numbers."""
    return voter_phone


@pytest.fixture
def build_poll():
    """``create_test_poll`` for tests that bring their own session."""
    return create_test_poll


@pytest.fixture
def request_code(client, notifier):
    """Ask the API for a code and return what the sink received."""
    from electionpoll.core.sanitization import normalize_phone

    def _request(phone: str, purpose: str, poll_public_id: Optional[str] = None) -> str:
        payload = {"phone": phone, "purpose": purpose}
        if poll_public_id is not None:
            payload["poll_id"] = poll_public_id
        response = client.post("/api/v1/verification/challenges", json=payload)
        assert response.status_code == 200, response.text
        return notifier.last_code(normalize_phone(phone), purpose)
    return _request


@pytest.fixture
def vote_with():
    """``vote_for`` for tests that bring their own session."""
    return vote_for


@pytest.fixture
def expire_with():
    """``expire_poll`` for tests that bring their own session."""
    return expire_poll
