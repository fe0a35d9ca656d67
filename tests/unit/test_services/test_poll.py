"""Unit tests for the poll aggregate."""
from datetime import datetime, timedelta, timezone

import pytest

from electionpoll.core.constants import (
    DEFAULT_OPTION_COLORS,
    POLL_STATUS_ACTIVE,
    POLL_STATUS_ENDED,
    POLL_STATUS_PENDING,
    POLL_STATUS_REJECTED,
)
from electionpoll.core.errors import (
    InvalidOption,
    InvalidTransition,
    PollNotFound,
    StorageUnavailable,
    ValidationFailed,
)
from electionpoll.core.utils import to_utc, utcnow
from electionpoll.db.models import Poll
from electionpoll.services import poll as poll_service
from electionpoll.services.identity import find_or_create
from electionpoll.services.poll import (
    create_poll,
    find_poll,
    get_poll,
    get_poll_by_public_id,
    is_accepting_votes,
    list_featured_polls,
    list_polls,
    serialize_poll,
    update_poll,
    validate_new_poll,
)


@pytest.fixture
def creator(db_session):
    identity = find_or_create(db_session, "+8801711111111", "Rahim")
    db_session.commit()
    return identity


def _options(*texts):
    return [{"text": text} for text in texts]


def _future(hours=2):
    return utcnow() + timedelta(hours=hours)


@pytest.mark.unit
class TestCreatePoll:
    """Tests for create_poll."""

    def test_defaults_to_pending(self, db_session, creator):
        poll = create_poll(db_session, creator, "Who will win?", _future(), _options("A", "B"))

        assert poll.status == POLL_STATUS_PENDING
        assert len(poll.public_id) == 16
        assert poll.creator_phone == creator.phone
        assert [o.text for o in poll.options] == ["A", "B"]

    def test_auto_activate(self, db_session, creator):
        poll = create_poll(db_session, creator, "Who will win?", _future(), _options("A", "B"), auto_activate=True)
        assert poll.status == POLL_STATUS_ACTIVE

    def test_auto_activate_requires_end_time(self, db_session, creator):
        with pytest.raises(ValidationFailed):
            create_poll(db_session, creator, "Who will win?", None, _options("A", "B"), auto_activate=True)

    def test_pending_without_end_time(self, db_session, creator):
        poll = create_poll(db_session, creator, "Who will win?", None, _options("A", "B"))
        assert poll.end_time is None

    def test_default_colours_by_index(self, db_session, creator):
        poll = create_poll(
            db_session, creator, "Who will win?", _future(),
            [{"text": "A"}, {"text": "B", "color": "#1e90ff"}, {"text": "C"}],
        )

        assert [o.color for o in poll.options] == [DEFAULT_OPTION_COLORS[0], "#1E90FF", DEFAULT_OPTION_COLORS[2]]

    @pytest.mark.parametrize("count", [1, 6])
    def test_option_count(self, db_session, creator, count):
        with pytest.raises(ValidationFailed):
            create_poll(db_session, creator, "Who will win?", _future(), _options(*[f"O{i}" for i in range(count)]))

    def test_public_id_collisions_exhausted(self, db_session, creator, monkeypatch):
        taken = create_poll(db_session, creator, "Who will win?", _future(), _options("A", "B")).public_id
        monkeypatch.setattr(poll_service, "make_public_id", lambda: taken)

        with pytest.raises(StorageUnavailable):
            create_poll(db_session, creator, "Who will win next?", _future(), _options("A", "B"))
        assert db_session.query(Poll).count() == 1

    def test_end_time_in_past(self, db_session, creator):
        with pytest.raises(ValidationFailed):
            create_poll(db_session, creator, "Who will win?", utcnow() - timedelta(minutes=1), _options("A", "B"))

    def test_naive_end_time_is_utc(self, db_session, creator):
        naive = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
        poll = create_poll(db_session, creator, "Who will win?", naive, _options("A", "B"))
        assert abs(to_utc(poll.end_time) - naive.replace(tzinfo=timezone.utc)) < timedelta(seconds=1)

    def test_question_is_sanitized(self, db_session, creator):
        poll = create_poll(db_session, creator, "  <b>Who</b> will win?  ", _future(), _options("A", "B"))
        assert poll.question == "Who will win?"

    def test_blank_option(self, db_session, creator):
        with pytest.raises(ValidationFailed):
            create_poll(db_session, creator, "Who will win?", _future(), _options("A", "   "))

    def test_bad_colour(self, db_session, creator):
        with pytest.raises(ValidationFailed):
            create_poll(db_session, creator, "Who will win?", _future(), [{"text": "A", "color": "red"}, {"text": "B"}])


@pytest.mark.unit
class TestValidateNewPoll:
    """Tests for validate_new_poll."""

    def test_cleans_fields(self):
        question, end_time, options = validate_new_poll(
            "  Who will win?  ", datetime(2099, 1, 1), _options("A", "B")
        )

        assert question == "Who will win?"
        assert end_time == datetime(2099, 1, 1, tzinfo=timezone.utc)
        assert [o["color"] for o in options] == list(DEFAULT_OPTION_COLORS[:2])

    def test_past_end_time(self):
        with pytest.raises(ValidationFailed):
            validate_new_poll("Who will win?", utcnow() - timedelta(minutes=1), _options("A", "B"))

    def test_auto_activate_requires_end_time(self):
        with pytest.raises(ValidationFailed):
            validate_new_poll("Who will win?", None, _options("A", "B"), auto_activate=True)


@pytest.mark.unit
class TestLookup:
    """Tests for get_poll, get_poll_by_public_id and find_poll."""

    def test_get_poll(self, db_session, make_poll):
        poll = make_poll()
        assert get_poll(db_session, poll.id).id == poll.id

    def test_get_poll_missing(self, db_session):
        with pytest.raises(PollNotFound):
            get_poll(db_session, 999)

    def test_by_public_id(self, db_session, make_poll):
        poll = make_poll()
        assert get_poll_by_public_id(db_session, poll.public_id).id == poll.id

    def test_by_public_id_missing(self, db_session):
        with pytest.raises(PollNotFound):
            get_poll_by_public_id(db_session, "0000000000000000")

    def test_find_poll_by_either_id(self, db_session, make_poll):
        poll = make_poll()
        assert find_poll(db_session, str(poll.id)).id == poll.id
        assert find_poll(db_session, poll.public_id).id == poll.id


@pytest.mark.unit
class TestAcceptingVotes:
    """Tests for is_accepting_votes."""

    def test_active_and_running(self, make_poll):
        assert is_accepting_votes(make_poll()) is True

    def test_active_but_past_end_time(self, make_poll, expire):
        poll = make_poll()
        expire(poll)
        assert is_accepting_votes(poll) is False

    @pytest.mark.parametrize("status", [POLL_STATUS_PENDING, POLL_STATUS_ENDED, POLL_STATUS_REJECTED])
    def test_other_statuses(self, make_poll, status):
        assert is_accepting_votes(make_poll(status=status)) is False

    def test_explicit_now(self, make_poll):
        poll = make_poll(end_in=timedelta(minutes=10))
        assert is_accepting_votes(poll, now=utcnow() + timedelta(minutes=11)) is False


@pytest.mark.unit
class TestListing:
    """Tests for list_featured_polls and list_polls."""

    def test_featured_latest_running_and_latest_ended(self, db_session, make_poll):
        make_poll()
        latest_running = make_poll()
        make_poll(status=POLL_STATUS_ENDED, end_in=timedelta(hours=-2))
        latest_ended = make_poll(status=POLL_STATUS_ENDED, end_in=timedelta(hours=-1))
        make_poll(status=POLL_STATUS_PENDING)

        featured = list_featured_polls(db_session)

        assert [p.id for p in featured] == [latest_running.id, latest_ended.id]

    def test_featured_skips_expired_active_poll(self, db_session, make_poll, expire):
        poll = make_poll()
        expire(poll)
        assert list_featured_polls(db_session) == []

    def test_list_polls_filter(self, db_session, make_poll):
        pending = make_poll(status=POLL_STATUS_PENDING)
        make_poll()

        assert [p.id for p in list_polls(db_session, POLL_STATUS_PENDING)] == [pending.id]
        assert len(list_polls(db_session)) == 2


@pytest.mark.unit
class TestUpdatePoll:
    """Tests for update_poll."""

    def test_edit_question_and_end_time(self, db_session, make_poll):
        poll = make_poll(status=POLL_STATUS_PENDING, end_in=None)
        end_time = _future(5)

        updated = update_poll(db_session, poll.id, question="New question?", end_time=end_time)

        assert updated.question == "New question?"
        assert updated.end_time is not None

    def test_edit_and_add_options(self, db_session, make_poll):
        poll = make_poll()
        first = poll.options[0]

        updated = update_poll(
            db_session,
            poll.id,
            options=[{"id": first.id, "text": "Renamed"}, {"text": "Third"}],
        )

        assert [o.text for o in updated.options] == ["Renamed", "Option B", "Third"]
        assert updated.options[2].color == DEFAULT_OPTION_COLORS[2]

    def test_foreign_option_id(self, db_session, make_poll):
        poll = make_poll()
        other = make_poll()

        with pytest.raises(InvalidOption):
            update_poll(db_session, poll.id, options=[{"id": other.options[0].id, "text": "Hijack"}])

    def test_too_many_options(self, db_session, make_poll):
        poll = make_poll(options=("A", "B", "C", "D"))

        with pytest.raises(ValidationFailed):
            update_poll(db_session, poll.id, options=[{"text": "E"}, {"text": "F"}])

        db_session.refresh(poll)
        assert len(poll.options) == 4

    def test_end_time_in_past(self, db_session, make_poll):
        poll = make_poll()
        with pytest.raises(ValidationFailed):
            update_poll(db_session, poll.id, end_time=utcnow() - timedelta(minutes=1))

    @pytest.mark.parametrize("status", [POLL_STATUS_ENDED, POLL_STATUS_REJECTED])
    def test_closed_poll_is_frozen(self, db_session, make_poll, status):
        poll = make_poll(status=status)
        with pytest.raises(InvalidTransition):
            update_poll(db_session, poll.id, question="Changed?")


@pytest.mark.unit
class TestSerializePoll:
    """Tests for serialize_poll."""

    def test_counts_from_tally(self, make_poll):
        poll = make_poll()
        a, b = poll.options

        data = serialize_poll(poll, {a.id: 4, b.id: 1})

        assert data["public_id"] == poll.public_id
        assert data["creator_name"] == "Test Creator"
        assert data["accepting_votes"] is True
        assert data["total_votes"] == 5
        assert [o["votes"] for o in data["options"]] == [4, 1]

    def test_without_tally(self, make_poll):
        data = serialize_poll(make_poll())
        assert data["total_votes"] == 0
        assert all(o["votes"] == 0 for o in data["options"])
