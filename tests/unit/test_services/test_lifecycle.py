"""Unit tests for poll lifecycle transitions and the expiry sweep."""
from datetime import timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError

from electionpoll.core.constants import (
    EVENT_POLL_ENDED,
    POLL_STATUS_ACTIVE,
    POLL_STATUS_ENDED,
    POLL_STATUS_PENDING,
    POLL_STATUS_REJECTED,
)
from electionpoll.core.errors import InvalidTransition, PollNotFound, ValidationFailed
from electionpoll.core.utils import to_utc
from electionpoll.db.models import Vote
from electionpoll.services.lifecycle import activate_poll, end_poll, reject_poll, sweep_expired_polls
from electionpoll.services.lottery import get_winner, select_winner


def _winners(db_session, poll):
    return db_session.query(Vote).filter(Vote.poll_id == poll.id, Vote.is_winner.is_(True)).all()


@pytest.mark.unit
class TestActivateAndReject:
    """Tests for activate_poll and reject_poll."""

    def test_activate_pending(self, db_session, make_poll):
        poll = make_poll(status=POLL_STATUS_PENDING)
        assert activate_poll(db_session, poll.id).status == POLL_STATUS_ACTIVE

    def test_activate_without_end_time(self, db_session, make_poll):
        poll = make_poll(status=POLL_STATUS_PENDING, end_in=None)
        with pytest.raises(ValidationFailed):
            activate_poll(db_session, poll.id)

    def test_activate_with_past_end_time(self, db_session, make_poll):
        poll = make_poll(status=POLL_STATUS_PENDING, end_in=timedelta(minutes=-5))
        with pytest.raises(ValidationFailed):
            activate_poll(db_session, poll.id)

    @pytest.mark.parametrize("status", [POLL_STATUS_ACTIVE, POLL_STATUS_ENDED, POLL_STATUS_REJECTED])
    def test_activate_requires_pending(self, db_session, make_poll, status):
        poll = make_poll(status=status)
        with pytest.raises(InvalidTransition):
            activate_poll(db_session, poll.id)

    def test_reject_pending(self, db_session, make_poll):
        poll = make_poll(status=POLL_STATUS_PENDING, end_in=None)
        rejected = reject_poll(db_session, poll.id)
        assert rejected.status == POLL_STATUS_REJECTED
        assert rejected.end_time is not None

    def test_reject_keeps_existing_end_time(self, db_session, make_poll):
        poll = make_poll(status=POLL_STATUS_PENDING)
        end_time = poll.end_time
        assert to_utc(reject_poll(db_session, poll.id).end_time) == to_utc(end_time)

    def test_only_pending_polls_may_lack_end_time(self, db_session, make_poll):
        poll = make_poll(status=POLL_STATUS_PENDING, end_in=None)
        poll.status = POLL_STATUS_REJECTED
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    @pytest.mark.parametrize("status", [POLL_STATUS_ACTIVE, POLL_STATUS_ENDED, POLL_STATUS_REJECTED])
    def test_reject_requires_pending(self, db_session, make_poll, status):
        poll = make_poll(status=status)
        with pytest.raises(InvalidTransition):
            reject_poll(db_session, poll.id)

    def test_unknown_poll(self, db_session):
        with pytest.raises(PollNotFound):
            activate_poll(db_session, 999)


@pytest.mark.unit
class TestEndPoll:
    """Tests for end_poll."""

    def test_early_end_has_no_winner(self, db_session, make_poll, vote, phone):
        poll = make_poll()
        vote(poll, poll.options[0], phone(1))

        ended = end_poll(db_session, poll.id, broadcaster=Mock())

        assert ended.status == POLL_STATUS_ENDED
        assert ended.ended_at is not None
        assert _winners(db_session, poll) == []

    def test_end_after_end_time_draws_winner(self, db_session, make_poll, vote, expire, phone, notifier):
        poll = make_poll()
        vote(poll, poll.options[0], phone(1))
        expire(poll)

        end_poll(db_session, poll.id, broadcaster=Mock())

        winners = _winners(db_session, poll)
        assert [w.identity_phone for w in winners] == [phone(1)]
        assert notifier.messages[0][0] == phone(1)

    def test_publishes_poll_ended(self, db_session, make_poll):
        poll = make_poll()
        broadcaster = Mock()

        end_poll(db_session, poll.id, broadcaster=broadcaster)

        _, payload = broadcaster.publish.call_args.args
        assert payload["event"] == EVENT_POLL_ENDED

    def test_ending_twice_is_noop(self, db_session, make_poll):
        poll = make_poll()
        first = end_poll(db_session, poll.id, broadcaster=Mock())
        ended_at = first.ended_at

        assert end_poll(db_session, poll.id, broadcaster=Mock()) is None
        db_session.refresh(poll)
        assert poll.ended_at == ended_at

    @pytest.mark.parametrize("status", [POLL_STATUS_PENDING, POLL_STATUS_REJECTED])
    def test_only_active_polls_end(self, db_session, make_poll, status):
        poll = make_poll(status=status)
        with pytest.raises(InvalidTransition):
            end_poll(db_session, poll.id)

    def test_ended_poll_cannot_return(self, db_session, make_poll):
        poll = make_poll()
        end_poll(db_session, poll.id, broadcaster=Mock())

        with pytest.raises(InvalidTransition):
            activate_poll(db_session, poll.id)
        with pytest.raises(InvalidTransition):
            reject_poll(db_session, poll.id)


@pytest.mark.unit
class TestSweep:
    """Tests for sweep_expired_polls."""

    def test_ends_expired_polls_only(self, db_session, make_poll, expire):
        expired = make_poll()
        running = make_poll()
        expire(expired)

        counts = sweep_expired_polls(db_session, broadcaster=Mock())

        db_session.refresh(expired)
        db_session.refresh(running)
        assert counts == {"ended": 1, "winners": 0, "failed": 0}
        assert expired.status == POLL_STATUS_ENDED
        assert running.status == POLL_STATUS_ACTIVE

    def test_awards_exactly_one_winner(self, db_session, make_poll, vote, expire, phone):
        poll = make_poll()
        for n in range(1, 6):
            vote(poll, poll.options[n % 2], phone(n))
        expire(poll)

        first = sweep_expired_polls(db_session, broadcaster=Mock())
        second = sweep_expired_polls(db_session, broadcaster=Mock())

        assert first == {"ended": 1, "winners": 1, "failed": 0}
        assert second == {"ended": 0, "winners": 0, "failed": 0}
        assert len(_winners(db_session, poll)) == 1

    def test_picks_up_poll_ended_early(self, db_session, make_poll, vote, expire, phone):
        """A poll closed before its end time gets its winner once the end time passes."""
        poll = make_poll()
        vote(poll, poll.options[0], phone(1))
        end_poll(db_session, poll.id, broadcaster=Mock())

        assert sweep_expired_polls(db_session)["winners"] == 0

        expire(poll)
        counts = sweep_expired_polls(db_session)

        assert counts["winners"] == 1
        assert get_winner(db_session, poll.id).identity_phone == phone(1)

    def test_skips_polls_with_winner(self, db_session, make_poll, vote, phone):
        poll = make_poll()
        vote(poll, poll.options[0], phone(1))
        end_poll(db_session, poll.id, broadcaster=Mock())
        winner = select_winner(db_session, poll.id)
        poll.end_time = poll.ended_at - timedelta(seconds=1)
        db_session.commit()

        assert sweep_expired_polls(db_session)["winners"] == 0
        assert get_winner(db_session, poll.id).id == winner.id

    def test_failure_does_not_stop_sweep(self, db_session, make_poll, expire, monkeypatch):
        from electionpoll.services import lifecycle

        bad = make_poll()
        good = make_poll()
        expire(bad)
        expire(good)
        real_end_poll = lifecycle.end_poll

        def flaky_end_poll(db, poll_id, **kwargs):
            if poll_id == bad.id:
                raise RuntimeError("boom")
            return real_end_poll(db, poll_id, **kwargs)

        monkeypatch.setattr(lifecycle, "end_poll", flaky_end_poll)
        counts = sweep_expired_polls(db_session, broadcaster=Mock())

        assert counts["failed"] == 1
        assert counts["ended"] == 1
