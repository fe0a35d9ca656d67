"""Unit tests for the winner lottery."""
import random
from collections import Counter
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError

from electionpoll.core.constants import POLL_STATUS_ACTIVE, POLL_STATUS_ENDED
from electionpoll.core.errors import PollNotEnded, PollNotFound
from electionpoll.db.models import Vote
from electionpoll.services.lottery import (
    draw_winner,
    get_winner,
    get_winner_ranking,
    pick_winning_option,
    rerun_lottery,
    select_winner,
)


def _end(db_session, poll):
    poll.status = POLL_STATUS_ENDED
    db_session.commit()


def _winner_count(db_session, poll):
    return db_session.query(Vote).filter(Vote.poll_id == poll.id, Vote.is_winner.is_(True)).count()


@pytest.fixture
def seven_three_poll(db_session, make_poll, vote, phone):
    """Ended poll where option A got 7 votes and option B got 3."""
    poll = make_poll()
    a, b = poll.options
    for n in range(1, 8):
        vote(poll, a, phone(n))
    for n in range(8, 11):
        vote(poll, b, phone(n))
    _end(db_session, poll)
    return poll


@pytest.mark.unit
class TestPickWinningOption:
    """Tests for pick_winning_option."""

    def test_highest_count(self):
        assert pick_winning_option({1: 3, 2: 7, 3: 0}) == (2, 7)

    def test_tie_goes_to_lowest_option_id(self):
        assert pick_winning_option({5: 4, 2: 4, 9: 1}) == (2, 4)

    def test_no_votes(self):
        assert pick_winning_option({1: 0, 2: 0}) is None

    def test_no_options(self):
        assert pick_winning_option({}) is None


@pytest.mark.unit
class TestDrawWinner:
    """Tests for draw_winner."""

    def test_empty_candidates(self):
        with pytest.raises(ValueError):
            draw_winner([])

    def test_single_candidate(self):
        assert draw_winner(["only"]) == "only"

    def test_uniform_over_candidates(self):
        """Every candidate, early or late, has the same chance."""
        rng = random.Random(1234)
        candidates = list(range(10))

        counts = Counter(draw_winner(candidates, rng) for _ in range(20000))

        assert set(counts) == set(candidates)
        for candidate in candidates:
            assert abs(counts[candidate] - 2000) < 600


@pytest.mark.unit
class TestSelectWinner:
    """Tests for select_winner."""

    def test_winner_voted_for_winning_option(self, db_session, seven_three_poll, notifier):
        winner = select_winner(db_session, seven_three_poll.id, rng=random.Random(7))

        assert winner.option_id == seven_three_poll.options[0].id
        assert winner.is_winner is True
        assert _winner_count(db_session, seven_three_poll) == 1

    def test_idempotent(self, db_session, seven_three_poll):
        first = select_winner(db_session, seven_three_poll.id)
        second = select_winner(db_session, seven_three_poll.id)

        assert first.id == second.id
        assert _winner_count(db_session, seven_three_poll) == 1

    def test_notifies_winner(self, db_session, seven_three_poll, notifier):
        winner = select_winner(db_session, seven_three_poll.id)

        recipients = [phone for phone, _ in notifier.messages]
        assert recipients[0] == winner.identity_phone
        assert "winner" in notifier.messages[0][1]

    def test_notifies_bounded_number_of_other_voters(self, db_session, seven_three_poll, notifier, monkeypatch):
        from electionpoll.core.config import settings

        monkeypatch.setattr(settings, "WINNER_NOTIFY_LIMIT", 2)

        select_winner(db_session, seven_three_poll.id)

        assert len(notifier.messages) == 3
        assert all("has ended" in message for _, message in notifier.messages[1:])

    def test_notification_failure_keeps_winner(self, db_session, seven_three_poll):
        sink = Mock()
        sink.send.side_effect = RuntimeError("gateway down")

        winner = select_winner(db_session, seven_three_poll.id, notifier=sink)

        assert get_winner(db_session, seven_three_poll.id).id == winner.id

    def test_no_votes(self, db_session, make_poll):
        poll = make_poll()
        _end(db_session, poll)

        assert select_winner(db_session, poll.id) is None

    def test_poll_not_ended(self, db_session, make_poll, vote, phone):
        poll = make_poll(status=POLL_STATUS_ACTIVE)
        vote(poll, poll.options[0], phone(1))

        with pytest.raises(PollNotEnded):
            select_winner(db_session, poll.id)
        assert _winner_count(db_session, poll) == 0

    def test_poll_not_found(self, db_session):
        with pytest.raises(PollNotFound):
            select_winner(db_session, 999)

    def test_tie_uses_first_option(self, db_session, make_poll, vote, phone):
        poll = make_poll()
        a, b = poll.options
        vote(poll, b, phone(1))
        vote(poll, a, phone(2))
        _end(db_session, poll)

        assert select_winner(db_session, poll.id).option_id == a.id

    def test_every_voter_can_win(self, db_session, seven_three_poll, phone):
        """Over many redraws each voter of the winning option gets picked."""
        rng = random.Random(99)
        seen = {rerun_lottery(db_session, seven_three_poll.id, rng=rng).identity_phone for _ in range(200)}

        assert seen == {phone(n) for n in range(1, 8)}

    def test_one_winner_enforced_by_storage(self, db_session, seven_three_poll):
        first, second = (
            db_session.query(Vote)
            .filter(Vote.poll_id == seven_three_poll.id)
            .order_by(Vote.id)
            .limit(2)
            .all()
        )
        first.is_winner = True
        second.is_winner = True

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


@pytest.mark.unit
class TestRerunLottery:
    """Tests for rerun_lottery."""

    def test_replaces_winner(self, db_session, seven_three_poll):
        select_winner(db_session, seven_three_poll.id, rng=random.Random(1))

        winner = rerun_lottery(db_session, seven_three_poll.id, rng=random.Random(2))

        assert winner.option_id == seven_three_poll.options[0].id
        assert _winner_count(db_session, seven_three_poll) == 1
        assert get_winner(db_session, seven_three_poll.id).id == winner.id

    def test_without_previous_winner(self, db_session, seven_three_poll):
        assert rerun_lottery(db_session, seven_three_poll.id) is not None
        assert _winner_count(db_session, seven_three_poll) == 1

    def test_poll_not_ended(self, db_session, make_poll):
        poll = make_poll()
        with pytest.raises(PollNotEnded):
            rerun_lottery(db_session, poll.id)


@pytest.mark.unit
class TestWinnerRanking:
    """Tests for get_winner_ranking."""

    def test_ranking(self, db_session, seven_three_poll, phone):
        winner = select_winner(db_session, seven_three_poll.id)

        ranking = get_winner_ranking(db_session, seven_three_poll.id)

        assert ranking["poll_id"] == seven_three_poll.id
        assert ranking["winning_option"]["id"] == seven_three_poll.options[0].id
        assert ranking["winning_option"]["votes"] == 7
        assert [voter["rank"] for voter in ranking["winning_option_voters"]] == list(range(1, 8))
        assert ranking["winner"]["phone"] != winner.identity_phone
        assert ranking["winner"]["phone"].endswith(winner.identity_phone[-4:])
        for voter in ranking["winning_option_voters"]:
            assert phone(1)[:-4] not in voter["phone"]

    def test_before_winner_selected(self, db_session, seven_three_poll):
        ranking = get_winner_ranking(db_session, seven_three_poll.id)

        assert ranking["winner"] is None
        assert len(ranking["winning_option_voters"]) == 7

    def test_no_votes(self, db_session, make_poll):
        poll = make_poll()
        _end(db_session, poll)

        ranking = get_winner_ranking(db_session, poll.id)

        assert ranking["winning_option"] is None
        assert ranking["winning_option_voters"] == []

    def test_running_poll(self, db_session, make_poll):
        poll = make_poll()
        with pytest.raises(PollNotEnded):
            get_winner_ranking(db_session, poll.id)
