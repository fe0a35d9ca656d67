from .identity import find_or_create
from .lifecycle import activate_poll, end_poll, reject_poll, sweep_expired_polls
from .lottery import (
    draw_winner,
    get_winner,
    get_winner_ranking,
    pick_winning_option,
    rerun_lottery,
    select_winner,
)
from .poll import (
    create_poll,
    find_poll,
    get_poll,
    get_poll_by_public_id,
    is_accepting_votes,
    list_featured_polls,
    list_polls,
    serialize_poll,
    update_poll,
)
from .tally import Tally, get_tally
from .verification import issue_challenge, verify_challenge
from .vote import cast_vote, list_votes

__all__ = [
    # identity
    "find_or_create",
    # verification
    "issue_challenge",
    "verify_challenge",
    # polls
    "create_poll",
    "find_poll",
    "get_poll",
    "get_poll_by_public_id",
    "is_accepting_votes",
    "list_featured_polls",
    "list_polls",
    "serialize_poll",
    "update_poll",
    # lifecycle
    "activate_poll",
    "reject_poll",
    "end_poll",
    "sweep_expired_polls",
    # votes
    "cast_vote",
    "list_votes",
    # tally
    "Tally",
    "get_tally",
    # lottery
    "draw_winner",
    "get_winner",
    "get_winner_ranking",
    "pick_winning_option",
    "rerun_lottery",
    "select_winner",
]
