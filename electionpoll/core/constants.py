"""Application constants.

This module contains magic strings and numbers used throughout the application.
Centralizing these values makes them easier to maintain and modify.
"""

# Poll options
# A poll always carries between 2 and 5 options
MIN_POLL_OPTIONS = 2
MAX_POLL_OPTIONS = 5

# Default option colours, picked by option index when none is given
DEFAULT_OPTION_COLORS = (
    "#C8102E",  # Red
    "#00A651",  # Green
    "#F42A41",  # Pink
    "#06A77D",  # Teal
    "#666666",  # Gray
)

# Poll status values
POLL_STATUS_PENDING = "pending"
POLL_STATUS_ACTIVE = "active"
POLL_STATUS_ENDED = "ended"
POLL_STATUS_REJECTED = "rejected"
POLL_STATUSES = (
    POLL_STATUS_PENDING,
    POLL_STATUS_ACTIVE,
    POLL_STATUS_ENDED,
    POLL_STATUS_REJECTED,
)

# Verification purposes
PURPOSE_CREATE_POLL = "create_poll"
PURPOSE_CAST_VOTE = "cast_vote"
PURPOSE_ADMIN_LOGIN = "admin_login"
CHALLENGE_PURPOSES = (PURPOSE_CREATE_POLL, PURPOSE_CAST_VOTE, PURPOSE_ADMIN_LOGIN)

# Public poll ids are 16 hex characters
PUBLIC_ID_BYTES = 8

# Identity display names used when none is supplied
DEFAULT_CREATOR_NAME = "Anonymous"
DEFAULT_VOTER_NAME = "Anonymous Voter"

# Broadcast event names
EVENT_VOTE_CAST = "vote.cast"
EVENT_POLL_ENDED = "poll.ended"
EVENT_TALLY = "tally"

# JWT Token Configuration
# Token expiration time in minutes (8 hours)
ACCESS_TOKEN_EXPIRE_MINUTES = 480
