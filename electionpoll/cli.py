"""
Command line entry point for cron-driven deployments.

Usage:
    python -m electionpoll.cli sweep                  # End expired polls, draw missing winners
    python -m electionpoll.cli select-winner <poll>   # Draw the winner of one ended poll
"""
import argparse
import sys
from typing import List, Optional

import structlog

from electionpoll.core.config import settings
from electionpoll.core.errors import PollEngineError
from electionpoll.core.logging_config import setup_logging
from electionpoll.core.sanitization import mask_phone
from electionpoll.db.session import get_db_context
from electionpoll.services.lifecycle import sweep_expired_polls
from electionpoll.services.lottery import select_winner
from electionpoll.services.poll import find_poll

logger = structlog.get_logger(__name__)


def _sweep(args: argparse.Namespace) -> int:
    with get_db_context() as db:
        counts = sweep_expired_polls(db)
    print(f"ended={counts['ended']} winners={counts['winners']} failed={counts['failed']}")
    return 1 if counts["failed"] else 0


def _select_winner(args: argparse.Namespace) -> int:
    with get_db_context() as db:
        poll = find_poll(db, args.poll)
        winner = select_winner(db, poll.id)

        if winner is None:
            print(f"Poll {args.poll} has no votes; no winner selected")
        else:
            print(f"Winner of poll {args.poll}: {mask_phone(winner.identity_phone)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="electionpoll", description=settings.APP_DESCRIPTION)
    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser("sweep", help="End expired polls and draw missing winners")
    sweep.set_defaults(handler=_sweep)

    winner = commands.add_parser("select-winner", help="Draw the winner of an ended poll")
    winner.add_argument("poll", help="Poll id or public id")
    winner.set_defaults(handler=_select_winner)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging(level=settings.LOG_LEVEL, json_logs=settings.ENVIRONMENT == "production")
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except PollEngineError as e:
        logger.error("cli_command_failed", command=args.command, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
