"""Verification gate: one-time codes tied to a phone, a purpose and an optional poll."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from electionpoll.core.config import settings
from electionpoll.core.constants import CHALLENGE_PURPOSES, PURPOSE_CAST_VOTE
from electionpoll.core.errors import PollNotFound, ValidationFailed
from electionpoll.core.sanitization import mask_phone, validate_code_format
from electionpoll.core.security import create_code_lookup_key
from electionpoll.core.utils import make_numeric_code, utcnow
from electionpoll.db.models import Poll, VerificationChallenge
from electionpoll.services.notifications import NotificationSink, get_notifier

logger = structlog.get_logger(__name__)


@dataclass
class IssuedChallenge:
    """Outcome of issuing a code. ``delivered`` is reported apart from issuance."""

    code: str
    expires_at: datetime
    delivered: bool


def _check_purpose(db: Session, purpose: str, target_poll_id: Optional[int]) -> None:
    if purpose not in CHALLENGE_PURPOSES:
        raise ValidationFailed("Unknown verification purpose")

    if purpose == PURPOSE_CAST_VOTE:
        if target_poll_id is None:
            raise ValidationFailed("A poll is required for vote verification")
        if db.query(Poll.id).filter(Poll.id == target_poll_id).first() is None:
            raise PollNotFound()
    elif target_poll_id is not None:
        raise ValidationFailed("Only vote verification can target a poll")


def issue_challenge(
    db: Session,
    phone: str,
    purpose: str,
    target_poll_id: Optional[int] = None,
    notifier: Optional[NotificationSink] = None,
) -> IssuedChallenge:
    """
    Create a code, persist the challenge and hand the code to the sink.

    The challenge is committed before delivery is attempted so a slow or failing
    sink never holds a transaction open. Delivery failure does not undo issuance.

    Args:
        db: Database session
        phone: Canonical phone number
        purpose: One of ``create_poll``, ``cast_vote``, ``admin_login``
        target_poll_id: Poll the code is scoped to (``cast_vote`` only)
        notifier: Sink used for delivery (defaults to the configured one)

    Returns:
        IssuedChallenge with the plain code, its expiry and the delivery outcome

    Raises:
        ValidationFailed: Unknown purpose or misplaced target poll
        PollNotFound: ``cast_vote`` targeting a missing poll
    """
    _check_purpose(db, purpose, target_poll_id)

    code = make_numeric_code(settings.OTP_LENGTH)
    now = utcnow()
    expires_at = now + timedelta(minutes=settings.OTP_EXPIRY_MINUTES)

    challenge = VerificationChallenge(
        identity_phone=phone,
        code_lookup_key=create_code_lookup_key(phone, code),
        purpose=purpose,
        target_poll_id=target_poll_id,
        created_at=now,
        expires_at=expires_at,
        consumed=False,
    )
    try:
        db.add(challenge)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "challenge_issued",
        phone=mask_phone(phone),
        purpose=purpose,
        target_poll_id=target_poll_id,
    )

    sink = notifier or get_notifier()
    delivered = sink.send_code(phone, code, purpose)
    if not delivered:
        logger.warning("challenge_delivery_failed", phone=mask_phone(phone), purpose=purpose)

    return IssuedChallenge(code=code, expires_at=expires_at, delivered=delivered)


def verify_challenge(
    db: Session,
    phone: str,
    code: str,
    purpose: str,
    target_poll_id: Optional[int] = None,
    commit: bool = True,
) -> bool:
    """
    Consume a matching, unconsumed, unexpired challenge.

    The consume step is a conditional ``UPDATE ... WHERE consumed = false``;
    of N concurrent attempts with the same code only one sees a row updated.
    Every failure looks the same to the caller.

    Args:
        db: Database session
        phone: Canonical phone number
        code: Code as typed by the user
        purpose: Purpose the code must have been issued for
        target_poll_id: Poll the code must be scoped to (None for unscoped purposes)
        commit: Commit on success; pass False to keep the consume inside a
            larger transaction

    Returns:
        True if a challenge was consumed
    """
    try:
        code = validate_code_format(code, settings.OTP_LENGTH)
    except ValidationFailed:
        return False

    now = utcnow()
    query = db.query(VerificationChallenge.id).filter(
        VerificationChallenge.identity_phone == phone,
        VerificationChallenge.code_lookup_key == create_code_lookup_key(phone, code),
        VerificationChallenge.purpose == purpose,
        VerificationChallenge.consumed.is_(False),
        VerificationChallenge.expires_at > now,
    )
    if target_poll_id is None:
        query = query.filter(VerificationChallenge.target_poll_id.is_(None))
    else:
        query = query.filter(VerificationChallenge.target_poll_id == target_poll_id)

    candidate = query.order_by(VerificationChallenge.id.desc()).first()
    if candidate is None:
        logger.info("challenge_rejected", phone=mask_phone(phone), purpose=purpose)
        return False

    result = db.execute(
        update(VerificationChallenge)
        .where(
            VerificationChallenge.id == candidate.id,
            VerificationChallenge.consumed.is_(False),
            VerificationChallenge.expires_at > now,
        )
        .values(consumed=True, consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Lost the race against a concurrent verify of the same code
        logger.info("challenge_rejected", phone=mask_phone(phone), purpose=purpose)
        return False

    if commit:
        db.commit()

    logger.info("challenge_consumed", phone=mask_phone(phone), purpose=purpose, target_poll_id=target_poll_id)
    return True
