"""Identity store: phone-keyed participants."""
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from electionpoll.db.models import Identity

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def find_or_create(db: Session, phone: str, display_name: str) -> Identity:
    """
    Idempotent upsert of an identity keyed by canonical phone number.

    An existing identity keeps its stored name. The insert uses
    ``ON CONFLICT DO NOTHING`` so two concurrent first-time callers both end up
    with the same row instead of one failing. Does not commit.

    Args:
        db: Database session
        phone: Canonical phone number (see ``normalize_phone``)
        display_name: Name stored when the identity is created

    Returns:
        The persisted Identity
    """
    insert = _DIALECT_INSERTS.get(db.get_bind().dialect.name)

    if insert is not None:
        stmt = insert(Identity).values(phone=phone, name=display_name)
        db.execute(stmt.on_conflict_do_nothing(index_elements=["phone"]))
    elif db.query(Identity).filter(Identity.phone == phone).first() is None:
        db.add(Identity(phone=phone, name=display_name))
        db.flush()

    return db.query(Identity).filter(Identity.phone == phone).one()
