from __future__ import annotations

from typing import Iterable, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger.errors import NotFoundError
from ledger.models import ImportJob, Transaction, User
from ledger.services.normalize import TransactionRecord, UserRecord

# Keep IN (...) lists well under SQLite's bound-parameter limit.
_CHUNK = 500


def find_user(session: Session, user_id: str) -> Optional[User]:
    return session.execute(select(User).where(User.user_id == user_id)).scalar_one_or_none()


def require_user(session: Session, user_id: str) -> User:
    user = find_user(session, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found.")
    return user


def require_transaction(session: Session, transaction_id: int) -> Transaction:
    transaction = session.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFoundError(f"Transaction {transaction_id} not found.")
    return transaction


def count_transactions(session: Session, user: User) -> int:
    return session.execute(
        select(func.count(Transaction.id)).where(Transaction.user_id == user.id)
    ).scalar_one()


def upsert_user(session: Session, record: UserRecord, avatar: Optional[str] = None) -> tuple[User, bool]:
    """
    Create the user or replace the scalar fields of the existing one.

    The stored avatar is only replaced when a new one is given, and existing
    transactions are never touched.
    """
    user = find_user(session, record.user_id)
    created = user is None
    if created:
        user = User(user_id=record.user_id)
        session.add(user)

    user.first_name = record.first_name
    user.last_name = record.last_name
    user.birthday = record.birthday
    user.country = record.country
    user.phone = record.phone
    if avatar is not None:
        user.avatar = avatar

    session.flush()
    return user, created


def existing_references(session: Session, references: Iterable[str]) -> Set[str]:
    wanted = list(references)
    found: Set[str] = set()
    for start in range(0, len(wanted), _CHUNK):
        chunk = wanted[start:start + _CHUNK]
        found.update(
            session.execute(select(Transaction.reference).where(Transaction.reference.in_(chunk))).scalars()
        )
    return found


def insert_transactions(
    session: Session,
    user: User,
    job: Optional[ImportJob],
    records: List[TransactionRecord],
) -> int:
    for record in records:
        session.add(
            Transaction(
                user=user,
                import_job=job,
                reference=record.reference,
                amount=record.amount,
                currency=record.currency,
                message=record.message,
                timestamp=record.timestamp,
            )
        )
    session.flush()
    return len(records)
