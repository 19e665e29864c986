from __future__ import annotations

from typing import TYPE_CHECKING

from ledger.schemas import ImportJobOut, TransactionOut, UserOut

if TYPE_CHECKING:
    from ledger.models import ImportJob, Transaction, User


def project_user(user: "User") -> UserOut:
    return UserOut(
        id=user.id,
        user_id=user.user_id,
        first_name=user.first_name,
        last_name=user.last_name or "",
        name=user.get_display_name(),
        birthday=user.birthday,
        country=user.country,
        phone=user.phone,
        avatar=user.avatar,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def project_transaction(transaction: "Transaction") -> TransactionOut:
    """
    Project a stored Transaction into its wire shape.

    The owning user is exposed by its external ``userId``, never by the
    storage key.
    """
    return TransactionOut(
        id=transaction.id,
        reference=transaction.reference,
        user_id=transaction.user.user_id if transaction.user is not None else None,
        amount=float(transaction.amount),
        currency=transaction.currency,
        message=transaction.message,
        timestamp=transaction.timestamp,
        created_at=transaction.created_at,
        updated_at=transaction.updated_at,
    )


def project_import_job(job: "ImportJob") -> ImportJobOut:
    return ImportJobOut(
        id=job.id,
        file_name=job.file_name,
        status=job.status,
        user_id=job.user.user_id if job.user is not None else None,
        transactions_inserted=job.transactions_inserted,
        conflict_count=job.conflict_count,
        avatar_stored=job.avatar_stored,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )
