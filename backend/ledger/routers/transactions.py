from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, status
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from ledger.db import get_session
from ledger.errors import ConflictError, ValidationError
from ledger.models import Transaction, User
from ledger.schemas import TransactionCreate, TransactionOut, TransactionUpdate
from ledger.services.normalize import CURRENCY_RE
from ledger.services.persistence import existing_references, require_transaction, require_user
from ledger.services.projection import project_transaction


router = APIRouter()
logger = logging.getLogger(__name__)


def _normalize_currency(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    if not CURRENCY_RE.match(value.strip()):
        raise ValidationError(f"currency {value!r} is not a 3-letter code.")
    return value.strip().upper()


def _ordered():
    return (
        select(Transaction)
        .options(selectinload(Transaction.user))
        .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
    )


@router.get("", response_model=List[TransactionOut])
async def list_transactions(
    user_id: Optional[str] = Query(default=None, alias="userId", description="Filter by owning user's userId"),
    currency: Optional[str] = Query(default=None, description="Filter by currency code"),
    limit: int = Query(default=1000, ge=1, le=10000),
) -> List[TransactionOut]:
    """
    Return transactions, newest first.
    """
    with get_session() as session:
        stmt = _ordered()
        if user_id:
            stmt = stmt.join(User, Transaction.user_id == User.id).where(User.user_id == user_id)
        if currency:
            stmt = stmt.where(Transaction.currency == currency.upper())
        rows = session.execute(stmt.limit(limit)).scalars()
        return [project_transaction(row) for row in rows]


@router.get("/user/{user_id}", response_model=List[TransactionOut])
async def list_user_transactions(user_id: str) -> List[TransactionOut]:
    with get_session() as session:
        user = require_user(session, user_id)
        rows = session.execute(_ordered().where(Transaction.user_id == user.id)).scalars()
        return [project_transaction(row) for row in rows]


@router.post("", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def create_transaction(payload: TransactionCreate) -> TransactionOut:
    reference = payload.reference.strip()
    if not reference:
        raise ValidationError("reference is required.")

    with get_session() as session:
        if existing_references(session, [reference]):
            raise ConflictError(f"Transaction {reference} already exists.")
        user = require_user(session, payload.user_id) if payload.user_id else None

        transaction = Transaction(
            reference=reference,
            user=user,
            amount=payload.amount,
            currency=_normalize_currency(payload.currency),
            message=payload.message,
            timestamp=payload.timestamp,
        )
        session.add(transaction)
        session.flush()
        return project_transaction(transaction)


@router.get("/{transaction_id}", response_model=TransactionOut)
async def get_transaction(transaction_id: int) -> TransactionOut:
    with get_session() as session:
        return project_transaction(require_transaction(session, transaction_id))


@router.put("/{transaction_id}", response_model=TransactionOut)
async def update_transaction(transaction_id: int, payload: TransactionUpdate) -> TransactionOut:
    """
    Update amount, currency, message or timestamp. The reference is immutable.

    A null currency, message or timestamp clears it; a null amount is ignored.
    """
    fields = payload.model_fields_set
    with get_session() as session:
        transaction = require_transaction(session, transaction_id)
        if payload.amount is not None:
            transaction.amount = payload.amount
        if "currency" in fields:
            transaction.currency = _normalize_currency(payload.currency)
        if "message" in fields:
            transaction.message = payload.message or None
        if "timestamp" in fields:
            transaction.timestamp = payload.timestamp
        session.flush()
        return project_transaction(transaction)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(transaction_id: int) -> None:
    with get_session() as session:
        transaction = require_transaction(session, transaction_id)
        session.delete(transaction)
        logger.info("Deleted transaction %s (%s)", transaction_id, transaction.reference)
