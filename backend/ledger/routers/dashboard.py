from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import func, select

from ledger.db import get_session
from ledger.models import ImportJob, Transaction, User
from ledger.schemas import DashboardSummary


router = APIRouter()


@router.get("", response_model=DashboardSummary)
async def get_summary() -> DashboardSummary:
    """
    Headline numbers for the dashboard.

    totalAmount sums every amount regardless of currency; amountByCurrency
    breaks it down, with transactions lacking a currency under "UNKNOWN".
    """
    with get_session() as session:
        total_users = session.execute(select(func.count(User.id))).scalar_one()
        total_transactions = session.execute(select(func.count(Transaction.id))).scalar_one()
        by_currency = session.execute(
            select(Transaction.currency, func.sum(Transaction.amount)).group_by(Transaction.currency)
        ).all()
        last_import_at = session.execute(select(func.max(ImportJob.completed_at))).scalar_one()

    amount_by_currency = {
        (currency or "UNKNOWN"): round(float(total or 0), 2) for currency, total in by_currency
    }
    return DashboardSummary(
        total_users=total_users,
        total_transactions=total_transactions,
        total_amount=round(sum(amount_by_currency.values()), 2),
        amount_by_currency=amount_by_currency,
        last_import_at=last_import_at,
    )
