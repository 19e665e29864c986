from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel

from ledger.services.normalize import check_amount


class CamelModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase in JSON."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class UserOut(CamelModel):
    id: int
    user_id: str
    first_name: str
    last_name: str
    name: str  # Computed: "firstName lastName"
    birthday: Optional[date] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UserCreate(CamelModel):
    user_id: Optional[str] = None  # Generated when omitted
    first_name: str
    last_name: str = ""
    birthday: Optional[date] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class UserUpdate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birthday: Optional[date] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class TransactionOut(CamelModel):
    id: int
    reference: str
    user_id: Optional[str] = None  # Owning user's external userId
    amount: float
    currency: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TransactionCreate(CamelModel):
    reference: str
    amount: Decimal  # Numeric or numeric-string; NaN/Infinity rejected
    currency: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[datetime] = None
    user_id: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def amount_fits_column(cls, value: Decimal) -> Decimal:
        return check_amount(value)


class TransactionUpdate(CamelModel):
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("amount")
    @classmethod
    def amount_fits_column(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        return None if value is None else check_amount(value)


class UploadResponse(CamelModel):
    message: str
    user_processed: bool
    transactions_processed: int
    avatar_processed: bool
    user_id: Optional[str] = None
    import_job_id: Optional[int] = None
    # References that already existed and were left untouched ("skip" policy).
    conflicts: List[str] = []


class ImportJobOut(CamelModel):
    id: int
    file_name: str
    status: str
    user_id: Optional[str] = None
    transactions_inserted: int
    conflict_count: int
    avatar_stored: bool
    started_at: datetime
    completed_at: Optional[datetime] = None


class DashboardSummary(CamelModel):
    total_users: int
    total_transactions: int
    total_amount: float
    amount_by_currency: Dict[str, float]
    last_import_at: Optional[datetime] = None
