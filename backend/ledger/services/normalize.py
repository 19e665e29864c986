"""
Turn the raw JSON members of an archive into UserRecord / TransactionRecord.

Both observed payload dialects are accepted:

- user: ``firstName``/``lastName`` or a combined ``name``
- transaction: ``reference`` or ``transactionId``, ``message`` or
  ``description``, ``timestamp`` or ``date``, and either a signed
  ``amount`` or an unsigned one plus ``type`` (credit/debit)

Every transaction entry is checked and all problems are reported together;
one bad entry rejects the whole batch.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from ledger import config
from ledger.errors import SchemaError, ValidationError
from ledger.models import AMOUNT_PRECISION, AMOUNT_SCALE
from ledger.services.archive import TRANSACTIONS_MEMBER, USER_MEMBER

CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")

DEBIT_TYPES = {"debit", "withdrawal", "expense", "out"}
CREDIT_TYPES = {"credit", "deposit", "income", "in"}


@dataclass
class UserRecord:
    user_id: str
    first_name: str
    last_name: str = ""
    birthday: Optional[date] = None
    country: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class TransactionRecord:
    reference: str
    amount: Decimal
    currency: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[datetime] = None


def _load_json(raw: bytes, member: str) -> Any:
    try:
        return json.loads(raw.decode("utf-8-sig"))
    except UnicodeDecodeError as exc:
        raise SchemaError(f"{member} must be UTF-8 encoded") from exc
    except json.JSONDecodeError as exc:
        raise SchemaError(f"{member} is not valid JSON: {exc.msg} (line {exc.lineno})") from exc


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_present(entry: dict, *keys: str) -> Any:
    """Value of the first key that is present and not null."""
    for key in keys:
        if entry.get(key) is not None:
            return entry[key]
    return None


def split_name(name: str) -> tuple[str, str]:
    """Split a combined name into first name and surname."""
    parts = name.strip().split(maxsplit=1)
    if len(parts) == 2:
        return parts[0], parts[1]
    elif len(parts) == 1:
        return parts[0], ""
    return "", ""


def parse_amount(value: Any) -> Decimal:
    """
    Coerce a JSON amount to a finite Decimal.

    Accepts numbers and numeric strings ("12.50", "1,234.50"). Booleans,
    NaN, infinities and anything else raise ValueError.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"amount {value!r} is not a number")
    if isinstance(value, (int, float)):
        text = repr(value)
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
    else:
        raise ValueError(f"amount {value!r} is not a number")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"amount {value!r} is not a number") from None
    if not amount.is_finite():
        raise ValueError(f"amount {value!r} is not finite")
    return check_amount(amount, value)


def check_amount(amount: Decimal, value: Any = None) -> Decimal:
    """
    Reject amounts the amount column cannot store exactly and return the
    amount at column scale ("12.500" -> 12.50).
    """
    shown = amount if value is None else value
    integer_digits = AMOUNT_PRECISION - AMOUNT_SCALE
    if abs(amount) >= Decimal(10) ** integer_digits:
        raise ValueError(f"amount {shown!r} has more than {integer_digits} integer digits")
    quantum = Decimal(1).scaleb(-AMOUNT_SCALE)
    scaled = amount.quantize(quantum)
    if scaled != amount:
        raise ValueError(f"amount {shown!r} has more than {AMOUNT_SCALE} decimal places")
    return scaled


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; a trailing ``Z`` means UTC."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"timestamp {value!r} is not an ISO-8601 string")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"timestamp {value!r} is not ISO-8601") from None


def parse_birthday(value: Any) -> date:
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10]) if "T" in text else date.fromisoformat(text)
        except ValueError:
            pass
    raise ValueError(f"birthday {value!r} is not an ISO-8601 date")


def derive_user_id(payload: dict) -> str:
    """Deterministic id for payloads without userId, so re-imports hit the same user."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return "u-" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def parse_user(raw: bytes) -> UserRecord:
    payload = _load_json(raw, USER_MEMBER)
    if not isinstance(payload, dict):
        raise SchemaError(f"{USER_MEMBER} must contain a JSON object, got {type(payload).__name__}")

    first_name = _optional_text(payload.get("firstName"))
    last_name = _optional_text(payload.get("lastName")) or ""
    if first_name is None and _optional_text(payload.get("name")):
        first_name, last_name = split_name(str(payload["name"]))
    if not first_name:
        raise SchemaError(f"{USER_MEMBER}: firstName or name is required")

    raw_user_id = payload.get("userId")
    if isinstance(raw_user_id, bool) or (raw_user_id is not None and not isinstance(raw_user_id, (str, int))):
        raise SchemaError(f"{USER_MEMBER}: userId must be a string")
    user_id = _optional_text(raw_user_id) or derive_user_id(payload)

    birthday = None
    if payload.get("birthday") not in (None, ""):
        try:
            birthday = parse_birthday(payload["birthday"])
        except ValueError as exc:
            raise SchemaError(f"{USER_MEMBER}: {exc}") from exc

    return UserRecord(
        user_id=user_id,
        first_name=first_name,
        last_name=last_name,
        birthday=birthday,
        country=_optional_text(payload.get("country")),
        phone=_optional_text(payload.get("phone")),
    )


def _parse_entry(
    entry: Any, user_id: Optional[str]
) -> tuple[Optional[str], Optional[TransactionRecord], List[str]]:
    if not isinstance(entry, dict):
        return None, None, [f"expected an object, got {type(entry).__name__}"]

    problems: List[str] = []

    raw_reference = _first_present(entry, "reference", "transactionId")
    reference = None
    if isinstance(raw_reference, (str, int)) and not isinstance(raw_reference, bool):
        reference = _optional_text(raw_reference)
    if reference is None:
        problems.append("reference or transactionId is required")

    amount = None
    try:
        amount = parse_amount(entry.get("amount"))
    except ValueError as exc:
        problems.append(str(exc))

    kind = _optional_text(entry.get("type"))
    if amount is not None and kind is not None:
        if kind.lower() in DEBIT_TYPES:
            amount = -abs(amount)
        elif kind.lower() in CREDIT_TYPES:
            amount = abs(amount)
        else:
            problems.append(f"type {kind!r} is not credit or debit")

    currency = _optional_text(entry.get("currency"))
    if currency is not None:
        if not CURRENCY_RE.match(currency):
            problems.append(f"currency {currency!r} is not a 3-letter code")
        currency = currency.upper()

    timestamp = None
    raw_timestamp = _first_present(entry, "timestamp", "date")
    if raw_timestamp not in (None, ""):
        try:
            timestamp = parse_timestamp(raw_timestamp)
        except ValueError as exc:
            problems.append(str(exc))

    entry_user = _optional_text(entry.get("userId"))
    if entry_user is not None and user_id is not None and entry_user != user_id:
        problems.append(f"userId {entry_user!r} does not match archive user {user_id!r}")

    if problems:
        return reference, None, problems
    return (
        reference,
        TransactionRecord(
            reference=reference,
            amount=amount,
            currency=currency,
            message=_optional_text(_first_present(entry, "message", "description")),
            timestamp=timestamp,
        ),
        [],
    )


def parse_transactions(raw: bytes, user_id: Optional[str] = None) -> List[TransactionRecord]:
    """
    Parse ``transactions.json``; raise SchemaError listing every invalid entry.
    """
    payload = _load_json(raw, TRANSACTIONS_MEMBER)
    if not isinstance(payload, list):
        raise SchemaError(f"{TRANSACTIONS_MEMBER} must contain a JSON array, got {type(payload).__name__}")
    if len(payload) > config.MAX_TRANSACTIONS:
        raise ValidationError(
            f"{TRANSACTIONS_MEMBER} has {len(payload)} entries, the limit is {config.MAX_TRANSACTIONS}"
        )

    records: List[TransactionRecord] = []
    errors: List[str] = []
    first_seen: dict[str, int] = {}

    for index, entry in enumerate(payload):
        reference, record, problems = _parse_entry(entry, user_id)
        if reference is not None:
            if reference in first_seen:
                problems.append(f"reference {reference!r} duplicates transactions[{first_seen[reference]}]")
            else:
                first_seen[reference] = index
        errors.extend(f"transactions[{index}]: {problem}" for problem in problems)
        if record is not None and not problems:
            records.append(record)

    if errors:
        entries = len({error.split(":", 1)[0] for error in errors})
        raise SchemaError(
            f"{TRANSACTIONS_MEMBER}: {entries} invalid {'entry' if entries == 1 else 'entries'}",
            details=errors,
        )
    return records
