from __future__ import annotations

import logging
import uuid
from typing import List

from fastapi import APIRouter, Query, status
from fastapi.responses import FileResponse
from sqlalchemy import delete, select

from ledger.db import get_session
from ledger.errors import ConflictError, NotFoundError, ValidationError
from ledger.models import Transaction, User
from ledger.schemas import UserCreate, UserOut, UserUpdate
from ledger.services.avatars import avatar_path
from ledger.services.persistence import count_transactions, find_user, require_user
from ledger.services.projection import project_user


router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=List[UserOut])
async def list_users() -> List[UserOut]:
    with get_session() as session:
        users = session.execute(select(User).order_by(User.last_name, User.first_name, User.id)).scalars()
        return [project_user(user) for user in users]


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate) -> UserOut:
    """
    Create a user. A userId is generated when the payload has none.
    """
    if not payload.first_name.strip():
        raise ValidationError("firstName is required.")

    user_id = (payload.user_id or "").strip() or str(uuid.uuid4())
    with get_session() as session:
        if find_user(session, user_id) is not None:
            raise ConflictError(f"User {user_id} already exists.")

        user = User(
            user_id=user_id,
            first_name=payload.first_name.strip(),
            last_name=payload.last_name.strip(),
            birthday=payload.birthday,
            country=payload.country,
            phone=payload.phone,
        )
        session.add(user)
        session.flush()
        return project_user(user)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: str) -> UserOut:
    with get_session() as session:
        return project_user(require_user(session, user_id))


@router.put("/{user_id}", response_model=UserOut)
async def update_user(user_id: str, payload: UserUpdate) -> UserOut:
    """
    Update the fields present in the payload; omitted fields are left alone.

    An explicit null clears birthday, country or phone, and blanks lastName.
    firstName is required and cannot be cleared.
    """
    fields = payload.model_fields_set
    with get_session() as session:
        user = require_user(session, user_id)

        if "first_name" in fields:
            if not (payload.first_name or "").strip():
                raise ValidationError("firstName cannot be empty.")
            user.first_name = payload.first_name.strip()
        if "last_name" in fields:
            user.last_name = (payload.last_name or "").strip()
        if "birthday" in fields:
            user.birthday = payload.birthday
        if "country" in fields:
            user.country = (payload.country or "").strip() or None
        if "phone" in fields:
            user.phone = (payload.phone or "").strip() or None

        session.flush()
        return project_user(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    cascade: bool = Query(default=False, description="Also delete the user's transactions"),
) -> None:
    """
    Delete a user.

    A user that still owns transactions is only deleted with cascade=true,
    in which case its transactions are removed in the same transaction.
    Otherwise the request fails with 409 and nothing changes.
    """
    with get_session() as session:
        user = require_user(session, user_id)
        owned = count_transactions(session, user)
        if owned and not cascade:
            raise ConflictError(
                f"User {user_id} has {owned} transaction(s); delete them first or pass cascade=true."
            )
        if owned:
            session.execute(delete(Transaction).where(Transaction.user_id == user.id))
        session.delete(user)
        logger.info("Deleted user %s (%d transactions removed)", user_id, owned)


@router.get("/{user_id}/avatar", response_class=FileResponse)
async def get_user_avatar(user_id: str) -> FileResponse:
    with get_session() as session:
        user = require_user(session, user_id)
        filename = user.avatar
    path = avatar_path(filename) if filename else None
    if path is None:
        raise NotFoundError(f"User {user_id} has no avatar.")
    return FileResponse(path, media_type="image/png")
