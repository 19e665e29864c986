"""
Import pipeline: intake -> normalization -> persistence -> result.

An archive is imported as one database transaction. Any error raised along
the way rolls everything back, so a failed upload leaves no users,
transactions or import records behind. Imports that target the same
``userId`` are serialized in-process; the unique constraints on
``users.user_id`` and ``transactions.reference`` settle races between
processes.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError

from ledger import config
from ledger.db import get_session
from ledger.errors import ConflictError, ValidationError
from ledger.models import ImportJob
from ledger.schemas import UploadResponse
from ledger.services.archive import read_archive
from ledger.services.avatars import discard_avatar, store_avatar
from ledger.services.normalize import parse_transactions, parse_user
from ledger.services.persistence import existing_references, insert_transactions, upsert_user

logger = logging.getLogger(__name__)

DUPLICATE_POLICIES = ("reject", "skip")

_user_locks: Dict[str, List] = {}
_user_locks_guard = threading.Lock()


@contextmanager
def user_lock(user_id: str) -> Iterator[None]:
    """
    Serialize imports for one userId. Entries are reference-counted and
    dropped once no import holds or waits on them.
    """
    with _user_locks_guard:
        entry = _user_locks.setdefault(user_id, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _user_locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _user_locks[user_id]


def _summary_message(inserted: int, conflicts: int, avatar_stored: bool, created: bool) -> str:
    parts = [
        f"user {'created' if created else 'updated'}",
        f"{inserted} transaction{'s' if inserted != 1 else ''} imported",
    ]
    if conflicts:
        parts.append(f"{conflicts} duplicate{'s' if conflicts != 1 else ''} skipped")
    if avatar_stored:
        parts.append("avatar stored")
    return "Import completed: " + ", ".join(parts) + "."


def import_archive(data: bytes, file_name: str, on_duplicate: Optional[str] = None) -> UploadResponse:
    """
    Validate, parse and persist one uploaded archive.

    ``on_duplicate`` decides what happens to transactions whose reference is
    already stored: "reject" fails the whole import with ConflictError,
    "skip" keeps the stored row and lists the reference in the result.
    """
    policy = (on_duplicate or config.DUPLICATE_POLICY).lower()
    if policy not in DUPLICATE_POLICIES:
        raise ValidationError(f"onDuplicate must be one of: {', '.join(DUPLICATE_POLICIES)}")

    members = read_archive(data)
    user_record = parse_user(members.user_data)
    records = parse_transactions(members.transactions, user_record.user_id)
    logger.info(
        "Importing %s for user %s: %d transactions, avatar=%s",
        file_name, user_record.user_id, len(records), members.avatar is not None,
    )

    with user_lock(user_record.user_id):
        avatar_name, avatar_created = None, False
        try:
            with get_session() as session:
                duplicates = existing_references(session, (r.reference for r in records))
                if duplicates and policy == "reject":
                    logger.warning("Rejecting %s: %d duplicate references", file_name, len(duplicates))
                    raise ConflictError(
                        f"{len(duplicates)} transaction(s) already imported",
                        details=sorted(duplicates),
                    )

                if members.avatar is not None:
                    avatar_name, avatar_created = store_avatar(members.avatar)

                job = ImportJob(file_name=file_name, status="running")
                session.add(job)
                try:
                    user, created = upsert_user(session, user_record, avatar_name)
                    job.user = user
                    fresh = [r for r in records if r.reference not in duplicates]
                    inserted = insert_transactions(session, user, job, fresh)
                except IntegrityError as exc:
                    raise ConflictError(
                        f"a concurrent import already wrote records for user {user_record.user_id}; retry the upload"
                    ) from exc

                job.status = "completed"
                job.transactions_inserted = inserted
                job.conflict_count = len(duplicates)
                job.avatar_stored = avatar_name is not None
                job.completed_at = datetime.now(timezone.utc)
                session.flush()

                response = UploadResponse(
                    message=_summary_message(inserted, len(duplicates), avatar_name is not None, created),
                    user_processed=True,
                    transactions_processed=inserted,
                    avatar_processed=avatar_name is not None,
                    user_id=user.user_id,
                    import_job_id=job.id,
                    conflicts=sorted(duplicates),
                )
        except Exception:
            # Rolled back: nothing references an avatar this import wrote.
            if avatar_created:
                discard_avatar(avatar_name)
            raise

    logger.info("Import of %s completed: %s", file_name, response.message)
    return response
