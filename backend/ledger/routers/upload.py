from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, File, Query, UploadFile
from starlette.concurrency import run_in_threadpool

from ledger import config
from ledger.errors import ArchiveTooLargeError, ValidationError
from ledger.schemas import UploadResponse
from ledger.services.archive import is_zip_upload
from ledger.services.importer import import_archive


router = APIRouter()


@router.post("", response_model=UploadResponse)
async def upload_archive(
    zip_files: List[UploadFile] = File(..., alias="zipFile"),
    on_duplicate: Optional[str] = Query(
        default=None,
        alias="onDuplicate",
        description="reject (default) fails on already-imported references, skip leaves them and reports them",
    ),
) -> UploadResponse:
    """
    Import a ZIP archive holding userData.json, transactions.json and an
    optional avatar.png.

    The import is all-or-nothing: on any error the response is a non-2xx
    status with an {"error": ...} body and nothing is stored.
    """
    if len(zip_files) != 1:
        raise ValidationError("exactly one zipFile must be uploaded per request")
    upload = zip_files[0]
    if not is_zip_upload(upload.filename, upload.content_type):
        raise ValidationError("zipFile must be a .zip archive")

    data = await upload.read(config.MAX_ARCHIVE_BYTES + 1)
    if len(data) > config.MAX_ARCHIVE_BYTES:
        raise ArchiveTooLargeError(f"archive exceeds {config.MAX_ARCHIVE_BYTES} bytes")

    return await run_in_threadpool(import_archive, data, upload.filename or "upload.zip", on_duplicate)
