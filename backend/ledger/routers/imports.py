from __future__ import annotations

from typing import List

from fastapi import APIRouter, Query
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from ledger.db import get_session
from ledger.errors import NotFoundError
from ledger.models import ImportJob
from ledger.schemas import ImportJobOut
from ledger.services.projection import project_import_job


router = APIRouter()


@router.get("", response_model=List[ImportJobOut])
async def list_imports(limit: int = Query(default=100, ge=1, le=1000)) -> List[ImportJobOut]:
    """
    List completed imports, most recent first.
    """
    with get_session() as session:
        jobs = session.execute(
            select(ImportJob)
            .options(selectinload(ImportJob.user))
            .order_by(ImportJob.started_at.desc(), ImportJob.id.desc())
            .limit(limit)
        ).scalars()
        return [project_import_job(job) for job in jobs]


@router.get("/{job_id}", response_model=ImportJobOut)
async def get_import(job_id: int) -> ImportJobOut:
    with get_session() as session:
        job = session.get(ImportJob, job_id)
        if job is None:
            raise NotFoundError(f"Import {job_id} not found.")
        return project_import_job(job)
