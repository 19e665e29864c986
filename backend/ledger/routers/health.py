import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ledger.db import get_session


router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
async def get_health() -> dict:
    """
    Liveness plus a database round trip.
    """
    try:
        with get_session() as session:
            session.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as exc:
        logger.error("Database health check failed: %s", exc)
        db_status = "unavailable"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "components": {"db": db_status},
    }
