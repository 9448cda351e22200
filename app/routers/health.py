"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime
import logging

from app.database import get_db
from app.models.schemas import HealthCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of the database and whether the
        language model is configured
    """
    # Check database connection
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "error"

    # Language model: configuration only, no billable call
    llm = getattr(request.app.state, "llm", None)
    llm_status = "configured" if llm is not None and llm.is_configured else "not_configured"

    overall_status = "healthy" if db_status == "ok" and llm_status == "configured" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        language_model=llm_status,
        timestamp=datetime.utcnow()
    )
