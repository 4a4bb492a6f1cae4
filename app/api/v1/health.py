import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.exceptions import ServiceUnavailableError
from app.services.vms_sync_service import registered_systems

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: Literal["ok", "error"] = Field(..., description="The status of the health check")
    vms_pipelines: list[str] = Field(
        default_factory=list, description="VMS systems with a registered sync pipeline"
    )


@router.get("/health", tags=["health"], response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_session)):
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Error checking health: {e}")
        raise ServiceUnavailableError(detail="Database is unreachable") from e

    return HealthResponse(status="ok", vms_pipelines=registered_systems())
