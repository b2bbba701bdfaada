"""Database management API endpoints (retention, cleanup, GeoIP settings)"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.api.deps import get_geoip_readiness, require_admin
from proxystats.core.database import get_db
from proxystats.core.redis import redis_client
from proxystats.schemas.config import (
    CleanupRequest, CleanupResponse, DatabaseStats,
    GeoLookupConfig, GeoLookupConfigUpdate,
    RetentionConfig, RetentionConfigUpdate,
)
from proxystats.services.geoip_service import GeoIPReadinessCache, GeoIPService
from proxystats.services.retention_service import RetentionService

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/retention", response_model=RetentionConfig)
async def get_retention_config(db: AsyncSession = Depends(get_db)):
    return await RetentionService.get_retention_config(db)


@router.put("/retention", response_model=RetentionConfig)
async def update_retention_config(
    update: RetentionConfigUpdate,
    db: AsyncSession = Depends(get_db)
):
    return await RetentionService.update_retention_config(db, update)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(
    request: CleanupRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Delete rollup rows.

    ``days = 0`` wipes every rollup of the backend (or of all backends) and
    compacts the database. Not reversible.
    """
    result = await RetentionService.cleanup(db, request.backend_id, request.days)

    if request.days == 0:
        await redis_client.invalidate_backend(request.backend_id)
        if request.backend_id is not None:
            message = f"Cleared all data for backend {request.backend_id}"
        else:
            message = "Cleared all data"
    else:
        message = f"Cleaned data older than {request.days} days"

    logger.info(message)
    return {
        "message": message,
        "backend_id": request.backend_id,
        "days": request.days,
        "deleted": result["deleted"],
        "vacuumed": result["vacuumed"],
    }


@router.post("/vacuum")
async def vacuum(db: AsyncSession = Depends(get_db)):
    await RetentionService.vacuum(db)
    return {"message": "Database vacuumed", "size": await RetentionService.get_database_size(db)}


@router.get("/stats", response_model=DatabaseStats)
async def get_database_stats(db: AsyncSession = Depends(get_db)):
    return {
        "size": await RetentionService.get_database_size(db),
        "cleanup": await RetentionService.get_cleanup_stats(db),
    }


@router.get("/geoip", response_model=GeoLookupConfig)
async def get_geoip_config(
    db: AsyncSession = Depends(get_db),
    readiness: GeoIPReadinessCache = Depends(get_geoip_readiness)
):
    return await GeoIPService.get_lookup_config(db, readiness)


@router.put("/geoip", response_model=GeoLookupConfig)
async def update_geoip_config(
    update: GeoLookupConfigUpdate,
    db: AsyncSession = Depends(get_db),
    readiness: GeoIPReadinessCache = Depends(get_geoip_readiness)
):
    try:
        return await GeoIPService.update_lookup_config(db, readiness, update)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
