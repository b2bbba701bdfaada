"""Internal API for collectors pushing traffic and geo lookups"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.api.deps import get_traffic_writer, require_ingest_token
from proxystats.core.database import get_db
from proxystats.schemas.traffic import GeoIPCacheBatch, IngestResult, TrafficBatch
from proxystats.services.geoip_service import GeoIPService
from proxystats.services.traffic_writer import TrafficWriter

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_ingest_token)])


@router.post("/backends/{backend_id}/traffic", response_model=IngestResult)
async def ingest_traffic(
    backend_id: int,
    batch: TrafficBatch,
    db: AsyncSession = Depends(get_db),
    writer: TrafficWriter = Depends(get_traffic_writer)
):
    """
    Apply a batch of traffic events for one backend.

    The batch is committed atomically: a 500/503 response means none of
    its events were counted and the whole batch may be resent.
    """
    rows = await writer.apply_batch(db, backend_id, batch.events)
    return {"backend_id": backend_id, "events": len(batch.events), "rows": rows}


@router.post("/geoip")
async def upsert_geoip(
    batch: GeoIPCacheBatch,
    db: AsyncSession = Depends(get_db)
):
    """Store geo lookups resolved by the collector"""
    written = await GeoIPService.upsert_cache(db, batch.entries)
    return {"status": "ok", "entries": written}
