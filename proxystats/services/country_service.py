"""Country statistics with graceful degradation for windowed queries"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.models.geoip import GeoIPCache
from proxystats.services.dimensions import DIMENSIONS
from proxystats.services.rollup_router import CUMULATIVE, RollupRouter, format_seen

logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = "UNKNOWN"
UNKNOWN_NAME = "Unknown"

FALLBACK_IP_GEO = "ip_geo"
FALLBACK_TOTALS = "totals"


class CountryService:
    """Service for country dimension queries"""

    @staticmethod
    async def get_country_stats(
        db: AsyncSession,
        backend_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50
    ) -> Dict[str, Any]:
        """
        Top countries by traffic.

        A windowed query that finds no country rollups (geo enrichment
        switched on after ingestion began) degrades to the per-IP rollup
        joined with the geoip cache, then to the window's total traffic
        reported as a single UNKNOWN row.
        """
        primary = await RollupRouter.top(db, backend_id, "country", start, end, limit)
        primary["fallback"] = None
        if primary["items"] or primary["resolution"] == CUMULATIVE:
            return primary

        resolution = RollupRouter.resolve(start, end)

        items = await CountryService._from_ip_geo(db, backend_id, resolution, limit)
        if items:
            logger.debug(f"Country stats for backend {backend_id} served from per-IP rollups")
            return {"resolution": resolution.name, "fallback": FALLBACK_IP_GEO, "items": items}

        items = await CountryService._from_totals(db, backend_id, resolution)
        if items:
            logger.debug(f"Country stats for backend {backend_id} served from traffic totals")
            return {"resolution": resolution.name, "fallback": FALLBACK_TOTALS, "items": items}

        return {"resolution": resolution.name, "fallback": None, "items": []}

    @staticmethod
    async def _from_ip_geo(db: AsyncSession, backend_id: int, resolution, limit: int):
        model = resolution.table_for(DIMENSIONS["ip"])
        time_col = getattr(model, resolution.time_column)
        country = func.coalesce(GeoIPCache.country, UNKNOWN_COUNTRY)
        upload = func.sum(model.total_upload)
        download = func.sum(model.total_download)

        query = select(
            country.label("country"),
            func.coalesce(func.max(GeoIPCache.country_name), UNKNOWN_NAME).label("country_name"),
            func.coalesce(func.max(GeoIPCache.continent), UNKNOWN_NAME).label("continent"),
            upload.label("total_upload"),
            download.label("total_download"),
            func.sum(model.total_connections).label("total_connections"),
            func.max(time_col).label("last_seen")
        ).select_from(model).outerjoin(
            GeoIPCache, GeoIPCache.ip == model.ip
        ).where(
            model.backend_id == backend_id,
            time_col >= resolution.start_key,
            time_col <= resolution.end_key,
            model.ip != ""
        ).group_by(
            country
        ).order_by(
            desc(upload + download),
            country
        ).limit(limit)

        result = await db.execute(query)
        return [
            {
                "country": row.country,
                "country_name": row.country_name,
                "continent": row.continent,
                "total_upload": int(row.total_upload or 0),
                "total_download": int(row.total_download or 0),
                "total_connections": int(row.total_connections or 0),
                "last_seen": format_seen(row.last_seen),
            }
            for row in result.all()
        ]

    @staticmethod
    async def _from_totals(db: AsyncSession, backend_id: int, resolution):
        model = resolution.table_for(None)
        time_col = getattr(model, resolution.time_column)

        result = await db.execute(
            select(
                func.coalesce(func.sum(model.total_upload), 0).label("upload"),
                func.coalesce(func.sum(model.total_download), 0).label("download"),
                func.coalesce(func.sum(model.total_connections), 0).label("connections"),
                func.max(time_col).label("last_seen")
            ).where(
                model.backend_id == backend_id,
                time_col >= resolution.start_key,
                time_col <= resolution.end_key
            )
        )
        total = result.one()
        if not (total.upload or total.download or total.connections):
            return []

        return [{
            "country": UNKNOWN_COUNTRY,
            "country_name": UNKNOWN_NAME,
            "continent": UNKNOWN_NAME,
            "total_upload": int(total.upload),
            "total_download": int(total.download),
            "total_connections": int(total.connections),
            "last_seen": format_seen(total.last_seen),
        }]
