"""Resolution router: picks the cheapest correct rollup for a query window"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.core.buckets import bucket_start, hour_key, minute_key, to_utc, MINUTES_PER_HOUR
from proxystats.core.config import settings
from proxystats.core.exceptions import InvalidRange
from proxystats.models.traffic import HourlyDimStats, HourlyStats, MinuteDimStats, MinuteStats
from proxystats.services.dimensions import Dimension, get_dimension

logger = logging.getLogger(__name__)

CUMULATIVE = "cumulative"
MINUTE = "minute"
HOURLY = "hourly"

NATIVE_BUCKET_MINUTES = {MINUTE: 1, HOURLY: MINUTES_PER_HOUR}


@dataclass(frozen=True)
class Resolution:
    """Where a windowed (or unwindowed) query is served from"""
    name: str
    start_key: Optional[str] = None
    end_key: Optional[str] = None

    @property
    def time_column(self) -> Optional[str]:
        if self.name == MINUTE:
            return "minute"
        if self.name == HOURLY:
            return "hour"
        return None

    @property
    def native_bucket_minutes(self) -> Optional[int]:
        return NATIVE_BUCKET_MINUTES.get(self.name)

    def table_for(self, dimension: Optional[Dimension]):
        if dimension is None:
            return {MINUTE: MinuteStats, HOURLY: HourlyStats}.get(self.name)
        return {
            CUMULATIVE: dimension.cumulative,
            MINUTE: dimension.minute,
            HOURLY: dimension.hourly,
        }[self.name]

    @property
    def fact_table(self):
        """Per-bucket fact table for windowed breakdowns; None for cumulative"""
        return {MINUTE: MinuteDimStats, HOURLY: HourlyDimStats}.get(self.name)


def validate_window(start: Optional[datetime], end: Optional[datetime]) -> bool:
    """
    Return True when a window is given, False for "all time".

    A half-open window or ``end < start`` raises InvalidRange: zero rows must
    always mean "no traffic", never "bad request".
    """
    if start is None and end is None:
        return False
    if start is None or end is None:
        raise InvalidRange("Both start and end are required for a time window")
    if to_utc(end) < to_utc(start):
        raise InvalidRange(f"Window end {end.isoformat()} is before start {start.isoformat()}")
    return True


def rebucket(rows: List[Dict[str, Any]], bucket_minutes: int) -> List[Dict[str, Any]]:
    """
    Collapse time series rows into wider buckets.

    Each row's ``time`` key is truncated to ``bucket_minutes`` and counters
    are summed per truncated key; output is in chronological order.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        key = bucket_start(row["time"], bucket_minutes)
        target = merged.get(key)
        if target is None:
            merged[key] = {
                "time": key,
                "upload": row["upload"],
                "download": row["download"],
                "connections": row["connections"],
            }
        else:
            target["upload"] += row["upload"]
            target["download"] += row["download"]
            target["connections"] += row["connections"]
    return [merged[key] for key in sorted(merged)]


def format_seen(value) -> Optional[str]:
    """``last_seen`` as returned by every ranking, whatever its source column"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M:%S")
    return str(value)


class RollupRouter:
    """Read path over the rollup tables"""

    @staticmethod
    def resolve(start: Optional[datetime] = None, end: Optional[datetime] = None) -> Resolution:
        """
        Choose the source table family for a window.

        No window reads cumulative rows. Windows longer than
        MINUTE_RESOLUTION_MAX_HOURS read hourly rows truncated to whole
        hours; shorter ones read minute rows truncated to whole minutes.
        """
        if not validate_window(start, end):
            return Resolution(CUMULATIVE)

        span = to_utc(end) - to_utc(start)
        if span > timedelta(hours=settings.MINUTE_RESOLUTION_MAX_HOURS):
            return Resolution(HOURLY, hour_key(start), hour_key(end))
        return Resolution(MINUTE, minute_key(start), minute_key(end))

    @staticmethod
    async def query(
        db: AsyncSession,
        backend_id: int,
        dimension: Optional[str],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        bucket_minutes: Optional[int] = None,
        key: Optional[str] = None,
        limit: int = 50
    ) -> Dict[str, Any]:
        """
        Entry point used by the API layer.

        Without ``bucket_minutes`` this is a ranking query over ``dimension``;
        with it, a time series (totals when ``dimension`` is None).
        """
        if bucket_minutes is None:
            if dimension is None:
                raise ValueError("A ranking query needs a dimension")
            return await RollupRouter.top(db, backend_id, dimension, start, end, limit)
        return await RollupRouter.series(db, backend_id, start, end, bucket_minutes, dimension, key)

    @staticmethod
    async def top(
        db: AsyncSession,
        backend_id: int,
        dimension: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = 50
    ) -> Dict[str, Any]:
        """Top keys of a dimension by upload + download, descending; ``limit=None`` returns all"""
        dim = get_dimension(dimension)
        resolution = RollupRouter.resolve(start, end)
        model = resolution.table_for(dim)
        key_col = getattr(model, dim.key_column)

        if resolution.name == CUMULATIVE:
            columns = [
                key_col.label("key"),
                model.total_upload.label("total_upload"),
                model.total_download.label("total_download"),
                model.total_connections.label("total_connections"),
                model.last_seen.label("last_seen"),
            ]
            columns += [getattr(model, c).label(c) for c in dim.attribute_columns]
            query = select(*columns).where(
                model.backend_id == backend_id
            ).order_by(
                desc(model.total_upload + model.total_download),
                key_col
            ).limit(limit)
        else:
            time_col = getattr(model, resolution.time_column)
            upload = func.sum(model.total_upload)
            download = func.sum(model.total_download)
            columns = [
                key_col.label("key"),
                upload.label("total_upload"),
                download.label("total_download"),
                func.sum(model.total_connections).label("total_connections"),
                func.max(time_col).label("last_seen"),
            ]
            columns += [func.max(getattr(model, c)).label(c) for c in dim.attribute_columns]
            query = select(*columns).where(
                model.backend_id == backend_id,
                time_col >= resolution.start_key,
                time_col <= resolution.end_key
            ).group_by(
                key_col
            ).order_by(
                desc(upload + download),
                key_col
            ).limit(limit)

        result = await db.execute(query)
        items = []
        for row in result.all():
            item = {
                dim.key_column: row.key,
                "total_upload": int(row.total_upload or 0),
                "total_download": int(row.total_download or 0),
                "total_connections": int(row.total_connections or 0),
                "last_seen": format_seen(row.last_seen),
            }
            for column in dim.attribute_columns:
                item[column] = getattr(row, column)
            items.append(item)

        return {"resolution": resolution.name, "items": items}

    @staticmethod
    async def series(
        db: AsyncSession,
        backend_id: int,
        start: datetime,
        end: datetime,
        bucket_minutes: int = 1,
        dimension: Optional[str] = None,
        key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Time series of traffic for a window, ascending by bucket.

        Rows come from the routed table at its native width and are
        re-bucketed when ``bucket_minutes`` is wider than that.
        """
        if start is None or end is None:
            raise InvalidRange("A time series needs both start and end")
        if bucket_minutes < 1:
            raise InvalidRange("bucket_minutes must be at least 1")

        dim = get_dimension(dimension) if dimension else None
        resolution = RollupRouter.resolve(start, end)
        model = resolution.table_for(dim)
        time_col = getattr(model, resolution.time_column)

        query = select(
            time_col.label("time"),
            func.sum(model.total_upload).label("upload"),
            func.sum(model.total_download).label("download"),
            func.sum(model.total_connections).label("connections")
        ).where(
            model.backend_id == backend_id,
            time_col >= resolution.start_key,
            time_col <= resolution.end_key
        )
        if dim is not None and key is not None:
            query = query.where(getattr(model, dim.key_column) == key)
        query = query.group_by(time_col).order_by(time_col)

        result = await db.execute(query)
        rows = [
            {
                "time": row.time,
                "upload": int(row.upload or 0),
                "download": int(row.download or 0),
                "connections": int(row.connections or 0),
            }
            for row in result.all()
        ]

        native = resolution.native_bucket_minutes
        if bucket_minutes > native:
            rows = rebucket(rows, bucket_minutes)
            width = bucket_minutes
        else:
            width = native

        return {"resolution": resolution.name, "bucket_minutes": width, "items": rows}

    @staticmethod
    async def traffic_in_range(
        db: AsyncSession,
        backend_id: int,
        start: datetime,
        end: datetime
    ) -> Dict[str, Any]:
        """Total traffic for a window from the dimension-less totals tables"""
        resolution = RollupRouter.resolve(start, end)
        if resolution.name == CUMULATIVE:
            raise InvalidRange("Both start and end are required for a time window")
        model = resolution.table_for(None)
        time_col = getattr(model, resolution.time_column)

        result = await db.execute(
            select(
                func.coalesce(func.sum(model.total_upload), 0).label("upload"),
                func.coalesce(func.sum(model.total_download), 0).label("download"),
                func.coalesce(func.sum(model.total_connections), 0).label("connections")
            ).where(
                model.backend_id == backend_id,
                time_col >= resolution.start_key,
                time_col <= resolution.end_key
            )
        )
        totals = result.one()
        return {
            "resolution": resolution.name,
            "upload": int(totals.upload),
            "download": int(totals.download),
            "connections": int(totals.connections),
        }
