"""Rollup writer: fans traffic events out into every rollup table"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.core.buckets import hour_key, minute_key, to_utc
from proxystats.core.config import settings
from proxystats.core.database import dialect_insert, greatest
from proxystats.core.exceptions import PartialBatchFailure, StorageUnavailable
from proxystats.models.traffic import HourlyDimStats, HourlyStats, MinuteDimStats, MinuteStats
from proxystats.schemas.traffic import TrafficEvent
from proxystats.services.dimensions import BREAKDOWNS, DIMENSIONS, FACT_COLUMNS

logger = logging.getLogger(__name__)

# Rows per INSERT ... ON CONFLICT statement; keeps SQLite under its bound
# parameter limit
UPSERT_CHUNK_SIZE = 500


@dataclass(frozen=True)
class RollupTarget:
    """One table written by the fan-out, with its natural key columns"""
    model: type
    key_columns: Tuple[str, ...]
    attribute_columns: Tuple[str, ...] = ()

    @property
    def table_name(self) -> str:
        return self.model.__tablename__


Folded = Dict[RollupTarget, Dict[Tuple, dict]]


def _accumulate(
    bucket: Dict[Tuple, dict],
    key: Tuple,
    base: dict,
    event: TrafficEvent,
    seen: datetime,
    attributes: Optional[dict] = None
) -> None:
    row = bucket.get(key)
    if row is None:
        row = dict(base)
        row.update(total_upload=0, total_download=0, total_connections=0, last_seen=seen)
        if attributes:
            row.update(attributes)
        bucket[key] = row
    else:
        # Attributes follow the newest event; equal timestamps resolve by value
        # so the folded result does not depend on batch order
        newer = seen > row["last_seen"]
        if attributes and (newer or (
            seen == row["last_seen"]
            and tuple(attributes.values()) > tuple(row[k] for k in attributes)
        )):
            row.update(attributes)
        if newer:
            row["last_seen"] = seen

    row["total_upload"] += event.upload
    row["total_download"] += event.download
    row["total_connections"] += 1


def fold_events(backend_id: int, events: Iterable[TrafficEvent]) -> Folded:
    """
    Fold events into one pending row per (table, bucket, key).

    Counter addition is commutative, so the result is independent of the
    order of ``events``.
    """
    folded: Folded = {}

    def bucket_for(target: RollupTarget) -> Dict[Tuple, dict]:
        return folded.setdefault(target, {})

    totals_minute = RollupTarget(MinuteStats, ("minute",))
    totals_hourly = RollupTarget(HourlyStats, ("hour",))
    facts_minute = RollupTarget(MinuteDimStats, ("minute",) + FACT_COLUMNS)
    facts_hourly = RollupTarget(HourlyDimStats, ("hour",) + FACT_COLUMNS)

    for event in events:
        seen = to_utc(event.timestamp)
        minute = minute_key(seen)
        hour = hour_key(seen)

        _accumulate(bucket_for(totals_minute), (minute,),
                    {"backend_id": backend_id, "minute": minute}, event, seen)
        _accumulate(bucket_for(totals_hourly), (hour,),
                    {"backend_id": backend_id, "hour": hour}, event, seen)

        facts = {column: getattr(event, column) for column in FACT_COLUMNS}
        if any(facts.values()):
            values = tuple(facts.values())
            _accumulate(bucket_for(facts_minute), (minute,) + values,
                        {"backend_id": backend_id, "minute": minute, **facts}, event, seen)
            _accumulate(bucket_for(facts_hourly), (hour,) + values,
                        {"backend_id": backend_id, "hour": hour, **facts}, event, seen)

        for dimension in DIMENSIONS.values():
            key = dimension.extract(event)
            if not key:
                continue
            column = dimension.key_column
            attributes = dimension.attributes(event) or None
            attrs = dimension.attribute_columns

            _accumulate(
                bucket_for(RollupTarget(dimension.cumulative, (column,), attrs)),
                (key,), {"backend_id": backend_id, column: key}, event, seen, attributes
            )
            _accumulate(
                bucket_for(RollupTarget(dimension.minute, ("minute", column), attrs)),
                (minute, key), {"backend_id": backend_id, "minute": minute, column: key},
                event, seen, attributes
            )
            _accumulate(
                bucket_for(RollupTarget(dimension.hourly, ("hour", column), attrs)),
                (hour, key), {"backend_id": backend_id, "hour": hour, column: key},
                event, seen, attributes
            )

        for breakdown in BREAKDOWNS.values():
            parent, child = breakdown.extract(event)
            if not parent or not child:
                continue
            _accumulate(
                bucket_for(RollupTarget(
                    breakdown.model, (breakdown.parent_column, breakdown.child_column)
                )),
                (parent, child),
                {
                    "backend_id": backend_id,
                    breakdown.parent_column: parent,
                    breakdown.child_column: child,
                },
                event, seen
            )

    return folded


async def increment_counters(db: AsyncSession, target: RollupTarget, rows: List[dict]) -> int:
    """
    Insert-or-increment counter rows for one table.

    New keys are inserted with the folded counters; existing keys get the
    counters added and ``last_seen`` moved forward.
    """
    if not rows:
        return 0

    table = target.model.__table__
    insert = dialect_insert(db)

    for offset in range(0, len(rows), UPSERT_CHUNK_SIZE):
        stmt = insert(table).values(rows[offset:offset + UPSERT_CHUNK_SIZE])
        set_ = {
            "total_upload": table.c.total_upload + stmt.excluded.total_upload,
            "total_download": table.c.total_download + stmt.excluded.total_download,
            "total_connections": table.c.total_connections + stmt.excluded.total_connections,
            "last_seen": greatest(db, table.c.last_seen, stmt.excluded.last_seen),
        }
        for column in target.attribute_columns:
            set_[column] = stmt.excluded[column]

        stmt = stmt.on_conflict_do_update(
            index_elements=["backend_id", *target.key_columns],
            set_=set_
        )
        await db.execute(stmt)

    return len(rows)


def _is_transient(error: SQLAlchemyError) -> bool:
    if isinstance(error, OperationalError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class TrafficWriter:
    """
    Applies traffic events to the rollup tables.

    One instance is shared per process: its lock keeps a single write
    transaction in flight and its semaphore bounds how many ingestion calls
    may wait for that lock.
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        max_pending: Optional[int] = None
    ):
        self.max_retries = max(1, max_retries if max_retries is not None else settings.WRITER_MAX_RETRIES)
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.WRITER_RETRY_BACKOFF
        self._lock = asyncio.Lock()
        self._pending = asyncio.Semaphore(max_pending or settings.INGEST_MAX_PENDING)

    async def apply(self, db: AsyncSession, backend_id: int, event: TrafficEvent) -> int:
        """Apply a single event; returns the number of rollup rows touched"""
        return await self.apply_batch(db, backend_id, [event])

    async def apply_batch(self, db: AsyncSession, backend_id: int, events: List[TrafficEvent]) -> int:
        """
        Apply a batch of events as one unit of work.

        Either every rollup row reflects the batch or none does. Raises
        StorageUnavailable when the database stays locked/unreachable after
        the retry budget, PartialBatchFailure for any other commit failure.
        """
        if not events:
            return 0

        folded = fold_events(backend_id, events)

        async with self._pending:
            async with self._lock:
                rows = await self._write(db, folded, len(events))

        logger.debug(f"Applied {len(events)} events for backend {backend_id} ({rows} rollup rows)")
        return rows

    async def _write(self, db: AsyncSession, folded: Folded, event_count: int) -> int:
        # Stable table and key order so concurrent writers lock rows consistently
        targets = sorted(folded, key=lambda t: t.table_name)

        attempt = 0
        while True:
            attempt += 1
            try:
                rows = 0
                for target in targets:
                    bucket = folded[target]
                    rows += await increment_counters(
                        db, target, [bucket[key] for key in sorted(bucket)]
                    )
                await db.commit()
                return rows
            except SQLAlchemyError as e:
                await db.rollback()
                if not _is_transient(e):
                    logger.error(f"Rollup batch of {event_count} events failed: {e}", exc_info=True)
                    raise PartialBatchFailure(
                        f"Batch of {event_count} events was rolled back: {e.__class__.__name__}",
                        events=event_count
                    ) from e
                if attempt >= self.max_retries:
                    logger.error(f"Rollup batch gave up after {attempt} attempts: {e}")
                    raise StorageUnavailable(
                        f"Storage unavailable after {attempt} attempts"
                    ) from e
                logger.warning(f"Rollup batch attempt {attempt} hit transient error, retrying: {e}")
                await asyncio.sleep(self.retry_backoff * attempt)
