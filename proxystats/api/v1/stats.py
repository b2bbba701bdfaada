"""Traffic statistics API endpoints"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.core.database import get_db
from proxystats.services.chain_service import ChainService
from proxystats.services.country_service import CountryService
from proxystats.services.rollup_router import RollupRouter

router = APIRouter()


async def _top(db: AsyncSession, backend_id: int, dimension: str, start, end, limit):
    return await RollupRouter.top(db, backend_id, dimension, start, end, limit)


@router.get("/{backend_id}/domains")
async def get_domains(
    backend_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Top domains by traffic"""
    return await _top(db, backend_id, "domain", start, end, limit)


@router.get("/{backend_id}/ips")
async def get_ips(
    backend_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Top destination IPs by traffic"""
    return await _top(db, backend_id, "ip", start, end, limit)


@router.get("/{backend_id}/countries")
async def get_countries(
    backend_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Top destination countries; windowed queries may fall back to IP geo or totals"""
    return await CountryService.get_country_stats(db, backend_id, start, end, limit)


@router.get("/{backend_id}/devices")
async def get_devices(
    backend_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    return await _top(db, backend_id, "device", start, end, limit)


@router.get("/{backend_id}/proxies")
async def get_proxies(
    backend_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Proxy chains rolled up by first hop"""
    return await ChainService.get_proxy_stats(db, backend_id, start, end, limit)


@router.get("/{backend_id}/rules")
async def get_rules(
    backend_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Top rules; each row carries the full chains behind its final proxy"""
    result = await _top(db, backend_id, "rule", start, end, limit)
    await ChainService.attach_rule_chains(db, backend_id, result["items"])
    return result


@router.get("/{backend_id}/devices/{source_ip}/domains")
async def get_device_domains(
    backend_id: int,
    source_ip: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    return await ChainService.get_breakdown(
        db, backend_id, "device_domain", source_ip, start, end, limit
    )


@router.get("/{backend_id}/devices/{source_ip}/ips")
async def get_device_ips(
    backend_id: int,
    source_ip: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    return await ChainService.get_breakdown(
        db, backend_id, "device_ip", source_ip, start, end, limit
    )


@router.get("/{backend_id}/proxies/domains")
async def get_proxy_domains(
    backend_id: int,
    chain: str = Query(..., min_length=1),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Domains routed through a chain (or any longer chain starting with it)"""
    return await ChainService.get_breakdown(
        db, backend_id, "proxy_domain", chain, start, end, limit
    )


@router.get("/{backend_id}/proxies/ips")
async def get_proxy_ips(
    backend_id: int,
    chain: str = Query(..., min_length=1),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    return await ChainService.get_breakdown(
        db, backend_id, "proxy_ip", chain, start, end, limit
    )


@router.get("/{backend_id}/rules/{rule}/proxies")
async def get_rule_proxies(
    backend_id: int,
    rule: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    return await ChainService.get_breakdown(
        db, backend_id, "rule_proxy", rule, start, end, limit
    )


@router.get("/{backend_id}/trend")
async def get_trend(
    backend_id: int,
    start: datetime,
    end: datetime,
    bucket_minutes: int = Query(1, ge=1, le=1440),
    dimension: Optional[str] = None,
    key: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """
    Traffic time series for a window.

    With ``dimension`` (and optionally ``key``) the series is restricted to
    that dimension's rollups.
    """
    try:
        return await RollupRouter.query(
            db, backend_id, dimension, start, end, bucket_minutes=bucket_minutes, key=key
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{backend_id}/traffic")
async def get_traffic(
    backend_id: int,
    start: datetime,
    end: datetime,
    db: AsyncSession = Depends(get_db)
):
    """Total upload / download / connections for a window"""
    return await RollupRouter.traffic_in_range(db, backend_id, start, end)
