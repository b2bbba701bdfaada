"""API dependencies"""
import hmac
from typing import Optional
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from proxystats.core.config import settings
from proxystats.services.geoip_service import GeoIPReadinessCache
from proxystats.services.traffic_writer import TrafficWriter

# Allow missing token for debug mode handling
security = HTTPBearer(auto_error=False)


def _token_matches(expected: str, given: Optional[str]) -> bool:
    if not given:
        return False
    return hmac.compare_digest(expected.encode(), given.encode())


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> None:
    """Guard for destructive / configuration endpoints"""
    if not settings.ADMIN_TOKEN:
        # No token configured: open only in DEBUG mode
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API is disabled: ADMIN_TOKEN is not configured"
        )

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not _token_matches(settings.ADMIN_TOKEN, credentials.credentials):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_ingest_token(
    x_ingest_token: Optional[str] = Header(None)
) -> None:
    """Guard for the collector-facing internal API"""
    if not settings.INGEST_TOKEN:
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Ingest API is disabled: INGEST_TOKEN is not configured"
        )

    if not x_ingest_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token"
        )

    if not _token_matches(settings.INGEST_TOKEN, x_ingest_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token"
        )


def get_traffic_writer(request: Request) -> TrafficWriter:
    return request.app.state.traffic_writer


def get_geoip_readiness(request: Request) -> GeoIPReadinessCache:
    return request.app.state.geoip_readiness
