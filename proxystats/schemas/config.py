"""Retention and GeoIP configuration schemas"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, validator


class RetentionConfig(BaseModel):
    """Schema for retention config response"""
    connection_logs_days: int
    hourly_stats_days: int
    auto_cleanup: bool


class RetentionConfigUpdate(BaseModel):
    """Schema for retention config update"""
    connection_logs_days: Optional[int] = Field(None, ge=1, le=90)
    hourly_stats_days: Optional[int] = Field(None, ge=7, le=365)
    auto_cleanup: Optional[bool] = None


class CleanupRequest(BaseModel):
    """Schema for cleanup request; days=0 wipes everything in scope"""
    days: int = Field(..., ge=0, le=36500)
    backend_id: Optional[int] = None


class CleanupResponse(BaseModel):
    message: str
    backend_id: Optional[int] = None
    days: int
    deleted: dict
    vacuumed: bool


class CleanupStats(BaseModel):
    connection_logs_count: int
    hourly_stats_count: int
    oldest_connection_log: Optional[str] = None
    oldest_hourly_stat: Optional[str] = None


class DatabaseStats(BaseModel):
    size: int
    cleanup: CleanupStats


class GeoLookupProviderEnum(str, Enum):
    """GeoIP lookup provider enum"""
    ONLINE = "online"
    LOCAL = "local"


class GeoLookupConfig(BaseModel):
    """Schema for GeoIP lookup config response"""
    provider: GeoLookupProviderEnum
    configured_provider: GeoLookupProviderEnum
    effective_provider: GeoLookupProviderEnum
    mmdb_dir: str
    online_api_url: str
    local_mmdb_ready: bool
    missing_mmdb_files: List[str]
    checked_at: Optional[datetime] = None


class GeoLookupConfigUpdate(BaseModel):
    """Schema for GeoIP lookup config update"""
    provider: Optional[GeoLookupProviderEnum] = None
    online_api_url: Optional[str] = None

    @validator("online_api_url")
    def validate_online_api_url(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not (v.startswith("http://") or v.startswith("https://")) or len(v) <= len("https://"):
            raise ValueError("online_api_url must be a valid http/https URL")
        return v
