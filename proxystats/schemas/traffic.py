"""Traffic event schemas"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class TrafficEvent(BaseModel):
    """One closed (or updated) proxy connection, already enriched by the collector"""
    timestamp: datetime
    source_ip: str = ""
    ip: str = ""
    domain: str = ""
    chain: str = ""
    rule: str = ""
    upload: int = Field(0, ge=0)
    download: int = Field(0, ge=0)

    # Optional geo enrichment of the destination IP
    country: str = ""
    country_name: str = ""
    continent: str = ""


class TrafficBatch(BaseModel):
    """Schema for a batch of traffic events from one backend"""
    events: List[TrafficEvent] = Field(..., max_length=50000)


class IngestResult(BaseModel):
    """Schema for ingest response"""
    backend_id: int
    events: int
    rows: int


class GeoIPCacheEntry(BaseModel):
    """Resolved geo information for one IP"""
    ip: str = Field(..., min_length=1, max_length=45)
    country: Optional[str] = None
    country_name: Optional[str] = None
    continent: Optional[str] = None
    city: Optional[str] = None
    asn: Optional[str] = None
    as_name: Optional[str] = None


class GeoIPCacheBatch(BaseModel):
    entries: List[GeoIPCacheEntry]
