from sqlalchemy import Column, String, DateTime
from datetime import datetime

from proxystats.core.database import Base


class GeoIPCache(Base):
    """Best-effort IP to country lookups written by the geo resolver"""
    __tablename__ = "geoip_cache"

    ip = Column(String(45), primary_key=True)
    country = Column(String(16), nullable=True, index=True)
    country_name = Column(String(128), nullable=True)
    continent = Column(String(64), nullable=True)
    city = Column(String(128), nullable=True)
    asn = Column(String(32), nullable=True)
    as_name = Column(String(255), nullable=True)
    queried_at = Column(DateTime, default=datetime.utcnow)
