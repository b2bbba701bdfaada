"""Application configuration"""
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import validator


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "ProxyStats"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/proxystats.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_BUSY_TIMEOUT_MS: int = 5000

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_DB: int = 1

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/2"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/3"

    # Access tokens (admin endpoints / ingest collaborator)
    ADMIN_TOKEN: Optional[str] = None
    INGEST_TOKEN: Optional[str] = None

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    @validator("CORS_ORIGINS", pre=True)
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # Rollup writer
    WRITER_MAX_RETRIES: int = 3
    WRITER_RETRY_BACKOFF: float = 0.2  # seconds, multiplied by attempt number
    INGEST_MAX_PENDING: int = 8

    # Query routing: windows longer than this are served from hourly rollups
    MINUTE_RESOLUTION_MAX_HOURS: int = 6

    # GeoIP
    GEOIP_LOOKUP_PROVIDER: Optional[str] = None
    GEOIP_MMDB_DIR: Optional[str] = None
    GEOIP_ONLINE_API_URL: Optional[str] = None
    GEOIP_READINESS_TTL: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
