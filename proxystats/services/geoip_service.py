"""GeoIP lookup settings, local MMDB readiness and the geoip cache"""
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from proxystats.core.config import settings
from proxystats.core.database import dialect_insert
from proxystats.schemas.config import GeoLookupConfigUpdate, GeoLookupProviderEnum
from proxystats.schemas.traffic import GeoIPCacheEntry
from proxystats.models.geoip import GeoIPCache
from proxystats.services.config_service import ConfigService

logger = logging.getLogger(__name__)

REQUIRED_MMDB_FILES = ("GeoLite2-City.mmdb", "GeoLite2-ASN.mmdb")
DEFAULT_MMDB_DIR = "/app/data/geoip"
DEFAULT_ONLINE_API_URL = "https://api.ipinfo.es/ipinfo"

KEY_LOOKUP_PROVIDER = "geoip.lookup_provider"
KEY_ONLINE_API_URL = "geoip.online_api_url"

PROVIDERS = {p.value for p in GeoLookupProviderEnum}


@dataclass(frozen=True)
class GeoIPReadiness:
    required_files: Tuple[str, ...]
    missing_files: List[str] = field(default_factory=list)
    checked_at: Optional[datetime] = None

    @property
    def ready(self) -> bool:
        return not self.missing_files


class GeoIPReadinessCache:
    """
    Short-lived cache of which MMDB files exist in a directory.

    One entry is kept; a different directory or an expired entry triggers a
    fresh filesystem check. Lookups never raise: an unreadable or missing
    directory reports every file as missing.
    """

    def __init__(
        self,
        required_files: Sequence[str] = REQUIRED_MMDB_FILES,
        ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.required_files = tuple(required_files)
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entry: Optional[Tuple[str, float, GeoIPReadiness]] = None

    def check(self, directory: str) -> GeoIPReadiness:
        resolved = os.path.abspath(directory)
        now = self._clock()

        with self._lock:
            if self._entry is not None:
                cached_dir, checked, readiness = self._entry
                if cached_dir == resolved and now - checked < self.ttl:
                    return readiness

            missing = []
            for name in self.required_files:
                try:
                    present = os.path.isfile(os.path.join(resolved, name))
                except OSError:
                    present = False
                if not present:
                    missing.append(name)

            readiness = GeoIPReadiness(
                required_files=self.required_files,
                missing_files=missing,
                checked_at=datetime.utcnow()
            )
            self._entry = (resolved, now, readiness)
            return readiness

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None


def resolve_mmdb_dir(cwd: Optional[str] = None) -> str:
    """First existing candidate directory, GEOIP_MMDB_DIR taking precedence"""
    cwd = cwd or os.getcwd()
    env_dir = (settings.GEOIP_MMDB_DIR or "").strip()
    candidates = [
        env_dir,
        os.path.join(cwd, "geoip"),
        os.path.join(cwd, "geo"),
        os.path.join(cwd, "..", "geoip"),
        os.path.join(cwd, "..", "geo"),
        os.path.join(cwd, "..", "..", "geoip"),
        os.path.join(cwd, "..", "..", "geo"),
        DEFAULT_MMDB_DIR,
    ]

    seen = set()
    for candidate in candidates:
        if not candidate:
            continue
        path = os.path.abspath(candidate)
        if path in seen:
            continue
        seen.add(path)
        if os.path.isdir(path):
            return path

    if env_dir:
        return os.path.abspath(env_dir)
    return DEFAULT_MMDB_DIR


class GeoIPService:
    """Service for GeoIP configuration and cache writes"""

    @staticmethod
    async def get_lookup_config(db: AsyncSession, readiness_cache: GeoIPReadinessCache) -> Dict[str, Any]:
        stored = await ConfigService.get_values(db, [KEY_LOOKUP_PROVIDER, KEY_ONLINE_API_URL])

        env_provider = (settings.GEOIP_LOOKUP_PROVIDER or "").strip()
        if env_provider in PROVIDERS:
            provider = env_provider
        elif stored.get(KEY_LOOKUP_PROVIDER) in PROVIDERS:
            provider = stored[KEY_LOOKUP_PROVIDER]
        else:
            provider = GeoLookupProviderEnum.ONLINE.value

        online_api_url = (
            (settings.GEOIP_ONLINE_API_URL or "").strip()
            or stored.get(KEY_ONLINE_API_URL)
            or DEFAULT_ONLINE_API_URL
        )

        mmdb_dir = resolve_mmdb_dir()
        readiness = readiness_cache.check(mmdb_dir)

        # local without the MMDB files degrades to the online lookup
        effective = provider
        if provider == GeoLookupProviderEnum.LOCAL.value and not readiness.ready:
            effective = GeoLookupProviderEnum.ONLINE.value

        return {
            "provider": provider,
            "configured_provider": provider,
            "effective_provider": effective,
            "mmdb_dir": mmdb_dir,
            "online_api_url": online_api_url,
            "local_mmdb_ready": readiness.ready,
            "missing_mmdb_files": list(readiness.missing_files),
            "checked_at": readiness.checked_at,
        }

    @staticmethod
    async def update_lookup_config(
        db: AsyncSession,
        readiness_cache: GeoIPReadinessCache,
        update: GeoLookupConfigUpdate
    ) -> Dict[str, Any]:
        """
        Persist provider / online URL.

        Raises ValueError when switching to the local provider while required
        MMDB files are missing.
        """
        if update.provider == GeoLookupProviderEnum.LOCAL:
            readiness = readiness_cache.check(resolve_mmdb_dir())
            if not readiness.ready:
                raise ValueError(
                    "Local MMDB is not ready. Missing required files: "
                    + ", ".join(readiness.missing_files)
                )

        values = {}
        if update.provider is not None:
            values[KEY_LOOKUP_PROVIDER] = update.provider.value
        if update.online_api_url is not None:
            values[KEY_ONLINE_API_URL] = update.online_api_url
        await ConfigService.set_values(db, values)

        logger.info(f"GeoIP lookup config updated: {values}")
        return await GeoIPService.get_lookup_config(db, readiness_cache)

    @staticmethod
    async def upsert_cache(db: AsyncSession, entries: List[GeoIPCacheEntry]) -> int:
        """Insert or refresh geoip_cache rows; returns the number written"""
        if not entries:
            return 0

        # Last entry wins for duplicate IPs within one request
        rows = {}
        now = datetime.utcnow()
        for entry in entries:
            row = entry.model_dump()
            row["country"] = row["country"].upper() if row["country"] else None
            row["queried_at"] = now
            rows[entry.ip] = row

        insert = dialect_insert(db)
        stmt = insert(GeoIPCache).values(list(rows.values()))
        stmt = stmt.on_conflict_do_update(
            index_elements=["ip"],
            set_={
                column: getattr(stmt.excluded, column)
                for column in ("country", "country_name", "continent", "city", "asn", "as_name", "queried_at")
            }
        )
        await db.execute(stmt)
        await db.commit()

        logger.debug(f"Upserted {len(rows)} geoip cache entries")
        return len(rows)
