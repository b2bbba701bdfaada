import pytest
from sqlalchemy import select

from proxystats.core.config import settings
from proxystats.models.geoip import GeoIPCache
from proxystats.schemas.config import GeoLookupConfigUpdate, GeoLookupProviderEnum
from proxystats.schemas.traffic import GeoIPCacheEntry
from proxystats.services.geoip_service import (
    REQUIRED_MMDB_FILES, GeoIPReadinessCache, GeoIPService, resolve_mmdb_dir,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mmdb_dir(tmp_path, monkeypatch):
    directory = tmp_path / "geoip"
    directory.mkdir()
    monkeypatch.setattr(settings, "GEOIP_MMDB_DIR", str(directory))
    monkeypatch.setattr(settings, "GEOIP_LOOKUP_PROVIDER", None)
    monkeypatch.setattr(settings, "GEOIP_ONLINE_API_URL", None)
    return directory


def test_missing_directory_reports_all_files(tmp_path, clock):
    cache = GeoIPReadinessCache(ttl=5, clock=clock)
    readiness = cache.check(str(tmp_path / "nope"))
    assert readiness.missing_files == list(REQUIRED_MMDB_FILES)
    assert not readiness.ready


def test_result_is_cached_until_ttl(mmdb_dir, clock):
    cache = GeoIPReadinessCache(ttl=5, clock=clock)
    assert len(cache.check(str(mmdb_dir)).missing_files) == 2

    for name in REQUIRED_MMDB_FILES:
        (mmdb_dir / name).write_bytes(b"")

    clock.now += 4
    assert len(cache.check(str(mmdb_dir)).missing_files) == 2

    clock.now += 2
    assert cache.check(str(mmdb_dir)).ready


def test_different_directory_is_rechecked(tmp_path, clock):
    ready_dir = tmp_path / "ready"
    ready_dir.mkdir()
    for name in REQUIRED_MMDB_FILES:
        (ready_dir / name).write_bytes(b"")

    cache = GeoIPReadinessCache(ttl=60, clock=clock)
    assert not cache.check(str(tmp_path)).ready
    assert cache.check(str(ready_dir)).ready


def test_resolve_prefers_env_dir(mmdb_dir, tmp_path):
    assert resolve_mmdb_dir(cwd=str(tmp_path)) == str(mmdb_dir)


def test_resolve_falls_back_to_candidates(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "GEOIP_MMDB_DIR", None)
    (tmp_path / "geo").mkdir()
    assert resolve_mmdb_dir(cwd=str(tmp_path)) == str(tmp_path / "geo")


@pytest.mark.asyncio
async def test_local_provider_degrades_when_files_missing(db, mmdb_dir, clock):
    cache = GeoIPReadinessCache(ttl=5, clock=clock)

    config = await GeoIPService.get_lookup_config(db, cache)
    assert config["provider"] == "online"
    assert config["online_api_url"] == "https://api.ipinfo.es/ipinfo"
    assert config["local_mmdb_ready"] is False

    with pytest.raises(ValueError):
        await GeoIPService.update_lookup_config(
            db, cache, GeoLookupConfigUpdate(provider=GeoLookupProviderEnum.LOCAL)
        )

    for name in REQUIRED_MMDB_FILES:
        (mmdb_dir / name).write_bytes(b"")
    cache.invalidate()

    config = await GeoIPService.update_lookup_config(
        db, cache, GeoLookupConfigUpdate(provider=GeoLookupProviderEnum.LOCAL)
    )
    assert config["effective_provider"] == "local"

    (mmdb_dir / "GeoLite2-ASN.mmdb").unlink()
    clock.now += 10
    config = await GeoIPService.get_lookup_config(db, cache)
    assert config["configured_provider"] == "local"
    assert config["effective_provider"] == "online"
    assert config["missing_mmdb_files"] == ["GeoLite2-ASN.mmdb"]


@pytest.mark.asyncio
async def test_env_overrides_stored_settings(db, mmdb_dir, clock, monkeypatch):
    cache = GeoIPReadinessCache(ttl=5, clock=clock)
    await GeoIPService.update_lookup_config(
        db, cache, GeoLookupConfigUpdate(online_api_url="https://geo.example.com/lookup")
    )
    assert (await GeoIPService.get_lookup_config(db, cache))["online_api_url"] == "https://geo.example.com/lookup"

    monkeypatch.setattr(settings, "GEOIP_ONLINE_API_URL", "https://env.example.com")
    assert (await GeoIPService.get_lookup_config(db, cache))["online_api_url"] == "https://env.example.com"


def test_online_url_must_be_http():
    with pytest.raises(ValueError):
        GeoLookupConfigUpdate(online_api_url="ftp://geo.example.com")


@pytest.mark.asyncio
async def test_upsert_cache_refreshes_entries(db):
    await GeoIPService.upsert_cache(db, [GeoIPCacheEntry(ip="1.1.1.1", country="au")])
    written = await GeoIPService.upsert_cache(db, [
        GeoIPCacheEntry(ip="1.1.1.1", country="AU", country_name="Australia"),
        GeoIPCacheEntry(ip="8.8.8.8", country="US"),
    ])
    assert written == 2

    rows = {r.ip: r for r in (await db.execute(select(GeoIPCache))).scalars().all()}
    assert rows["1.1.1.1"].country_name == "Australia"
    assert rows["8.8.8.8"].country == "US"
