import random

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from proxystats.core.exceptions import PartialBatchFailure, StorageUnavailable
from proxystats.models.traffic import (
    CountryStats, DeviceDomainStats, DomainStats, HourlyDimStats, HourlyDomainStats, HourlyStats,
    MinuteDimStats, MinuteDomainStats, MinuteStats, ProxyDomainStats, RuleProxyStats, RuleStats,
)
from proxystats.services import traffic_writer as traffic_writer_module
from proxystats.services.traffic_writer import fold_events


async def _rows(db, model, **filters):
    query = select(model)
    for column, value in filters.items():
        query = query.where(getattr(model, column) == value)
    result = await db.execute(query)
    return result.scalars().all()


@pytest.fixture
def example_events(make_event):
    return [
        make_event("2024-01-01T10:00:05", 100, 200, domain="example.com"),
        make_event("2024-01-01T10:00:40", 50, 50, domain="example.com"),
        make_event("2024-01-01T10:01:10", 10, 10, domain="example.com"),
    ]


@pytest.mark.asyncio
async def test_example_domain_scenario(db, writer, example_events):
    await writer.apply_batch(db, 1, example_events)

    minutes = {r.minute: r for r in await _rows(db, MinuteDomainStats, domain="example.com")}
    assert set(minutes) == {"2024-01-01T10:00:00", "2024-01-01T10:01:00"}
    first = minutes["2024-01-01T10:00:00"]
    assert (first.total_upload, first.total_download, first.total_connections) == (150, 250, 2)
    second = minutes["2024-01-01T10:01:00"]
    assert (second.total_upload, second.total_download, second.total_connections) == (10, 10, 1)

    [total] = await _rows(db, DomainStats, domain="example.com")
    assert (total.total_upload, total.total_download, total.total_connections) == (160, 260, 3)

    [hourly] = await _rows(db, HourlyDomainStats, domain="example.com")
    assert hourly.hour == "2024-01-01T10:00:00"
    assert hourly.total_connections == 3

    totals = await _rows(db, MinuteStats)
    assert sum(r.total_upload for r in totals) == 160
    [hour_total] = await _rows(db, HourlyStats)
    assert hour_total.total_download == 260


@pytest.mark.asyncio
async def test_separate_calls_are_additive(db, writer, make_event):
    event = make_event("2024-01-01T10:00:05", 7, 3, domain="a.com", ip="1.1.1.1")
    await writer.apply(db, 1, event)
    await writer.apply(db, 1, event)

    [row] = await _rows(db, DomainStats, domain="a.com")
    assert (row.total_upload, row.total_download, row.total_connections) == (14, 6, 2)


def test_fold_is_order_independent(make_event):
    events = [
        make_event(f"2024-01-01T10:00:{s:02d}", s, 2 * s, domain="a.com", country="de",
                   country_name="Germany" if s % 2 else "Deutschland", continent="Europe")
        for s in range(0, 60, 3)
    ]
    shuffled = list(events)
    random.Random(7).shuffle(shuffled)

    def normalise(folded):
        return {target.table_name: rows for target, rows in folded.items()}

    assert normalise(fold_events(1, events)) == normalise(fold_events(1, shuffled))


@pytest.mark.asyncio
async def test_same_bucket_batch_yields_one_row(db, writer, make_event):
    events = [make_event("2024-01-01T10:00:%02d" % i, 1, 2, domain="a.com") for i in range(10)]
    random.Random(1).shuffle(events)
    await writer.apply_batch(db, 1, events)

    [row] = await _rows(db, MinuteDomainStats, domain="a.com")
    assert (row.total_upload, row.total_download, row.total_connections) == (10, 20, 10)


@pytest.mark.asyncio
async def test_empty_keys_are_not_rolled_up(db, writer, make_event):
    await writer.apply(db, 1, make_event("2024-01-01T10:00:05", 5, 5, ip="1.1.1.1"))

    assert await _rows(db, DomainStats) == []
    assert await _rows(db, CountryStats) == []
    assert await _rows(db, DeviceDomainStats) == []
    [total] = await _rows(db, MinuteStats)
    assert total.total_connections == 1


@pytest.mark.asyncio
async def test_pairwise_written_with_dimensions(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 10, 20, source_ip="192.168.1.2", domain="a.com",
                   chain="Relay > Exit", rule="DOMAIN-SUFFIX,a.com"),
        make_event("2024-01-01T10:05:00", 1, 2, source_ip="192.168.1.2", domain="a.com",
                   chain="Relay > Exit", rule="DOMAIN-SUFFIX,a.com"),
    ])

    [pair] = await _rows(db, DeviceDomainStats, source_ip="192.168.1.2", domain="a.com")
    assert (pair.total_upload, pair.total_connections) == (11, 2)
    [proxy_pair] = await _rows(db, ProxyDomainStats, chain="Relay > Exit")
    assert proxy_pair.domain == "a.com"
    [rule_pair] = await _rows(db, RuleProxyStats, rule="DOMAIN-SUFFIX,a.com")
    assert rule_pair.chain == "Relay > Exit"
    [rule] = await _rows(db, RuleStats)
    assert rule.final_proxy == "Exit"


@pytest.mark.asyncio
async def test_backends_are_isolated(db, writer, make_event):
    await writer.apply(db, 1, make_event("2024-01-01T10:00:05", 1, 1, domain="a.com"))
    await writer.apply(db, 2, make_event("2024-01-01T10:00:05", 5, 5, domain="a.com"))

    rows = {r.backend_id: r.total_upload for r in await _rows(db, DomainStats)}
    assert rows == {1: 1, 2: 5}


@pytest.mark.asyncio
async def test_country_attributes_follow_latest_event(db, writer, make_event):
    await writer.apply(db, 1, make_event("2024-01-01T10:00:05", 1, 1, ip="1.1.1.1",
                                         country="de", country_name="Germany", continent="Europe"))
    await writer.apply(db, 1, make_event("2024-01-01T10:03:05", 1, 1, ip="1.1.1.1",
                                         country="DE", country_name="Deutschland", continent="Europe"))

    [row] = await _rows(db, CountryStats)
    assert row.country == "DE"
    assert row.country_name == "Deutschland"
    assert row.total_connections == 2


@pytest.mark.asyncio
async def test_lock_contention_exhausts_retries(db, writer, make_event, monkeypatch):
    calls = []

    async def locked(*args, **kwargs):
        calls.append(1)
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(traffic_writer_module, "increment_counters", locked)

    with pytest.raises(StorageUnavailable):
        await writer.apply(db, 1, make_event("2024-01-01T10:00:05", 1, 1, domain="a.com"))
    assert len(calls) == writer.max_retries


@pytest.mark.asyncio
async def test_non_transient_failure_rolls_back_whole_batch(db, writer, make_event, monkeypatch):
    real = traffic_writer_module.increment_counters

    async def fail_on_pairs(db_, target, rows):
        if target.table_name == "proxy_domain_stats":
            raise IntegrityError("INSERT", {}, Exception("constraint failed"))
        return await real(db_, target, rows)

    monkeypatch.setattr(traffic_writer_module, "increment_counters", fail_on_pairs)

    with pytest.raises(PartialBatchFailure) as exc_info:
        await writer.apply(db, 1, make_event("2024-01-01T10:00:05", 1, 1,
                                             domain="a.com", chain="Exit"))
    assert exc_info.value.events == 1

    assert await _rows(db, DomainStats) == []
    assert await _rows(db, MinuteStats) == []


@pytest.mark.asyncio
async def test_facts_keep_every_dimension_per_bucket(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 10, 1, source_ip="10.0.0.2", domain="a.com",
                   ip="1.1.1.1", chain="HK > Exit", rule="Match"),
        make_event("2024-01-01T10:00:50", 5, 1, source_ip="10.0.0.2", domain="a.com",
                   ip="1.1.1.1", chain="HK > Exit", rule="Match"),
        make_event("2024-01-01T10:30:00", 1, 1, source_ip="10.0.0.2", domain="a.com",
                   ip="1.1.1.1", chain="SG", rule="Match"),
        make_event("2024-01-01T10:40:00", 7, 0),
    ])

    minutes = await _rows(db, MinuteDimStats)
    assert sorted((r.minute, r.chain, r.total_upload) for r in minutes) == [
        ("2024-01-01T10:00:00", "HK > Exit", 15),
        ("2024-01-01T10:30:00", "SG", 1),
    ]
    hours = await _rows(db, HourlyDimStats, chain="HK > Exit")
    [hour] = hours
    assert (hour.hour, hour.source_ip, hour.rule, hour.total_connections) == (
        "2024-01-01T10:00:00", "10.0.0.2", "Match", 2
    )
