from datetime import datetime

import pytest

from proxystats.services.chain_service import ChainService, aggregate_by_first_hop, expand_chain_labels
from proxystats.services.dimensions import first_hop, terminal_hop
from proxystats.services.rollup_router import RollupRouter


def test_terminal_hop():
    assert terminal_hop("Entry > Relay > Exit") == "Exit"
    assert terminal_hop("DIRECT") == "DIRECT"
    assert terminal_hop("") == ""


def test_expand_chain_labels():
    full = ["HK > JP-Exit", "SG > JP-Exit", "US-Exit"]
    assert expand_chain_labels(["JP-Exit"], full) == ["HK > JP-Exit", "SG > JP-Exit"]
    assert expand_chain_labels(["US-Exit", "REJECT"], full) == ["REJECT", "US-Exit"]
    assert expand_chain_labels(["SG > JP-Exit"], full) == ["SG > JP-Exit"]
    assert expand_chain_labels(["", "JP-Exit", "JP-Exit"], []) == ["JP-Exit"]


@pytest.mark.asyncio
async def test_rule_rows_carry_expanded_chains(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 1, 1, rule="Match", chain="HK > JP-Exit", domain="a.com"),
        make_event("2024-01-01T10:00:06", 1, 1, rule="Match", chain="SG > JP-Exit", domain="b.com"),
    ])

    result = await RollupRouter.top(db, 1, "rule")
    items = await ChainService.attach_rule_chains(db, 1, result["items"])
    [rule] = items
    assert rule["final_proxy"] == "JP-Exit"
    assert rule["chains"] == ["HK > JP-Exit", "SG > JP-Exit"]


@pytest.mark.asyncio
async def test_proxy_breakdown_matches_chain_prefix(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 10, 0, chain="HK > JP-Exit", domain="a.com"),
        make_event("2024-01-01T10:00:06", 5, 0, chain="HK", domain="a.com"),
        make_event("2024-01-01T10:00:07", 30, 0, chain="HK > US-Exit", domain="b.com"),
        make_event("2024-01-01T10:00:08", 99, 0, chain="HKG", domain="c.com"),
    ])

    result = await ChainService.get_breakdown(db, 1, "proxy_domain", "HK")
    assert result["resolution"] == "cumulative"
    assert [(i["domain"], i["total_upload"]) for i in result["items"]] == [("b.com", 30), ("a.com", 15)]
    assert result["items"][1]["total_connections"] == 2


@pytest.mark.asyncio
async def test_device_breakdown(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 10, 0, source_ip="10.0.0.2", ip="1.1.1.1"),
        make_event("2024-01-01T10:00:06", 20, 0, source_ip="10.0.0.2", ip="8.8.8.8"),
        make_event("2024-01-01T10:00:07", 99, 0, source_ip="10.0.0.3", ip="8.8.8.8"),
    ])

    result = await ChainService.get_breakdown(db, 1, "device_ip", "10.0.0.2")
    assert [i["ip"] for i in result["items"]] == ["8.8.8.8", "1.1.1.1"]


def test_first_hop():
    assert first_hop("Entry > Relay > Exit") == "Entry"
    assert first_hop("DIRECT") == "DIRECT"
    assert first_hop("") == ""


def test_aggregate_by_first_hop():
    rows = [
        {"chain": "HK > JP-Exit", "total_upload": 10, "total_download": 0,
         "total_connections": 1, "last_seen": "2024-01-01T10:00:00"},
        {"chain": "US", "total_upload": 15, "total_download": 0,
         "total_connections": 4, "last_seen": "2024-01-01T09:00:00"},
        {"chain": "HK > SG-Exit", "total_upload": 7, "total_download": 3,
         "total_connections": 2, "last_seen": "2024-01-01T11:00:00"},
    ]

    merged = aggregate_by_first_hop(rows)

    assert [(m["chain"], m["total_upload"] + m["total_download"]) for m in merged] == [("HK", 20), ("US", 15)]
    hk = merged[0]
    assert hk["total_connections"] == 3
    assert hk["last_seen"] == "2024-01-01T11:00:00"
    assert hk["chains"] == ["HK > JP-Exit", "HK > SG-Exit"]


@pytest.mark.asyncio
async def test_proxy_stats_grouped_by_first_hop(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 10, 0, chain="HK > JP-Exit"),
        make_event("2024-01-01T10:00:06", 20, 0, chain="HK > US-Exit"),
        make_event("2024-01-01T10:00:07", 25, 0, chain="SG"),
    ])

    result = await ChainService.get_proxy_stats(db, 1)
    assert [(i["chain"], i["total_upload"]) for i in result["items"]] == [("HK", 30), ("SG", 25)]

    windowed = await ChainService.get_proxy_stats(
        db, 1, datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11), limit=1
    )
    assert windowed["resolution"] == "minute"
    [top] = windowed["items"]
    assert top["chains"] == ["HK > JP-Exit", "HK > US-Exit"]


@pytest.mark.asyncio
async def test_windowed_breakdown_excludes_traffic_outside_window(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T00:00:00", 100, 0, source_ip="192.168.1.2", domain="old.com"),
        make_event("2024-06-01T10:30:00", 40, 2, source_ip="192.168.1.2", domain="new.com"),
    ])

    window = (datetime(2024, 6, 1, 10), datetime(2024, 6, 1, 11))
    result = await ChainService.get_breakdown(db, 1, "device_domain", "192.168.1.2", *window)
    assert result["resolution"] == "minute"
    [item] = result["items"]
    assert (item["domain"], item["total_upload"], item["total_download"]) == ("new.com", 40, 2)
    assert item["last_seen"] == "2024-06-01T10:30:00"

    empty = (datetime(2024, 6, 2, 10), datetime(2024, 6, 2, 11))
    assert (await ChainService.get_breakdown(db, 1, "device_domain", "192.168.1.2", *empty))["items"] == []

    cumulative = await ChainService.get_breakdown(db, 1, "device_domain", "192.168.1.2")
    assert [i["domain"] for i in cumulative["items"]] == ["old.com", "new.com"]


@pytest.mark.asyncio
async def test_long_window_breakdown_reads_hourly_facts(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T08:10:00", 10, 0, chain="HK > JP-Exit", ip="1.1.1.1"),
        make_event("2024-01-01T20:50:00", 5, 0, chain="HK", ip="1.1.1.1"),
        make_event("2024-01-01T21:00:00", 99, 0, chain="SG", ip="1.1.1.1"),
    ])

    result = await ChainService.get_breakdown(
        db, 1, "proxy_ip", "HK", datetime(2024, 1, 1), datetime(2024, 1, 2)
    )
    assert result["resolution"] == "hourly"
    [item] = result["items"]
    assert (item["ip"], item["total_upload"], item["total_connections"]) == ("1.1.1.1", 15, 2)
    assert item["last_seen"] == "2024-01-01T20:00:00"


@pytest.mark.asyncio
async def test_windowed_rule_breakdown(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 10, 0, rule="Match", chain="HK > JP-Exit"),
        make_event("2024-01-01T12:00:05", 50, 0, rule="Match", chain="SG > JP-Exit"),
    ])

    result = await ChainService.get_breakdown(
        db, 1, "rule_proxy", "Match", datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11)
    )
    assert [i["chain"] for i in result["items"]] == ["HK > JP-Exit"]


@pytest.mark.asyncio
async def test_windowed_device_breakdown_carries_rules_and_chains(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 10, 0, source_ip="10.0.0.2", domain="a.com",
                   rule="Match", chain="HK > JP-Exit"),
        make_event("2024-01-01T10:00:06", 10, 0, source_ip="10.0.0.2", domain="a.com",
                   rule="DOMAIN,a.com", chain="US-Exit"),
        make_event("2024-01-01T10:00:07", 5, 0, source_ip="10.0.0.2", domain="b.com"),
        make_event("2024-01-01T10:00:08", 99, 0, source_ip="10.0.0.3", domain="a.com",
                   rule="Other", chain="SG"),
    ])

    result = await ChainService.get_breakdown(
        db, 1, "device_domain", "10.0.0.2", datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11)
    )
    a, b = result["items"]
    assert a["domain"] == "a.com"
    assert a["rules"] == ["DOMAIN,a.com", "Match"]
    assert a["chains"] == ["HK > JP-Exit", "US-Exit"]
    assert (b["domain"], b["rules"], b["chains"]) == ("b.com", [], [])

    cumulative = await ChainService.get_breakdown(db, 1, "device_domain", "10.0.0.2")
    assert all(i["rules"] == [] and i["chains"] == [] for i in cumulative["items"])


@pytest.mark.asyncio
async def test_chain_prefix_treats_wildcards_literally(db, writer, make_event):
    await writer.apply_batch(db, 1, [
        make_event("2024-01-01T10:00:05", 10, 0, chain="my_proxy > Exit", domain="a.com"),
        make_event("2024-01-01T10:00:06", 20, 0, chain="myXproxy > Exit", domain="b.com"),
        make_event("2024-01-01T10:00:07", 30, 0, chain="100%x > Exit", domain="c.com"),
    ])

    result = await ChainService.get_breakdown(db, 1, "proxy_domain", "my_proxy")
    assert [i["domain"] for i in result["items"]] == ["a.com"]

    result = await ChainService.get_breakdown(
        db, 1, "proxy_domain", "my_proxy", datetime(2024, 1, 1, 10), datetime(2024, 1, 1, 11)
    )
    assert [i["domain"] for i in result["items"]] == ["a.com"]

    result = await ChainService.get_breakdown(db, 1, "proxy_domain", "100%")
    assert result["items"] == []
