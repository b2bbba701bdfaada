"""Dimension and breakdown descriptors.

Each descriptor names the tables a dimension is rolled up into and how its
key (plus any display attributes) is extracted from a traffic event. The
writer and the router iterate these descriptors instead of hand-coding
per-dimension statements.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple

from proxystats.models.traffic import (
    DomainStats, IPStats, CountryStats, DeviceStats, ProxyStats, RuleStats,
    MinuteDomainStats, MinuteIPStats, MinuteCountryStats,
    MinuteDeviceStats, MinuteProxyStats, MinuteRuleStats,
    HourlyDomainStats, HourlyIPStats, HourlyCountryStats,
    HourlyDeviceStats, HourlyProxyStats, HourlyRuleStats,
    DeviceDomainStats, DeviceIPStats, ProxyDomainStats, ProxyIPStats, RuleProxyStats,
)
from proxystats.schemas.traffic import TrafficEvent

CHAIN_SEPARATOR = " > "

# Event fields stored together in the per-bucket fact tables
FACT_COLUMNS = ("domain", "ip", "source_ip", "chain", "rule")


def terminal_hop(chain: str) -> str:
    """Last hop of an ``Entry > ... > Exit`` chain string"""
    if not chain:
        return ""
    return chain.rsplit(CHAIN_SEPARATOR, 1)[-1].strip()


def first_hop(chain: str) -> str:
    if not chain:
        return ""
    return chain.split(CHAIN_SEPARATOR, 1)[0].strip()


@dataclass(frozen=True)
class Dimension:
    name: str
    key_column: str
    extract: Callable[[TrafficEvent], str]
    cumulative: type
    minute: type
    hourly: type
    # Display attributes stored alongside the key, refreshed on every write
    attributes: Callable[[TrafficEvent], Dict[str, str]] = field(default=lambda event: {})
    attribute_columns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Breakdown:
    """Two-dimensional rollup (``parent`` -> ``child``); windows read the fact tables"""
    name: str
    model: type
    parent_column: str
    child_column: str
    extract: Callable[[TrafficEvent], Tuple[str, str]]


def _country_attributes(event: TrafficEvent) -> Dict[str, str]:
    return {
        "country_name": event.country_name or event.country,
        "continent": event.continent or "Unknown",
    }


DIMENSIONS: Dict[str, Dimension] = {
    "domain": Dimension(
        name="domain",
        key_column="domain",
        extract=lambda e: e.domain,
        cumulative=DomainStats,
        minute=MinuteDomainStats,
        hourly=HourlyDomainStats,
    ),
    "ip": Dimension(
        name="ip",
        key_column="ip",
        extract=lambda e: e.ip,
        cumulative=IPStats,
        minute=MinuteIPStats,
        hourly=HourlyIPStats,
    ),
    "country": Dimension(
        name="country",
        key_column="country",
        extract=lambda e: e.country.upper(),
        cumulative=CountryStats,
        minute=MinuteCountryStats,
        hourly=HourlyCountryStats,
        attributes=_country_attributes,
        attribute_columns=("country_name", "continent"),
    ),
    "device": Dimension(
        name="device",
        key_column="source_ip",
        extract=lambda e: e.source_ip,
        cumulative=DeviceStats,
        minute=MinuteDeviceStats,
        hourly=HourlyDeviceStats,
    ),
    "proxy": Dimension(
        name="proxy",
        key_column="chain",
        extract=lambda e: e.chain,
        cumulative=ProxyStats,
        minute=MinuteProxyStats,
        hourly=HourlyProxyStats,
    ),
    "rule": Dimension(
        name="rule",
        key_column="rule",
        extract=lambda e: e.rule,
        cumulative=RuleStats,
        minute=MinuteRuleStats,
        hourly=HourlyRuleStats,
        attributes=lambda e: {"final_proxy": terminal_hop(e.chain)},
        attribute_columns=("final_proxy",),
    ),
}


BREAKDOWNS: Dict[str, Breakdown] = {
    "device_domain": Breakdown(
        name="device_domain",
        model=DeviceDomainStats,
        parent_column="source_ip",
        child_column="domain",
        extract=lambda e: (e.source_ip, e.domain),
    ),
    "device_ip": Breakdown(
        name="device_ip",
        model=DeviceIPStats,
        parent_column="source_ip",
        child_column="ip",
        extract=lambda e: (e.source_ip, e.ip),
    ),
    "proxy_domain": Breakdown(
        name="proxy_domain",
        model=ProxyDomainStats,
        parent_column="chain",
        child_column="domain",
        extract=lambda e: (e.chain, e.domain),
    ),
    "proxy_ip": Breakdown(
        name="proxy_ip",
        model=ProxyIPStats,
        parent_column="chain",
        child_column="ip",
        extract=lambda e: (e.chain, e.ip),
    ),
    "rule_proxy": Breakdown(
        name="rule_proxy",
        model=RuleProxyStats,
        parent_column="rule",
        child_column="chain",
        extract=lambda e: (e.rule, e.chain),
    ),
}


def get_dimension(name: str) -> Dimension:
    try:
        return DIMENSIONS[name]
    except KeyError:
        raise ValueError(f"Unknown dimension: {name}")
