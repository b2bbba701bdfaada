"""Traffic rollup models.

Every rollup row shares the same counter shape. Tables come in three
resolutions per dimension (cumulative, minute, hourly), plus dimension-less
totals per bucket, per-bucket dimension facts and cumulative pairwise
breakdowns.
"""
from sqlalchemy import Column, Integer, String, DateTime, BigInteger, UniqueConstraint, Index

from proxystats.core.database import Base


class CounterMixin:
    """Columns shared by every rollup table"""

    id = Column(Integer, primary_key=True)
    backend_id = Column(Integer, nullable=False, index=True)

    total_upload = Column(BigInteger, nullable=False, default=0)
    total_download = Column(BigInteger, nullable=False, default=0)
    total_connections = Column(BigInteger, nullable=False, default=0)

    # Latest event timestamp folded into the row
    last_seen = Column(DateTime, nullable=True)


class MinuteBucketMixin:
    minute = Column(String(19), nullable=False, index=True)


class HourBucketMixin:
    hour = Column(String(19), nullable=False, index=True)


# ---------------------------------------------------------------------------
# Cumulative rollups (all-time totals per key)
# ---------------------------------------------------------------------------

class DomainStats(CounterMixin, Base):
    __tablename__ = "domain_stats"

    domain = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "domain", name="uq_domain_stats"),
    )


class IPStats(CounterMixin, Base):
    __tablename__ = "ip_stats"

    ip = Column(String(45), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "ip", name="uq_ip_stats"),
    )


class CountryStats(CounterMixin, Base):
    __tablename__ = "country_stats"

    country = Column(String(16), nullable=False)
    country_name = Column(String(128), nullable=True)
    continent = Column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("backend_id", "country", name="uq_country_stats"),
    )


class DeviceStats(CounterMixin, Base):
    __tablename__ = "device_stats"

    source_ip = Column(String(45), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "source_ip", name="uq_device_stats"),
    )


class ProxyStats(CounterMixin, Base):
    __tablename__ = "proxy_stats"

    chain = Column(String(512), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "chain", name="uq_proxy_stats"),
    )


class RuleStats(CounterMixin, Base):
    __tablename__ = "rule_stats"

    rule = Column(String(512), nullable=False)
    final_proxy = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("backend_id", "rule", name="uq_rule_stats"),
    )


# ---------------------------------------------------------------------------
# Minute rollups
# ---------------------------------------------------------------------------

class MinuteStats(CounterMixin, MinuteBucketMixin, Base):
    """Dimension-less traffic per minute"""
    __tablename__ = "minute_stats"

    __table_args__ = (
        UniqueConstraint("backend_id", "minute", name="uq_minute_stats"),
    )


class MinuteDomainStats(CounterMixin, MinuteBucketMixin, Base):
    __tablename__ = "minute_domain_stats"

    domain = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "minute", "domain", name="uq_minute_domain_stats"),
    )


class MinuteIPStats(CounterMixin, MinuteBucketMixin, Base):
    __tablename__ = "minute_ip_stats"

    ip = Column(String(45), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "minute", "ip", name="uq_minute_ip_stats"),
    )


class MinuteCountryStats(CounterMixin, MinuteBucketMixin, Base):
    __tablename__ = "minute_country_stats"

    country = Column(String(16), nullable=False)
    country_name = Column(String(128), nullable=True)
    continent = Column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("backend_id", "minute", "country", name="uq_minute_country_stats"),
    )


class MinuteDeviceStats(CounterMixin, MinuteBucketMixin, Base):
    __tablename__ = "minute_device_stats"

    source_ip = Column(String(45), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "minute", "source_ip", name="uq_minute_device_stats"),
    )


class MinuteProxyStats(CounterMixin, MinuteBucketMixin, Base):
    __tablename__ = "minute_proxy_stats"

    chain = Column(String(512), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "minute", "chain", name="uq_minute_proxy_stats"),
    )


class MinuteRuleStats(CounterMixin, MinuteBucketMixin, Base):
    __tablename__ = "minute_rule_stats"

    rule = Column(String(512), nullable=False)
    final_proxy = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("backend_id", "minute", "rule", name="uq_minute_rule_stats"),
    )


# ---------------------------------------------------------------------------
# Hourly rollups (maintained in real time, never derived from minute rows)
# ---------------------------------------------------------------------------

class HourlyStats(CounterMixin, HourBucketMixin, Base):
    """Dimension-less traffic per hour"""
    __tablename__ = "hourly_stats"

    __table_args__ = (
        UniqueConstraint("backend_id", "hour", name="uq_hourly_stats"),
    )


class HourlyDomainStats(CounterMixin, HourBucketMixin, Base):
    __tablename__ = "hourly_domain_stats"

    domain = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "hour", "domain", name="uq_hourly_domain_stats"),
    )


class HourlyIPStats(CounterMixin, HourBucketMixin, Base):
    __tablename__ = "hourly_ip_stats"

    ip = Column(String(45), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "hour", "ip", name="uq_hourly_ip_stats"),
    )


class HourlyCountryStats(CounterMixin, HourBucketMixin, Base):
    __tablename__ = "hourly_country_stats"

    country = Column(String(16), nullable=False)
    country_name = Column(String(128), nullable=True)
    continent = Column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("backend_id", "hour", "country", name="uq_hourly_country_stats"),
    )


class HourlyDeviceStats(CounterMixin, HourBucketMixin, Base):
    __tablename__ = "hourly_device_stats"

    source_ip = Column(String(45), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "hour", "source_ip", name="uq_hourly_device_stats"),
    )


class HourlyProxyStats(CounterMixin, HourBucketMixin, Base):
    __tablename__ = "hourly_proxy_stats"

    chain = Column(String(512), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "hour", "chain", name="uq_hourly_proxy_stats"),
    )


class HourlyRuleStats(CounterMixin, HourBucketMixin, Base):
    __tablename__ = "hourly_rule_stats"

    rule = Column(String(512), nullable=False)
    final_proxy = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("backend_id", "hour", "rule", name="uq_hourly_rule_stats"),
    )


# ---------------------------------------------------------------------------
# Per-bucket facts: every dimension of an event in one row, used for
# windowed breakdowns
# ---------------------------------------------------------------------------

class DimFactMixin:
    domain = Column(String(255), nullable=False, default="")
    ip = Column(String(45), nullable=False, default="")
    source_ip = Column(String(45), nullable=False, default="")
    chain = Column(String(512), nullable=False, default="")
    rule = Column(String(512), nullable=False, default="")


class MinuteDimStats(CounterMixin, MinuteBucketMixin, DimFactMixin, Base):
    __tablename__ = "minute_dim_stats"

    __table_args__ = (
        UniqueConstraint(
            "backend_id", "minute", "domain", "ip", "source_ip", "chain", "rule",
            name="uq_minute_dim_stats"
        ),
        Index("ix_minute_dim_stats_backend_minute_source", "backend_id", "minute", "source_ip"),
    )


class HourlyDimStats(CounterMixin, HourBucketMixin, DimFactMixin, Base):
    __tablename__ = "hourly_dim_stats"

    __table_args__ = (
        UniqueConstraint(
            "backend_id", "hour", "domain", "ip", "source_ip", "chain", "rule",
            name="uq_hourly_dim_stats"
        ),
        Index("ix_hourly_dim_stats_backend_hour_source", "backend_id", "hour", "source_ip"),
    )


# ---------------------------------------------------------------------------
# Pairwise breakdowns (cumulative)
# ---------------------------------------------------------------------------

class DeviceDomainStats(CounterMixin, Base):
    __tablename__ = "device_domain_stats"

    source_ip = Column(String(45), nullable=False)
    domain = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "source_ip", "domain", name="uq_device_domain_stats"),
    )


class DeviceIPStats(CounterMixin, Base):
    __tablename__ = "device_ip_stats"

    source_ip = Column(String(45), nullable=False)
    ip = Column(String(45), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "source_ip", "ip", name="uq_device_ip_stats"),
    )


class ProxyDomainStats(CounterMixin, Base):
    __tablename__ = "proxy_domain_stats"

    chain = Column(String(512), nullable=False)
    domain = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "chain", "domain", name="uq_proxy_domain_stats"),
        Index("ix_proxy_domain_stats_backend_domain", "backend_id", "domain"),
    )


class ProxyIPStats(CounterMixin, Base):
    __tablename__ = "proxy_ip_stats"

    chain = Column(String(512), nullable=False)
    ip = Column(String(45), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "chain", "ip", name="uq_proxy_ip_stats"),
    )


class RuleProxyStats(CounterMixin, Base):
    """Full chains observed per rule, used to expand short chain labels"""
    __tablename__ = "rule_proxy_stats"

    rule = Column(String(512), nullable=False)
    chain = Column(String(512), nullable=False)

    __table_args__ = (
        UniqueConstraint("backend_id", "rule", "chain", name="uq_rule_proxy_stats"),
    )


CUMULATIVE_MODELS = (DomainStats, IPStats, CountryStats, DeviceStats, ProxyStats, RuleStats)
PAIRWISE_MODELS = (DeviceDomainStats, DeviceIPStats, ProxyDomainStats, ProxyIPStats, RuleProxyStats)
MINUTE_MODELS = (
    MinuteStats, MinuteDomainStats, MinuteIPStats, MinuteCountryStats,
    MinuteDeviceStats, MinuteProxyStats, MinuteRuleStats, MinuteDimStats,
)
HOURLY_MODELS = (
    HourlyStats, HourlyDomainStats, HourlyIPStats, HourlyCountryStats,
    HourlyDeviceStats, HourlyProxyStats, HourlyRuleStats, HourlyDimStats,
)
