from proxystats.models.config import AppConfig
from proxystats.models.geoip import GeoIPCache
from proxystats.models.traffic import (
    DomainStats, IPStats, CountryStats, DeviceStats, ProxyStats, RuleStats,
    MinuteStats, MinuteDomainStats, MinuteIPStats, MinuteCountryStats,
    MinuteDeviceStats, MinuteProxyStats, MinuteRuleStats, MinuteDimStats,
    HourlyStats, HourlyDomainStats, HourlyIPStats, HourlyCountryStats,
    HourlyDeviceStats, HourlyProxyStats, HourlyRuleStats, HourlyDimStats,
    DeviceDomainStats, DeviceIPStats, ProxyDomainStats, ProxyIPStats, RuleProxyStats,
)
