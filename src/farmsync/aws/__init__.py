"""S3 helpers: region resolution, proxy policy, clients and the transfer cache."""

from farmsync.aws.proxy import ProxyRule, proxies_for, should_proxy
from farmsync.aws.regions import (
    DEFAULT_REGION_NAME,
    Endpoint,
    RegionResolver,
    RegionSource,
    ResolvedRegion,
)
from farmsync.aws.transfer_cache import ClientKey, TransferClientCache, TransferClientEntry

__all__ = [
    "ClientKey",
    "DEFAULT_REGION_NAME",
    "Endpoint",
    "ProxyRule",
    "RegionResolver",
    "RegionSource",
    "ResolvedRegion",
    "TransferClientCache",
    "TransferClientEntry",
    "proxies_for",
    "should_proxy",
]
