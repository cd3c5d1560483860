"""Resolve region identifiers and S3 service endpoints.

Region identifiers arrive from job configuration written by several
generations of tooling, so the resolver accepts three spellings:

``us-west-2``
    Canonical region names, sourced from botocore's bundled partition data
    plus any extra names configured for S3-compatible stores.
``US_WEST_2``
    Enum-constant names used by older job configurations: the upper-snake
    spelling of every canonical name, plus the ``GovCloud`` alias.
``US_West_2``
    Legacy S3 bucket-location names (``US_Standard``, ``EU_Ireland``, ...).

Resolution is a two stage table lookup (canonical first, then the legacy
translation table) followed by a fallback to the configured default region.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Iterable, Mapping
from urllib.parse import urlsplit

import boto3
import structlog

from farmsync.errors import ConfigurationError

log = structlog.get_logger(__name__)

DEFAULT_REGION_NAME = "us-east-1"

LEGACY_LOCATION_NAMES: Mapping[str, str] = {
    "US_Standard": "us-east-1",
    "US_West": "us-west-1",
    "US_West_2": "us-west-2",
    "US_GovCloud": "us-gov-west-1",
    "EU": "eu-west-1",
    "EU_Ireland": "eu-west-1",
    "EU_Frankfurt": "eu-central-1",
    "AP_Singapore": "ap-southeast-1",
    "AP_Sydney": "ap-southeast-2",
    "AP_Tokyo": "ap-northeast-1",
    "SA_SaoPaulo": "sa-east-1",
    "CN_Beijing": "cn-north-1",
}

LEGACY_ENUM_ALIASES: Mapping[str, str] = {
    "GovCloud": "us-gov-west-1",
}

_PARTITION_DNS_SUFFIXES: Mapping[str, str] = {
    "aws": "amazonaws.com",
    "aws-cn": "amazonaws.com.cn",
    "aws-us-gov": "amazonaws.com",
    "aws-iso": "c2s.ic.gov",
    "aws-iso-b": "sc2s.sgov.gov",
}


class RegionSource(str, Enum):
    """How a region name was obtained."""

    EXPLICIT = "explicit"
    LEGACY = "legacy"
    DEFAULT = "default"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ResolvedRegion:
    """A canonical region name and the route taken to reach it."""

    name: str
    source: RegionSource
    requested: str | None = None

    @property
    def is_default(self) -> bool:
        return self.source in (RegionSource.DEFAULT, RegionSource.FALLBACK)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Endpoint:
    """S3 service endpoint used to build clients for a region."""

    region: str
    url: str
    hostname: str
    custom: bool = False


@lru_cache(maxsize=1)
def _botocore_partitions() -> dict[str, str]:
    """Map every region offering S3 to its partition name."""

    session = boto3.session.Session()
    regions: dict[str, str] = {}
    for partition in session.get_available_partitions():
        for region in session.get_available_regions("s3", partition_name=partition):
            regions.setdefault(region, partition)
    return regions


def botocore_regions() -> frozenset[str]:
    """Return the canonical region names known to botocore."""

    return frozenset(_botocore_partitions())


def enum_constant_name(region: str) -> str:
    """Return the enum-constant spelling of *region* (``us-west-2`` -> ``US_WEST_2``)."""

    return region.upper().replace("-", "_")


def build_legacy_table(canonical: Iterable[str]) -> dict[str, str]:
    """Return the legacy-name translation table for *canonical* regions.

    Only translations whose target exists in *canonical* are kept so the table
    never produces a name the canonical stage would reject.
    """

    known = set(canonical)
    table = {enum_constant_name(name): name for name in known}
    for aliases in (LEGACY_ENUM_ALIASES, LEGACY_LOCATION_NAMES):
        for legacy, name in aliases.items():
            if name in known:
                table[legacy] = name
    return table


class RegionResolver:
    """Turn region identifiers into canonical regions and service endpoints."""

    def __init__(
        self,
        default_region: str = DEFAULT_REGION_NAME,
        *,
        canonical_regions: Iterable[str] | None = None,
        extra_regions: Iterable[str] = (),
    ) -> None:
        if canonical_regions is None:
            canonical = set(botocore_regions())
        else:
            canonical = set(canonical_regions)
        canonical.update(name.strip() for name in extra_regions if name.strip())
        self._canonical = frozenset(canonical)
        self._legacy = build_legacy_table(self._canonical)
        self._default_region = default_region

    @property
    def default_region(self) -> str:
        return self._default_region

    @property
    def canonical_regions(self) -> frozenset[str]:
        return self._canonical

    @property
    def legacy_names(self) -> Mapping[str, str]:
        return dict(self._legacy)

    def lookup(self, identifier: str | None) -> tuple[str, RegionSource] | None:
        """Look *identifier* up in the canonical table, then the legacy table."""

        if not identifier:
            return None
        candidate = identifier.strip()
        if candidate in self._canonical:
            return candidate, RegionSource.EXPLICIT
        translated = self._legacy.get(candidate)
        if translated is not None:
            return translated, RegionSource.LEGACY
        return None

    def resolve(self, identifier: str | None) -> ResolvedRegion:
        """Resolve *identifier* to a canonical region.

        Empty identifiers resolve to the default region. Unknown identifiers
        fall back to the default region with ``RegionSource.FALLBACK`` so
        callers can tell the difference. A default region that cannot be
        resolved raises :class:`ConfigurationError`.
        """

        if identifier and identifier.strip():
            found = self.lookup(identifier)
            if found is not None:
                name, source = found
                return ResolvedRegion(name=name, source=source, requested=identifier)
            log.warning(
                "s3.region.fallback",
                requested=identifier,
                default_region=self._default_region,
            )
            source = RegionSource.FALLBACK
        else:
            source = RegionSource.DEFAULT

        default = self.lookup(self._default_region)
        if default is None:
            raise ConfigurationError(
                f"No region found for name '{identifier}' and default region "
                f"'{self._default_region}'",
                hint="Set FARMSYNC_DEFAULT_REGION to a valid region name.",
                context={"requested": identifier, "default": self._default_region},
            )
        return ResolvedRegion(name=default[0], source=source, requested=identifier)

    def endpoint_for(
        self, region: ResolvedRegion | str, custom_endpoint: str | None = None
    ) -> Endpoint:
        """Return the S3 endpoint for *region*, honouring *custom_endpoint*."""

        name = str(region)
        if custom_endpoint:
            url = custom_endpoint if "://" in custom_endpoint else f"https://{custom_endpoint}"
            hostname = urlsplit(url).hostname
            if not hostname:
                raise ConfigurationError(
                    f"Custom endpoint '{custom_endpoint}' has no hostname",
                    context={"endpoint": custom_endpoint},
                )
            return Endpoint(region=name, url=url, hostname=hostname, custom=True)

        hostname = standard_hostname(name)
        return Endpoint(region=name, url=f"https://{hostname}", hostname=hostname)


def standard_hostname(region: str) -> str:
    """Return the public S3 hostname for *region*."""

    if region == DEFAULT_REGION_NAME:
        return "s3.amazonaws.com"
    partition = _botocore_partitions().get(region, "aws")
    suffix = _PARTITION_DNS_SUFFIXES.get(partition, "amazonaws.com")
    return f"s3.{region}.{suffix}"


__all__ = [
    "DEFAULT_REGION_NAME",
    "Endpoint",
    "LEGACY_ENUM_ALIASES",
    "LEGACY_LOCATION_NAMES",
    "RegionResolver",
    "RegionSource",
    "ResolvedRegion",
    "botocore_regions",
    "build_legacy_table",
    "enum_constant_name",
    "standard_hostname",
]
