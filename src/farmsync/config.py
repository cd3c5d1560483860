"""Configuration loader for farmsync agents and coordinators.

The settings model reads the following environment variables (optionally from a
``.env`` file when running locally):

``FARMSYNC_DEFAULT_REGION``
    Region used when a request carries no region, or one that cannot be
    resolved. Defaults to ``us-east-1``.
``FARMSYNC_S3_ENDPOINT`` / ``PLUGIN_S3_ENDPOINT``
    Custom endpoint for S3-compatible stores (MinIO, Ceph, ...).
``FARMSYNC_EXTRA_REGIONS``
    Comma separated region names accepted in addition to the AWS partitions.
``FARMSYNC_ACCESS_KEY`` / ``FARMSYNC_SECRET_KEY`` / ``FARMSYNC_USE_ROLE``
    Static credentials, or ``true`` to rely on the instance role instead.
``FARMSYNC_PROXY_HOST`` / ``FARMSYNC_PROXY_PORT`` / ``FARMSYNC_PROXY_USERNAME``
/ ``FARMSYNC_PROXY_PASSWORD`` / ``FARMSYNC_NO_PROXY``
    Outbound HTTP(S) proxy. ``FARMSYNC_NO_PROXY`` holds regular expressions
    separated by commas or whitespace.
``FARMSYNC_UPLOAD_TIMEOUT`` / ``FARMSYNC_REGISTRY_RETENTION``
    Seconds to wait for an upload barrier, and seconds a finished workspace
    stays in the registry before it can be pruned. A non-zero retention must
    be at least the upload timeout: a waiter arriving after its workspace was
    pruned would block until its deadline instead of returning at once.
"""

from __future__ import annotations

import re
from datetime import timedelta

from pydantic import AliasChoices, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from farmsync.aws.proxy import ProxyRule
from farmsync.aws.regions import DEFAULT_REGION_NAME, RegionResolver

_LIST_SEPARATOR = re.compile(r"[\s,]+")


def _split(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item for item in _LIST_SEPARATOR.split(value.strip()) if item)


class FarmSyncSettings(BaseSettings):
    default_region: str = Field(
        default=DEFAULT_REGION_NAME,
        validation_alias=AliasChoices("FARMSYNC_DEFAULT_REGION", "default_region"),
    )
    s3_endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "FARMSYNC_S3_ENDPOINT", "PLUGIN_S3_ENDPOINT", "s3_endpoint"
        ),
    )
    extra_regions: str = Field(
        default="",
        validation_alias=AliasChoices("FARMSYNC_EXTRA_REGIONS", "extra_regions"),
    )

    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FARMSYNC_ACCESS_KEY", "access_key"),
    )
    secret_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("FARMSYNC_SECRET_KEY", "secret_key"),
    )
    use_role: bool = Field(
        default=False,
        validation_alias=AliasChoices("FARMSYNC_USE_ROLE", "use_role"),
    )

    proxy_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FARMSYNC_PROXY_HOST", "proxy_host"),
    )
    proxy_port: int = Field(
        default=3128,
        validation_alias=AliasChoices("FARMSYNC_PROXY_PORT", "proxy_port"),
    )
    proxy_username: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FARMSYNC_PROXY_USERNAME", "proxy_username"),
    )
    proxy_password: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("FARMSYNC_PROXY_PASSWORD", "proxy_password"),
    )
    no_proxy: str = Field(
        default="",
        validation_alias=AliasChoices("FARMSYNC_NO_PROXY", "no_proxy"),
    )

    upload_timeout: float = Field(
        default=600.0,
        gt=0,
        validation_alias=AliasChoices("FARMSYNC_UPLOAD_TIMEOUT", "upload_timeout"),
    )
    registry_retention: float = Field(
        default=3600.0,
        ge=0,
        validation_alias=AliasChoices(
            "FARMSYNC_REGISTRY_RETENTION", "registry_retention"
        ),
    )
    multipart_threshold_mb: int = Field(
        default=8,
        ge=5,
        validation_alias=AliasChoices(
            "FARMSYNC_MULTIPART_THRESHOLD_MB", "multipart_threshold_mb"
        ),
    )
    max_concurrency: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("FARMSYNC_MAX_CONCURRENCY", "max_concurrency"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_retention(self) -> "FarmSyncSettings":
        if self.registry_retention and self.registry_retention < self.upload_timeout:
            raise ValueError(
                f"registry_retention ({self.registry_retention:g}s) must be 0 or at "
                f"least upload_timeout ({self.upload_timeout:g}s)"
            )
        return self

    @property
    def extra_region_names(self) -> tuple[str, ...]:
        return _split(self.extra_regions)

    @property
    def no_proxy_patterns(self) -> tuple[str, ...]:
        return _split(self.no_proxy)

    @property
    def retention(self) -> timedelta | None:
        if not self.registry_retention:
            return None
        return timedelta(seconds=self.registry_retention)

    def proxy_rule(self) -> ProxyRule | None:
        """Return the configured proxy, or ``None`` when no proxy host is set."""

        if not self.proxy_host:
            return None
        return ProxyRule(
            host=self.proxy_host,
            port=self.proxy_port,
            username=self.proxy_username,
            password=self.proxy_password,
            no_proxy_patterns=self.no_proxy_patterns,
        )

    def region_resolver(self) -> RegionResolver:
        return RegionResolver(
            default_region=self.default_region,
            extra_regions=self.extra_region_names,
        )


def load_settings() -> FarmSyncSettings:
    """Load configuration from environment variables or the optional ``.env`` file."""

    return FarmSyncSettings()


__all__ = ["FarmSyncSettings", "load_settings"]
