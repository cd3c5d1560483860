"""Build boto3 S3 clients and transfer managers for agents."""

from __future__ import annotations

from typing import Any

import boto3
import structlog
from boto3.s3.transfer import TransferConfig, create_transfer_manager
from botocore.config import Config
from botocore.exceptions import BotoCoreError
from pydantic import SecretStr

from farmsync.aws.proxy import ProxyRule, proxies_for
from farmsync.aws.regions import RegionResolver
from farmsync.aws.transfer_cache import ClientKey, TransferClientEntry
from farmsync.errors import ConfigurationError

log = structlog.get_logger(__name__)

MB = 1024 * 1024


def _secret_value(secret: SecretStr | str | None) -> str | None:
    if isinstance(secret, SecretStr):
        return secret.get_secret_value()
    return secret


def create_client(
    access_key: str | None,
    secret_key: SecretStr | str | None,
    use_role: bool,
    region: str | None,
    proxy: ProxyRule | None = None,
    custom_endpoint: str | None = None,
    *,
    resolver: RegionResolver | None = None,
    session: boto3.session.Session | None = None,
) -> Any:
    """Return a boto3 S3 client for the given credentials and region.

    Static credentials are required unless *use_role* is set, in which case
    boto3's default provider chain (instance profile, environment, ...) is
    used. Custom endpoints switch to path-style addressing, which MinIO and
    most other S3-compatible stores expect.
    """

    resolver = resolver or RegionResolver()
    resolved = resolver.resolve(region)
    endpoint = resolver.endpoint_for(resolved, custom_endpoint)

    config_kwargs: dict[str, Any] = {
        "region_name": resolved.name,
        "retries": {"mode": "standard"},
    }
    proxies = proxies_for(proxy, endpoint.hostname)
    if proxies:
        config_kwargs["proxies"] = proxies
    if endpoint.custom:
        config_kwargs["s3"] = {"addressing_style": "path"}

    client_kwargs: dict[str, Any] = {"config": Config(**config_kwargs)}
    if endpoint.custom:
        client_kwargs["endpoint_url"] = endpoint.url

    if not use_role:
        secret = _secret_value(secret_key)
        if not access_key or not secret:
            raise ConfigurationError(
                "An access key and secret key are required when role based "
                "authentication is disabled",
                hint="Provide credentials or enable use_role.",
                context={"region": resolved.name},
            )
        client_kwargs["aws_access_key_id"] = access_key
        client_kwargs["aws_secret_access_key"] = secret

    session = session or boto3.session.Session()
    try:
        client = session.client("s3", **client_kwargs)
    except (ValueError, BotoCoreError) as exc:
        raise ConfigurationError(
            f"Unable to create an S3 client for region '{resolved.name}': {exc}",
            context={"region": resolved.name, "endpoint": endpoint.url},
        ) from exc

    log.info(
        "s3.client.created",
        region=resolved.name,
        region_source=resolved.source.value,
        endpoint=endpoint.url,
        proxied=proxies is not None,
        use_role=use_role,
    )
    return client


def transfer_config(
    multipart_threshold_mb: int = 8, max_concurrency: int = 10
) -> TransferConfig:
    return TransferConfig(
        multipart_threshold=multipart_threshold_mb * MB,
        max_concurrency=max_concurrency,
    )


def build_transfer_manager(client: Any, config: TransferConfig | None = None) -> Any:
    """Return an s3transfer manager driving uploads through *client*."""

    return create_transfer_manager(client, config or transfer_config())


def open_transfer_client(
    access_key: str | None,
    secret_key: SecretStr | str | None,
    use_role: bool,
    region: str | None,
    proxy: ProxyRule | None = None,
    custom_endpoint: str | None = None,
    *,
    resolver: RegionResolver | None = None,
    config: TransferConfig | None = None,
) -> TransferClientEntry:
    """Create the client and transfer manager stored in the transfer cache."""

    client = create_client(
        access_key,
        secret_key,
        use_role,
        region,
        proxy,
        custom_endpoint,
        resolver=resolver,
    )
    return TransferClientEntry(
        key=ClientKey.create(region, access_key, secret_key, use_role),
        client=client,
        transfer_manager=build_transfer_manager(client, config),
    )


__all__ = [
    "build_transfer_manager",
    "create_client",
    "open_transfer_client",
    "transfer_config",
]
