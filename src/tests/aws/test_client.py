from __future__ import annotations

from typing import Any

import pytest
from botocore.exceptions import NoRegionError
from pytest_mock import MockerFixture

from farmsync.aws.client import create_client, open_transfer_client, transfer_config
from farmsync.aws.proxy import ProxyRule
from farmsync.aws.regions import RegionResolver
from farmsync.errors import ConfigurationError


def _client_kwargs(session: Any) -> dict[str, Any]:
    session.client.assert_called_once()
    args, kwargs = session.client.call_args
    assert args == ("s3",)
    return kwargs


def test_static_credentials_and_region(
    mocker: MockerFixture, resolver: RegionResolver
) -> None:
    session = mocker.Mock()

    client = create_client(
        "AKIA", "secret", False, "US_WEST_2", resolver=resolver, session=session
    )

    kwargs = _client_kwargs(session)
    assert client is session.client.return_value
    assert kwargs["aws_access_key_id"] == "AKIA"
    assert kwargs["aws_secret_access_key"] == "secret"
    assert kwargs["config"].region_name == "us-west-2"
    assert "endpoint_url" not in kwargs
    assert kwargs["config"].proxies is None


def test_missing_credentials_raise_configuration_error(
    mocker: MockerFixture, resolver: RegionResolver
) -> None:
    session = mocker.Mock()

    with pytest.raises(ConfigurationError):
        create_client("AKIA", None, False, "us-east-1", resolver=resolver, session=session)

    session.client.assert_not_called()


def test_role_mode_uses_default_credential_chain(
    mocker: MockerFixture, resolver: RegionResolver
) -> None:
    session = mocker.Mock()

    create_client(None, None, True, None, resolver=resolver, session=session)

    kwargs = _client_kwargs(session)
    assert "aws_access_key_id" not in kwargs
    assert kwargs["config"].region_name == "us-east-1"


def test_custom_endpoint_uses_path_style(
    mocker: MockerFixture, resolver: RegionResolver
) -> None:
    session = mocker.Mock()

    create_client(
        "AKIA",
        "secret",
        False,
        "us-east-1",
        custom_endpoint="http://minio.internal:9000",
        resolver=resolver,
        session=session,
    )

    kwargs = _client_kwargs(session)
    assert kwargs["endpoint_url"] == "http://minio.internal:9000"
    assert kwargs["config"].s3 == {"addressing_style": "path"}


def test_proxy_applies_unless_endpoint_is_exempt(
    mocker: MockerFixture, resolver: RegionResolver
) -> None:
    proxy = ProxyRule(host="proxy.corp", port=3128, no_proxy_patterns=(r".*\.internal",))
    proxied = mocker.Mock()
    direct = mocker.Mock()

    create_client("AKIA", "secret", False, "us-west-2", proxy, resolver=resolver, session=proxied)
    create_client(
        "AKIA",
        "secret",
        False,
        "us-west-2",
        proxy,
        "http://minio.internal:9000",
        resolver=resolver,
        session=direct,
    )

    assert _client_kwargs(proxied)["config"].proxies == {
        "http": "http://proxy.corp:3128",
        "https": "http://proxy.corp:3128",
    }
    assert _client_kwargs(direct)["config"].proxies is None


def test_botocore_failures_become_configuration_errors(
    mocker: MockerFixture, resolver: RegionResolver
) -> None:
    session = mocker.Mock()
    session.client.side_effect = NoRegionError()

    with pytest.raises(ConfigurationError) as excinfo:
        create_client("AKIA", "secret", False, "us-east-1", resolver=resolver, session=session)

    assert isinstance(excinfo.value.__cause__, NoRegionError)


def test_open_transfer_client_builds_entry(
    mocker: MockerFixture, resolver: RegionResolver
) -> None:
    client = mocker.Mock()
    mocker.patch("farmsync.aws.client.create_client", return_value=client)
    manager = mocker.patch("farmsync.aws.client.create_transfer_manager")
    config = transfer_config(16, 4)

    entry = open_transfer_client(
        "AKIA", "secret", False, "us-west-2", resolver=resolver, config=config
    )

    assert entry.client is client
    assert entry.transfer_manager is manager.return_value
    assert entry.key.region == "us-west-2"
    manager.assert_called_once_with(client, config)
    assert config.multipart_threshold == 16 * 1024 * 1024
    assert config.max_request_concurrency == 4
