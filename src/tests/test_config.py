from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from farmsync.config import FarmSyncSettings, load_settings
from farmsync.errors import (
    CapabilityError,
    ConfigurationError,
    RemoteInvocationError,
    UploadTimeoutError,
    error_from_payload,
)


def test_defaults_without_environment() -> None:
    settings = load_settings()

    assert settings.default_region == "us-east-1"
    assert settings.s3_endpoint is None
    assert settings.proxy_rule() is None
    assert settings.upload_timeout == 600
    assert settings.retention == timedelta(hours=1)
    assert settings.multipart_threshold_mb == 8
    assert settings.max_concurrency == 10


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FARMSYNC_DEFAULT_REGION", "US_WEST_2")
    monkeypatch.setenv("FARMSYNC_EXTRA_REGIONS", "minio-a, minio-b")
    monkeypatch.setenv("FARMSYNC_USE_ROLE", "true")
    monkeypatch.setenv("FARMSYNC_REGISTRY_RETENTION", "0")

    settings = load_settings()

    assert settings.use_role is True
    assert settings.extra_region_names == ("minio-a", "minio-b")
    assert settings.retention is None
    resolver = settings.region_resolver()
    assert resolver.resolve(None).name == "us-west-2"
    assert resolver.resolve("minio-b").name == "minio-b"


def test_plugin_endpoint_alias(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PLUGIN_S3_ENDPOINT", "http://minio:9000")

    assert load_settings().s3_endpoint == "http://minio:9000"


def test_proxy_rule_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FARMSYNC_PROXY_HOST", "proxy.corp")
    monkeypatch.setenv("FARMSYNC_PROXY_PORT", "8080")
    monkeypatch.setenv("FARMSYNC_PROXY_PASSWORD", "pw")
    monkeypatch.setenv("FARMSYNC_NO_PROXY", r".*\.internal, localhost")

    rule = load_settings().proxy_rule()

    assert rule is not None
    assert rule.port == 8080
    assert rule.no_proxy_patterns == (r".*\.internal", "localhost")
    assert rule.password is not None and rule.password.get_secret_value() == "pw"


def test_dotenv_file_is_read(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("FARMSYNC_UPLOAD_TIMEOUT=12\n", encoding="utf-8")

    assert load_settings().upload_timeout == 12


def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FARMSYNC_MAX_CONCURRENCY", "0")

    with pytest.raises(ValidationError):
        FarmSyncSettings()


def test_error_payload_round_trip() -> None:
    error = UploadTimeoutError("too slow", hint="wait longer", context={"elapsed": 1.5})

    rebuilt = error_from_payload(error.to_payload())

    assert type(rebuilt) is UploadTimeoutError
    assert rebuilt.hint == "wait longer"
    assert rebuilt.context == {"elapsed": "1.5"}
    assert isinstance(error_from_payload({"code": "agent.permission_denied"}), CapabilityError)
    assert type(error_from_payload({})) is RemoteInvocationError


def test_error_codes_default_per_class() -> None:
    assert ConfigurationError("bad").code == "config.invalid"
    assert ConfigurationError("bad", code="config.region").code == "config.region"


def test_retention_shorter_than_upload_timeout_is_rejected(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("FARMSYNC_UPLOAD_TIMEOUT", "600")
    monkeypatch.setenv("FARMSYNC_REGISTRY_RETENTION", "60")

    with pytest.raises(ValidationError, match="registry_retention"):
        load_settings()

    monkeypatch.setenv("FARMSYNC_REGISTRY_RETENTION", "600")
    assert load_settings().retention == timedelta(minutes=10)
