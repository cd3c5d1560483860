"""Wire format tests for agent requests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from farmsync.aws.proxy import ProxyRule
from farmsync.remote.requests import (
    CancelWaitRequest,
    DispatchMessage,
    DispatchReply,
    FinishUploadsRequest,
    UploadArtifactsRequest,
    WaitForUploadsRequest,
)
from farmsync.uploads.registry import WaitOutcome
from farmsync.uploads.workspace import WorkspaceRef

WORKSPACE = WorkspaceRef.for_build("/agents/a1/ws", "build-42")


def _upload_request(**overrides: object) -> UploadArtifactsRequest:
    values: dict[str, object] = {
        "access_key": "AKIA",
        "secret_key": "wJalr-secret",
        "region": "us-west-2",
        "bucket": "renders",
        "proxy": ProxyRule(host="proxy.corp", port=3128, password="proxy-pass"),
    }
    values.update(overrides)
    return UploadArtifactsRequest(**values)


def test_secrets_travel_on_the_wire_but_stay_masked() -> None:
    request = _upload_request()

    raw = DispatchMessage(workspace=WORKSPACE, request=request).encode()
    decoded = DispatchMessage.decode(raw)

    assert "wJalr-secret" in raw
    assert "wJalr-secret" not in repr(request)
    assert "proxy-pass" not in repr(request)
    restored = decoded.request
    assert isinstance(restored, UploadArtifactsRequest)
    assert restored.secret_key is not None
    assert restored.secret_key.get_secret_value() == "wJalr-secret"
    assert restored.proxy is not None
    assert restored.proxy.password is not None
    assert restored.proxy.password.get_secret_value() == "proxy-pass"
    assert decoded.workspace == WORKSPACE
    assert restored.client_key() == request.client_key()


def test_requests_are_decoded_by_kind() -> None:
    for request in (
        FinishUploadsRequest(),
        WaitForUploadsRequest(timeout=30),
        CancelWaitRequest(),
    ):
        raw = DispatchMessage(workspace=WORKSPACE, request=request).encode()
        assert DispatchMessage.decode(raw).request == request


def test_unknown_kind_is_rejected() -> None:
    raw = json.dumps(
        {"workspace": WORKSPACE.model_dump(), "request": {"kind": "format_disk"}}
    )

    with pytest.raises(ValidationError):
        DispatchMessage.decode(raw)


def test_custom_endpoint_is_captured_from_configuration(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("PLUGIN_S3_ENDPOINT", "http://minio.internal:9000")

    request = _upload_request()

    assert request.custom_endpoint == "http://minio.internal:9000"


def test_wait_timeout_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        WaitForUploadsRequest(timeout=0)


def test_wait_result_parsing() -> None:
    result = WaitForUploadsRequest.parse_result(
        WORKSPACE, {"outcome": "timeout", "elapsed": 1.5, "failed_uploads": ["a"]}
    )

    assert result.outcome is WaitOutcome.TIMEOUT
    assert result.elapsed == 1.5
    assert result.failed_uploads == ("a",)
    assert result.workspace == WORKSPACE


def test_collect_applies_include_and_exclude(tmp_path: Path) -> None:
    (tmp_path / "frames").mkdir()
    (tmp_path / "frames" / "0001.exr").write_text("a")
    (tmp_path / "frames" / "0002.exr").write_text("b")
    (tmp_path / "frames" / "0001.tmp").write_text("c")
    (tmp_path / "report.json").write_text("{}")

    request = _upload_request(include=("frames/*.*", "*.json"), exclude=("*.tmp",))

    assert [p.relative_to(tmp_path).as_posix() for p in request.collect(tmp_path)] == [
        "frames/0001.exr",
        "frames/0002.exr",
        "report.json",
    ]


@pytest.mark.parametrize(
    "prefix, expected",
    [("", "frames/0001.exr"), ("shots/010/", "shots/010/frames/0001.exr")],
)
def test_object_key_joins_prefix(tmp_path: Path, prefix: str, expected: str) -> None:
    request = _upload_request(prefix=prefix)

    assert request.object_key(tmp_path, tmp_path / "frames" / "0001.exr") == expected


def test_reply_round_trip() -> None:
    reply = DispatchReply(ok=False, error={"code": "uploads.timeout", "message": "late"})

    assert DispatchReply.decode(reply.encode()) == reply


def test_custom_endpoint_is_read_once_per_process(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("FARMSYNC_S3_ENDPOINT", "http://first:9000")
    first = _upload_request()

    monkeypatch.setenv("FARMSYNC_S3_ENDPOINT", "http://second:9000")
    second = _upload_request()

    assert first.custom_endpoint == "http://first:9000"
    assert second.custom_endpoint == "http://first:9000"
    assert _upload_request(custom_endpoint=None).custom_endpoint is None
