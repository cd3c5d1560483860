"""Shared pytest fixtures for farmsync tests."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from farmsync.aws.regions import RegionResolver
from farmsync.aws.transfer_cache import TransferClientCache
from farmsync.remote.requests import configured_endpoint
from farmsync.uploads.registry import UploadRegistry
from farmsync.uploads.workspace import WorkspaceRef

_TEST_REGIONS = (
    "us-east-1",
    "us-west-1",
    "us-west-2",
    "eu-west-1",
    "eu-central-1",
    "ap-southeast-1",
    "us-gov-west-1",
)


@pytest.fixture(autouse=True)
def _isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Iterator[None]:
    """Keep host configuration (env vars, ``.env`` files) out of the tests."""

    for name in list(os.environ):
        if name.startswith("FARMSYNC_") or name == "PLUGIN_S3_ENDPOINT":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    configured_endpoint.cache_clear()
    yield
    configured_endpoint.cache_clear()


@pytest.fixture
def resolver() -> RegionResolver:
    return RegionResolver("us-east-1", canonical_regions=_TEST_REGIONS)


@pytest.fixture
def registry() -> UploadRegistry:
    return UploadRegistry()


@pytest.fixture
def transfer_cache() -> Iterator[TransferClientCache]:
    cache = TransferClientCache()
    yield cache
    cache.close()


@pytest.fixture
def workspace(tmp_path: Path) -> WorkspaceRef:
    root = tmp_path / "workspace"
    root.mkdir()
    return WorkspaceRef.for_build(root, "build-1")
