from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest import mock

import pytest

from farmsync.aws.transfer_cache import (
    ClientKey,
    TransferClientCache,
    TransferClientEntry,
    fingerprint_secret,
)


def _entry(key: ClientKey) -> TransferClientEntry:
    return TransferClientEntry(key=key, client=object(), transfer_manager=mock.Mock())


def test_concurrent_callers_build_one_entry(transfer_cache: TransferClientCache) -> None:
    key = ClientKey.create("us-west-2", "AKIA", "secret", False)
    calls = 0
    calls_lock = threading.Lock()
    start = threading.Barrier(8)

    def factory() -> TransferClientEntry:
        nonlocal calls
        with calls_lock:
            calls += 1
        time.sleep(0.05)
        return _entry(key)

    def worker() -> TransferClientEntry:
        start.wait()
        return transfer_cache.get_or_create(key, factory)

    with ThreadPoolExecutor(max_workers=8) as pool:
        entries = list(pool.map(lambda _: worker(), range(8)))

    assert calls == 1
    assert all(entry is entries[0] for entry in entries)
    assert len(transfer_cache) == 1
    assert key in transfer_cache


def test_distinct_keys_get_distinct_entries(transfer_cache: TransferClientCache) -> None:
    first = ClientKey.create("us-west-2", "AKIA", "secret", False)
    second = ClientKey.create("us-west-2", "AKIA", "rotated", False)

    a = transfer_cache.get_or_create(first, lambda: _entry(first))
    b = transfer_cache.get_or_create(second, lambda: _entry(second))

    assert a is not b
    assert len(transfer_cache) == 2


def test_failed_construction_is_not_cached(transfer_cache: TransferClientCache) -> None:
    key = ClientKey.create("us-east-1", "AKIA", "secret", False)
    factory = mock.Mock(side_effect=[RuntimeError("boom"), _entry(key)])

    with pytest.raises(RuntimeError):
        transfer_cache.get_or_create(key, factory)
    assert key not in transfer_cache

    entry = transfer_cache.get_or_create(key, factory)

    assert transfer_cache.get(key) is entry
    assert factory.call_count == 2


def test_invalidate_shuts_down_transfer_manager(
    transfer_cache: TransferClientCache,
) -> None:
    key = ClientKey.create("us-east-1", "AKIA", "secret", False)
    entry = transfer_cache.get_or_create(key, lambda: _entry(key))

    assert transfer_cache.invalidate(key) is True
    assert transfer_cache.invalidate(key) is False
    entry.transfer_manager.shutdown.assert_called_once_with(cancel=False)
    assert transfer_cache.get(key) is None


def test_close_shuts_down_every_entry() -> None:
    cache = TransferClientCache()
    keys = [ClientKey.create(region, "AKIA", "s", False) for region in ("a", "b")]
    entries = [cache.get_or_create(key, lambda key=key: _entry(key)) for key in keys]

    cache.close(cancel=True)

    assert len(cache) == 0
    for entry in entries:
        entry.transfer_manager.shutdown.assert_called_once_with(cancel=True)


def test_client_key_hides_secret() -> None:
    key = ClientKey.create(None, None, "top-secret", True)

    assert key.region == ""
    assert key.access_key == ""
    assert "top-secret" not in repr(key)
    assert key.secret_fingerprint == fingerprint_secret("top-secret")
    assert key.log_fields() == {
        "region": "<default>",
        "access_key": "<none>",
        "use_role": True,
    }


def test_failed_construction_releases_its_build_lock(
    transfer_cache: TransferClientCache,
) -> None:
    keys = [ClientKey.create("us-east-1", f"AKIA{n}", "s", False) for n in range(3)]

    for key in keys:
        with pytest.raises(RuntimeError):
            transfer_cache.get_or_create(key, mock.Mock(side_effect=RuntimeError("boom")))

    assert transfer_cache._build_locks == {}
    assert len(transfer_cache) == 0
