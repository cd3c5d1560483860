"""Process wide cache of S3 transfer managers keyed by credentials."""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from pydantic import SecretStr

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fingerprint_secret(secret: SecretStr | str | None) -> str:
    """Return an opaque digest identifying *secret* without exposing it."""

    if isinstance(secret, SecretStr):
        secret = secret.get_secret_value()
    return hashlib.sha256((secret or "").encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ClientKey:
    """Identity of a transfer client: region, credentials and role mode."""

    region: str
    access_key: str
    secret_fingerprint: str = field(repr=False)
    use_role: bool = False

    @classmethod
    def create(
        cls,
        region: str | None,
        access_key: str | None,
        secret_key: SecretStr | str | None,
        use_role: bool,
    ) -> "ClientKey":
        return cls(
            region=(region or "").strip(),
            access_key=access_key or "",
            secret_fingerprint=fingerprint_secret(secret_key),
            use_role=use_role,
        )

    def log_fields(self) -> dict[str, object]:
        return {
            "region": self.region or "<default>",
            "access_key": self.access_key or "<none>",
            "use_role": self.use_role,
        }


@dataclass
class TransferClientEntry:
    """One S3 client and the transfer manager built on top of it."""

    key: ClientKey
    client: Any
    transfer_manager: Any
    created_at: datetime = field(default_factory=_utcnow)

    def shutdown(self, *, cancel: bool = False) -> None:
        """Stop the transfer manager; ``cancel`` aborts in-flight transfers."""

        shutdown = getattr(self.transfer_manager, "shutdown", None)
        if callable(shutdown):
            shutdown(cancel=cancel)


@dataclass
class _BuildLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class TransferClientCache:
    """Thread-safe get-or-create cache of :class:`TransferClientEntry` objects.

    The cache lock guards the entry table only. Construction happens under a
    per-key lock so two callers asking for the same key build one entry while
    callers for other keys are not held up. Entries live until
    :meth:`invalidate` or :meth:`close`; failed constructions are not stored.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[ClientKey, TransferClientEntry] = {}
        self._build_locks: dict[ClientKey, _BuildLock] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: ClientKey) -> TransferClientEntry | None:
        with self._lock:
            return self._entries.get(key)

    def get_or_create(
        self, key: ClientKey, factory: Callable[[], TransferClientEntry]
    ) -> TransferClientEntry:
        """Return the entry for *key*, building it with *factory* at most once."""

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                return entry
            build_lock = self._build_locks.get(key)
            if build_lock is None:
                build_lock = self._build_locks[key] = _BuildLock()
            build_lock.users += 1

        try:
            with build_lock.lock:
                with self._lock:
                    entry = self._entries.get(key)
                if entry is not None:
                    return entry

                entry = factory()
                with self._lock:
                    self._entries[key] = entry
                log.info(
                    "s3.transfer_cache.created", entries=len(self), **key.log_fields()
                )
                return entry
        finally:
            with self._lock:
                build_lock.users -= 1
                if build_lock.users == 0:
                    self._build_locks.pop(key, None)

    def invalidate(self, key: ClientKey) -> bool:
        """Drop the entry for *key* and shut its transfer manager down.

        Use this when credentials rotate. Callers still holding the entry keep
        a handle that no longer accepts new transfers.
        """

        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.shutdown()
        log.info("s3.transfer_cache.invalidated", **key.log_fields())
        return True

    def close(self, *, cancel: bool = False) -> None:
        """Shut down every cached transfer manager."""

        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            entry.shutdown(cancel=cancel)
        if entries:
            log.info("s3.transfer_cache.closed", entries=len(entries))


__all__ = [
    "ClientKey",
    "TransferClientCache",
    "TransferClientEntry",
    "fingerprint_secret",
]
