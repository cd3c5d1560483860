"""Track in-flight uploads per workspace and let build steps wait for them.

Each workspace moves through three states::

    no_record --register_uploads--> tracking --finish_uploading--> finished

``finish_uploading`` may arrive before anyone waits; the flag stays set so a
late waiter returns immediately. A waiter is also released once every
registered upload has completed. Uploads belonging to one batch are registered
together so a fast first transfer cannot drain the set before its siblings
are known. The finished state is kept until :meth:`UploadRegistry.reset` or
until :meth:`UploadRegistry.prune` drops it after the retention window.

The registry lock only protects the workspace table. Every workspace has its
own lock and condition variable, so a slow workspace never blocks another.
A workspace's lock is always acquired while the registry lock is still held,
so :meth:`UploadRegistry.reset` and :meth:`UploadRegistry.prune` never remove a
set another thread is about to use.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable, Iterator

import structlog

from farmsync.errors import UploadCancelledError, UploadTimeoutError
from farmsync.uploads.cancellation import CancellationToken
from farmsync.uploads.workspace import WorkspaceRef

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadState(str, Enum):
    NO_RECORD = "no_record"
    TRACKING = "tracking"
    FINISHED = "finished"


class WaitOutcome(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WaitResult:
    """Outcome of :meth:`UploadRegistry.wait_for_uploads`."""

    outcome: WaitOutcome
    workspace: WorkspaceRef
    elapsed: float
    failed_uploads: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome is WaitOutcome.SUCCESS

    def raise_for_outcome(self) -> None:
        """Raise the matching :class:`UploadWaitError` unless the wait succeeded."""

        context = {"workspace": str(self.workspace), "elapsed": round(self.elapsed, 3)}
        if self.outcome is WaitOutcome.TIMEOUT:
            raise UploadTimeoutError(
                f"Uploads for {self.workspace} did not finish within "
                f"{self.elapsed:.1f}s",
                hint="Increase the upload timeout or check the agent's network.",
                context=context,
            )
        if self.outcome is WaitOutcome.CANCELLED:
            raise UploadCancelledError(
                f"Waiting for uploads of {self.workspace} was cancelled",
                context=context,
            )


@dataclass(frozen=True)
class UploadSnapshot:
    """Point in time view of a workspace's upload set."""

    workspace: WorkspaceRef
    state: UploadState
    outstanding: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    completed: int = 0
    waiters: int = 0
    finished_at: datetime | None = None


@dataclass
class _UploadSet:
    # Re-entrant: a cancellation callback may fire on the waiting thread.
    lock: threading.RLock = field(default_factory=threading.RLock)
    outstanding: set[str] = field(default_factory=set)
    failed: dict[str, str] = field(default_factory=dict)
    registered: int = 0
    completed: int = 0
    waiters: int = 0
    finished: bool = False
    finished_at: datetime | None = None

    def __post_init__(self) -> None:
        self.condition = threading.Condition(self.lock)

    @property
    def state(self) -> UploadState:
        if self.finished:
            return UploadState.FINISHED
        if self.registered:
            return UploadState.TRACKING
        return UploadState.NO_RECORD

    def is_done(self) -> bool:
        return self.finished or (self.registered > 0 and not self.outstanding)


class UploadRegistry:
    """Per-workspace upload tracking with a blocking completion barrier."""

    def __init__(
        self,
        *,
        retention: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._lock = threading.Lock()
        self._sets: dict[WorkspaceRef, _UploadSet] = {}
        self._retention = retention
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._sets)

    def workspaces(self) -> list[WorkspaceRef]:
        with self._lock:
            return list(self._sets)

    @contextmanager
    def _locked(self, workspace: WorkspaceRef) -> Iterator[_UploadSet]:
        """Yield the set for *workspace*, creating it, with its lock held."""

        with self._lock:
            upload_set = self._sets.get(workspace)
            if upload_set is None:
                upload_set = self._sets[workspace] = _UploadSet()
            upload_set.lock.acquire()
        try:
            yield upload_set
        finally:
            upload_set.lock.release()

    def _peek(self, workspace: WorkspaceRef) -> _UploadSet | None:
        with self._lock:
            return self._sets.get(workspace)

    def register_upload(self, workspace: WorkspaceRef, name: str) -> None:
        """Record that *name* started uploading from *workspace*."""

        self.register_uploads(workspace, [name])

    def register_uploads(self, workspace: WorkspaceRef, names: Iterable[str]) -> int:
        """Record a batch of uploads atomically; return how many were added.

        Register every upload of a batch before starting any transfer so the
        set cannot drain while part of the batch is still unknown.
        """

        batch = list(names)
        if not batch:
            return 0
        with self._locked(workspace) as upload_set:
            if upload_set.finished:
                log.warning(
                    "uploads.registry.register_after_finish",
                    workspace=str(workspace),
                    uploads=len(batch),
                )
            upload_set.outstanding.update(batch)
            upload_set.registered += len(batch)
        log.debug(
            "uploads.registry.registered", workspace=str(workspace), uploads=len(batch)
        )
        return len(batch)

    def complete_upload(
        self,
        workspace: WorkspaceRef,
        name: str,
        error: BaseException | str | None = None,
    ) -> None:
        """Mark *name* as done, recording *error* when the transfer failed."""

        upload_set = self._peek(workspace)
        if upload_set is None:
            log.warning(
                "uploads.registry.unknown_workspace",
                workspace=str(workspace),
                upload=name,
            )
            return
        with upload_set.condition:
            upload_set.outstanding.discard(name)
            upload_set.completed += 1
            if error is not None:
                upload_set.failed[name] = str(error)
            upload_set.condition.notify_all()
        if error is not None:
            log.warning(
                "uploads.registry.upload_failed",
                workspace=str(workspace),
                upload=name,
                error=str(error),
            )

    def finish_uploading(self, workspace: WorkspaceRef) -> None:
        """Release every current and future waiter for *workspace*.

        Calling this more than once for the same round is harmless.
        """

        with self._locked(workspace) as upload_set:
            already_finished = upload_set.finished
            if not already_finished:
                upload_set.finished = True
                upload_set.finished_at = self._clock()
            upload_set.condition.notify_all()
            outstanding = len(upload_set.outstanding)
            waiters = upload_set.waiters
        if not already_finished:
            log.info(
                "uploads.registry.finished",
                workspace=str(workspace),
                outstanding=outstanding,
                waiters=waiters,
            )
        self.prune()

    def wait_for_uploads(
        self,
        workspace: WorkspaceRef,
        timeout: float | None,
        cancel: CancellationToken | None = None,
    ) -> WaitResult:
        """Block until *workspace* finished uploading, *timeout* elapses or *cancel* fires.

        ``timeout=None`` waits without a deadline; only do that when a
        cancellation token is supplied.
        """

        started = time.monotonic()
        deadline = None if timeout is None else started + timeout
        handle = None

        with self._locked(workspace) as upload_set:

            def _wake() -> None:
                with upload_set.condition:
                    upload_set.condition.notify_all()

            upload_set.waiters += 1
            try:
                if cancel is not None:
                    handle = cancel.register(_wake)
                outcome = self._await(upload_set, deadline, cancel)
                failed = tuple(sorted(upload_set.failed))
            finally:
                upload_set.waiters -= 1
                if cancel is not None:
                    cancel.unregister(handle)

        result = WaitResult(
            outcome=outcome,
            workspace=workspace,
            elapsed=time.monotonic() - started,
            failed_uploads=failed,
        )
        if outcome is WaitOutcome.TIMEOUT:
            log.warning(
                "uploads.registry.wait_timeout",
                workspace=str(workspace),
                timeout=timeout,
            )
        elif outcome is WaitOutcome.CANCELLED:
            log.info("uploads.registry.wait_cancelled", workspace=str(workspace))
        return result

    @staticmethod
    def _await(
        upload_set: _UploadSet,
        deadline: float | None,
        cancel: CancellationToken | None,
    ) -> WaitOutcome:
        # Caller holds upload_set.condition.
        while not upload_set.is_done():
            if cancel is not None and cancel.cancelled:
                return WaitOutcome.CANCELLED
            if deadline is None:
                upload_set.condition.wait()
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return WaitOutcome.TIMEOUT
            upload_set.condition.wait(remaining)
        return WaitOutcome.SUCCESS

    def snapshot(self, workspace: WorkspaceRef) -> UploadSnapshot:
        upload_set = self._peek(workspace)
        if upload_set is None:
            return UploadSnapshot(workspace=workspace, state=UploadState.NO_RECORD)
        with upload_set.condition:
            return UploadSnapshot(
                workspace=workspace,
                state=upload_set.state,
                outstanding=tuple(sorted(upload_set.outstanding)),
                failed=tuple(sorted(upload_set.failed)),
                completed=upload_set.completed,
                waiters=upload_set.waiters,
                finished_at=upload_set.finished_at,
            )

    def reset(self, workspace: WorkspaceRef) -> bool:
        """Forget *workspace* so the next registration starts a fresh round.

        Workspaces with blocked waiters are kept; ``False`` is returned.
        """

        with self._lock:
            upload_set = self._sets.get(workspace)
            if upload_set is None:
                return False
            with upload_set.condition:
                if upload_set.waiters:
                    return False
            del self._sets[workspace]
        log.debug("uploads.registry.reset", workspace=str(workspace))
        return True

    def prune(self, *, now: datetime | None = None) -> int:
        """Drop finished, waiter-free workspaces older than the retention window."""

        if self._retention is None:
            return 0
        cutoff = (now or self._clock()) - self._retention
        removed: list[WorkspaceRef] = []
        with self._lock:
            for workspace, upload_set in list(self._sets.items()):
                with upload_set.condition:
                    expired = (
                        upload_set.finished
                        and not upload_set.waiters
                        and upload_set.finished_at is not None
                        and upload_set.finished_at <= cutoff
                    )
                if expired:
                    del self._sets[workspace]
                    removed.append(workspace)
        if removed:
            log.info("uploads.registry.pruned", count=len(removed))
        return len(removed)


__all__ = [
    "UploadRegistry",
    "UploadSnapshot",
    "UploadState",
    "WaitOutcome",
    "WaitResult",
]
