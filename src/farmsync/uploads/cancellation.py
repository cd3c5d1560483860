"""Cancellation tokens used to abort blocking upload waits."""

from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager
from typing import Callable, Hashable, Iterator


class CancellationToken:
    """Signal shared between a build and the threads waiting on its behalf.

    Callbacks registered with :meth:`register` run once, on the thread calling
    :meth:`cancel`. Registering on an already cancelled token runs the callback
    immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def register(self, callback: Callable[[], None]) -> int | None:
        """Run *callback* on cancellation; return a handle for :meth:`unregister`."""

        with self._lock:
            if not self._event.is_set():
                handle = next(self._ids)
                self._callbacks[handle] = callback
                return handle
        callback()
        return None

    def unregister(self, handle: int | None) -> None:
        if handle is None:
            return
        with self._lock:
            self._callbacks.pop(handle, None)


class CancellationScopes:
    """Hand out one token per key for the waits currently running on it.

    Waits on the same key share a token. :meth:`cancel` fires and forgets it,
    so the next wait on that key starts with a fresh token and other keys are
    never affected.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scopes: dict[Hashable, _Scope] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._scopes)

    @contextmanager
    def scope(self, key: Hashable) -> Iterator[CancellationToken]:
        """Yield the token for *key*, dropping it when the last user leaves."""

        with self._lock:
            scope = self._scopes.get(key)
            if scope is None:
                scope = self._scopes[key] = _Scope()
            scope.users += 1
        try:
            yield scope.token
        finally:
            with self._lock:
                scope.users -= 1
                if scope.users == 0 and self._scopes.get(key) is scope:
                    del self._scopes[key]

    def cancel(self, key: Hashable) -> bool:
        """Cancel the waits running for *key*; ``False`` when there are none."""

        with self._lock:
            scope = self._scopes.pop(key, None)
        if scope is None:
            return False
        scope.token.cancel()
        return True


class _Scope:
    def __init__(self) -> None:
        self.token = CancellationToken()
        self.users = 0


__all__ = ["CancellationScopes", "CancellationToken"]
