"""
vault/singleflight.py -- Per-key refresh serialization.

Jira refresh tokens rotate on every use. Two concurrent requests from the
same browser carry the same refresh token; if both call the token endpoint,
the second presents a token the first already spent and the provider rejects
it -- permanently, since the spent token is also the one still in the cookie.

SingleFlight.do(key, fn) guarantees that for one key only one fn() runs at a
time. Callers that arrive while it runs block and receive the same result.
A successful result is retained for grace_seconds so a request that arrives
just after -- still carrying the pre-rotation cookie -- reuses it instead of
presenting the spent token. Exceptions are propagated to every waiter and are
not retained.

A reused result can itself be stale: by the time a late request arrives the
refresh token it returns may have been spent by a later refresh. completed()
lets the caller look up that later result and follow the chain to the newest
grant.

Keys are (provider, sha256(refresh_token)); raw tokens are never used as
dictionary keys so they do not linger in process memory longer than needed.

Route handlers that resolve credentials are sync def functions, so FastAPI
runs them in its threadpool -- threading primitives are the right tool here.
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


def refresh_key(provider: str, refresh_token: str) -> tuple[str, str]:
    return provider, hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()


class _Call:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self.finished_at = 0.0


class SingleFlight(Generic[T]):
    def __init__(self, grace_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._grace = grace_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._calls: dict[Any, _Call] = {}

    def do(self, key: Any, fn: Callable[[], T]) -> T:
        with self._lock:
            self._evict_expired()
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
        except BaseException as exc:
            call.error = exc
            with self._lock:
                self._calls.pop(key, None)
            raise
        finally:
            call.finished_at = self._clock()
            call.done.set()
        return call.result

    def completed(self, key: Any) -> Optional[T]:
        """Result of the successful call for key, or None.

        A call still running is waited for. Failed and expired calls count
        as absent.
        """
        with self._lock:
            self._evict_expired()
            call = self._calls.get(key)
        if call is None:
            return None
        call.done.wait()
        if call.error is not None:
            return None
        return call.result

    def _evict_expired(self) -> None:
        # Caller holds self._lock.
        now = self._clock()
        expired = [
            k for k, c in self._calls.items() if c.done.is_set() and c.error is None and now - c.finished_at > self._grace
        ]
        for k in expired:
            del self._calls[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)
