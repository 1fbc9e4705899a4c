"""Server-side sessions shared by all requests of one browser.

This module introduces a *narrow* session interface (:class:`SessionStore`)
and an in-memory implementation (:class:`InMemorySessionStore`).

* **Schema** – every attribute the authenticator writes lives under a
  :class:`SessionKey`; other components (claims rendering, logout) use the
  same enum instead of string literals.
* **Concurrency** – each :class:`Session` carries its own re-entrant lock.
  Compound read-modify-write sequences on the CSRF token, the saved request
  and the cached authentication run inside ``with session.lock:``.  Requests
  for different sessions never contend.
* **Expiry** – sessions live in :class:`cachetools.TTLCache` pools; a flow that
  never returns from the provider simply expires with its session.  Pending
  and authenticated sessions are kept in separate pools so anonymous traffic
  cannot push logged-in users out.
"""

from __future__ import annotations

import logging
import secrets
import threading
from enum import Enum
from typing import Any, Iterator, Protocol, runtime_checkable

from cachetools import TTLCache

from openid_authenticator.core.clock import Clock, default_clock

_LOG = logging.getLogger("openid-authenticator.core.session")

_NAMESPACE = "openid_authenticator"


class SessionKey(str, Enum):
    """Namespaced session attribute keys."""

    AUTHENTICATED = f"{_NAMESPACE}.authenticated"
    CLAIMS = f"{_NAMESPACE}.claims"
    RESPONSE = f"{_NAMESPACE}.response"
    URI = f"{_NAMESPACE}.uri"
    METHOD = f"{_NAMESPACE}.method"
    POST = f"{_NAMESPACE}.post"
    DESTINATION = f"{_NAMESPACE}.destination"
    CSRF_TOKEN = f"{_NAMESPACE}.csrf_token"


class Session:
    """Mutable attribute bag with a per-session lock."""

    __slots__ = ("id", "lock", "_attributes")

    def __init__(self, session_id: str) -> None:
        self.id = session_id
        self.lock = threading.RLock()
        self._attributes: dict[str, Any] = {}

    def get(self, key: SessionKey | str, default: Any = None) -> Any:
        return self._attributes.get(_key(key), default)

    def set(self, key: SessionKey | str, value: Any) -> None:
        self._attributes[_key(key)] = value

    def remove(self, key: SessionKey | str) -> Any:
        return self._attributes.pop(_key(key), None)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (str, SessionKey)) and _key(key) in self._attributes

    def keys(self) -> Iterator[str]:
        return iter(list(self._attributes))

    def __repr__(self) -> str:
        return f"Session(id={self.id[:6]}****, keys={len(self._attributes)})"


def _key(key: SessionKey | str) -> str:
    return key.value if isinstance(key, SessionKey) else key


@runtime_checkable
class SessionStore(Protocol):
    """Minimal persistence contract for sessions."""

    def get(self, session_id: str) -> Session | None: ...
    def create(self) -> Session: ...
    def invalidate(self, session_id: str) -> None: ...
    def renew(self, session: Session) -> Session: ...


class _SessionCache(TTLCache):
    """TTLCache that reports sessions evicted for lack of room."""

    def __init__(self, pool: str, maxsize: int, ttl: float, timer: Clock) -> None:
        super().__init__(maxsize=maxsize, ttl=ttl, timer=timer)
        self.pool = pool

    def popitem(self):
        session_id, session = super().popitem()
        _LOG.warning(
            "Session pool '%s' full (%d), evicted id=%s****",
            self.pool,
            self.maxsize,
            session_id[:6],
        )
        return session_id, session


class InMemorySessionStore(SessionStore):
    """Process-local :class:`SessionStore` with idle expiry.

    Sessions are kept in two pools of ``max_sessions`` each.  ``create`` puts
    new sessions in the *pending* pool, which anonymous challenge traffic
    fills; ``renew`` (called on login) moves a session into the
    *authenticated* pool.  A flood of anonymous requests can therefore only
    evict other pending sessions, never logged-in ones.

    ``get`` refreshes a session's expiry, so ``ttl_seconds`` behaves as an idle
    timeout.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = 1800,
        max_sessions: int = 10_000,
        clock: Clock = default_clock,
    ) -> None:
        self._pending = _SessionCache("pending", max_sessions, ttl_seconds, clock)
        self._authenticated = _SessionCache("authenticated", max_sessions, ttl_seconds, clock)
        self._lock = threading.Lock()

    def _pool_of(self, session_id: str) -> _SessionCache | None:
        for pool in (self._authenticated, self._pending):
            if session_id in pool:
                return pool
        return None

    def _new_id(self) -> str:
        session_id = secrets.token_urlsafe(32)
        while self._pool_of(session_id) is not None:
            session_id = secrets.token_urlsafe(32)
        return session_id

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            for pool in (self._authenticated, self._pending):
                session = pool.get(session_id)
                if session is not None:
                    # re-insert to restart the idle timer
                    pool[session_id] = session
                    return session
            return None

    def create(self) -> Session:
        with self._lock:
            session = Session(self._new_id())
            self._pending[session.id] = session
        _LOG.debug("Created session id=%s****", session.id[:6])
        return session

    def invalidate(self, session_id: str) -> None:
        with self._lock:
            removed = self._authenticated.pop(session_id, None)
            if removed is None:
                removed = self._pending.pop(session_id, None)
        if removed is not None:
            _LOG.debug("Invalidated session id=%s****", session_id[:6])

    def __len__(self) -> int:
        with self._lock:
            self._pending.expire()
            self._authenticated.expire()
            return len(self._pending) + len(self._authenticated)

    def is_authenticated_pool(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._authenticated

    def renew(self, session: Session) -> Session:
        """Move *session*'s attributes under a fresh id and drop the old one.

        Called on login so an id planted before authentication is useless
        afterwards.  The fresh session lives in the authenticated pool.
        """
        with session.lock:
            with self._lock:
                fresh = Session(self._new_id())
                self._authenticated[fresh.id] = fresh
            with fresh.lock:
                for key in session.keys():
                    fresh.set(key, session.get(key))
            self.invalidate(session.id)
        _LOG.debug("Renewed session id=%s**** -> %s****", session.id[:6], fresh.id[:6])
        return fresh
