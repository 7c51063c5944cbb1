"""Tunnel status store.

A single mutable ``TunnelStatus`` guarded by a lock. Every write goes through
a ``SessionHandle`` tagged with the session it was issued for; once a newer
session begins, writes through older handles are dropped.
"""

import logging
import threading

from xapi_relay.models.tunnel import TunnelStatus

logger = logging.getLogger(__name__)


class TunnelStatusStore:
    """Process-wide snapshot of tunnel state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status: TunnelStatus | None = None
        self._session_id = 0

    @property
    def session_id(self) -> int:
        with self._lock:
            return self._session_id

    def snapshot(self) -> TunnelStatus | None:
        """Return a copy of the current status, or None before any session."""
        with self._lock:
            if self._status is None:
                return None
            return self._status.model_copy(deep=True)

    def begin_session(self) -> "SessionHandle":
        """Reset the status for a new session and return its write handle."""
        with self._lock:
            self._session_id += 1
            self._status = TunnelStatus(is_active=True, public_url=None, log=[])
            session_id = self._session_id
        logger.debug("Began tunnel session %d", session_id)
        return SessionHandle(self, session_id)

    def _current(self, session_id: int) -> TunnelStatus | None:
        # Caller holds the lock.
        if session_id != self._session_id or self._status is None:
            logger.debug("Ignoring write from stale session %d (current %d)",
                         session_id, self._session_id)
            return None
        return self._status

    def append_log(self, session_id: int, message: str) -> bool:
        with self._lock:
            status = self._current(session_id)
            if status is None:
                return False
            status.log.append(message)
            return True

    def set_public_url(self, session_id: int, url: str) -> bool:
        with self._lock:
            status = self._current(session_id)
            if status is None:
                return False
            if status.public_url is not None:
                logger.warning("Public URL already set for session %d", session_id)
                return False
            status.public_url = url
            return True

    def deactivate(self, session_id: int, message: str | None = None) -> bool:
        """Mark the session inactive, appending ``message`` in the same step."""
        with self._lock:
            status = self._current(session_id)
            if status is None:
                return False
            if message is not None:
                status.log.append(message)
            status.is_active = False
            return True

    def is_current(self, session_id: int) -> bool:
        with self._lock:
            return session_id == self._session_id


class SessionHandle:
    """Write access to the store, scoped to one session."""

    def __init__(self, store: TunnelStatusStore, session_id: int):
        self.store = store
        self.session_id = session_id

    @property
    def is_current(self) -> bool:
        return self.store.is_current(self.session_id)

    def append_log(self, message: str) -> bool:
        return self.store.append_log(self.session_id, message)

    def set_public_url(self, url: str) -> bool:
        return self.store.set_public_url(self.session_id, url)

    def deactivate(self, message: str | None = None) -> bool:
        return self.store.deactivate(self.session_id, message)

    def __repr__(self) -> str:
        return f"SessionHandle(session_id={self.session_id})"
