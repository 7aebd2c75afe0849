"""
In-memory bearer token store.

Sessions live only as long as the process. Expired entries are removed lazily: when
an expired token is resolved, and in bulk whenever a new session is issued. The
store can therefore still grow with many distinct live logins; sweep() exists for
callers that want to prune on a timer.
"""

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

log = logging.getLogger(__name__)

# 32 random bytes = 256 bits, hex encoded so it is safe in an HTTP header
TOKEN_BYTES = 32


@dataclass(frozen=True)
class Session:
    owner: str
    device: str
    expires_at: float  # epoch seconds


class SessionStore:
    """Maps opaque tokens to usernames. One lock guards every read and write."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def issue(self, username: str, device: str, ttl_seconds: float) -> Tuple[str, float]:
        """Create a session; return (token, expires_at in epoch seconds)."""
        token = secrets.token_hex(TOKEN_BYTES)
        expires_at = self._clock() + ttl_seconds
        with self._lock:
            self._prune_locked()
            self._sessions[token] = Session(owner=username, device=device, expires_at=expires_at)
        if device:
            log.info("Session issued for user=%s device=%s", username, device)
        else:
            log.info("Session issued for user=%s on unidentified device", username)
        return token, expires_at

    def resolve(self, token: Optional[str]) -> Optional[str]:
        """Return the username for a live token; None if unknown or expired (expired entries are dropped)."""
        if not token:
            return None
        now = self._clock()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.expires_at <= now:
                del self._sessions[token]
                return None
            return session.owner

    def sweep(self) -> int:
        """Remove every expired session now; return how many were removed."""
        with self._lock:
            return self._prune_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _prune_locked(self) -> int:
        now = self._clock()
        expired = [t for t, s in self._sessions.items() if s.expires_at <= now]
        for t in expired:
            del self._sessions[t]
        if expired:
            log.debug("Pruned %d expired sessions", len(expired))
        return len(expired)
