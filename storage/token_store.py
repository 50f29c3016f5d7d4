"""
Session-Scoped Token Store

Holds OAuth tokens per authenticated session, together with the one in-flight
refresh task per session that concurrent callers share and the set of
sessions with a code exchange in progress. Nothing here is shared across
sessions: every read and write is keyed by session id.

The store is in-memory; tokens live until refreshed, revoked or the process
exits. Revocation markers expire after `revoked_ttl_seconds` so a session that
is signed out and never linked again does not stay in memory.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Set

from core.logging import get_logger
from core.schemas import Token


REVOKED_TTL_SECONDS = 3600


class TokenStore:
    """
    In-memory token store keyed by session id.

    Attributes:
        revoked_ttl_seconds: How long a revoked session reports REVOKED
        clock: Monotonic seconds clock (injectable for tests)

    Example:
        >>> store = TokenStore()
        >>> store.set("session-1", token, mode="demo")
        >>> store.get("session-1").access_token
        'abc'
        >>> store.mode("session-1")
        'demo'
    """

    def __init__(self, revoked_ttl_seconds: float = REVOKED_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self._tokens: Dict[str, Token] = {}
        self._modes: Dict[str, str] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._exchanging: Set[str] = set()
        self._revoked: Dict[str, float] = {}
        self.revoked_ttl_seconds = revoked_ttl_seconds
        self.clock = clock
        self.logger = get_logger(__name__)

    # ============================================
    # Tokens
    # ============================================

    def get(self, session_id: str) -> Optional[Token]:
        return self._tokens.get(session_id)

    def set(self, session_id: str, token: Token, mode: Optional[str] = None) -> None:
        """Replace the session's token as one unit."""
        self._tokens[session_id] = token
        if mode is not None:
            self._modes[session_id] = mode
        self._revoked.pop(session_id, None)

    def mode(self, session_id: str) -> str:
        return self._modes.get(session_id, "live")

    def revoke(self, session_id: str) -> bool:
        """
        Drop the session's token. Returns True if one was stored.
        """
        existed = self._tokens.pop(session_id, None) is not None
        self._modes.pop(session_id, None)
        self._prune_revoked()
        self._revoked[session_id] = self.clock()
        if existed:
            self.logger.info(f"Token revoked for session {session_id[:8]}...")
        return existed

    def is_revoked(self, session_id: str) -> bool:
        revoked_at = self._revoked.get(session_id)
        if revoked_at is None:
            return False
        if self.clock() - revoked_at >= self.revoked_ttl_seconds:
            del self._revoked[session_id]
            return False
        return True

    def _prune_revoked(self) -> None:
        cutoff = self.clock() - self.revoked_ttl_seconds
        for session_id in [s for s, at in self._revoked.items() if at <= cutoff]:
            del self._revoked[session_id]

    # ============================================
    # In-flight Exchange & Refresh
    # ============================================

    def begin_exchange(self, session_id: str) -> None:
        self._exchanging.add(session_id)

    def end_exchange(self, session_id: str) -> None:
        self._exchanging.discard(session_id)

    def is_exchanging(self, session_id: str) -> bool:
        return session_id in self._exchanging

    def pending(self, session_id: str) -> Optional[asyncio.Future]:
        task = self._pending.get(session_id)
        if task is not None and task.done():
            return None
        return task

    def set_pending(self, session_id: str, task: asyncio.Future) -> None:
        self._pending[session_id] = task
        task.add_done_callback(lambda t: self._clear_pending(session_id, t))

    def _clear_pending(self, session_id: str, task: asyncio.Future) -> None:
        if self._pending.get(session_id) is task:
            del self._pending[session_id]
        # Mark the outcome as retrieved; every caller already got it via await
        if not task.cancelled():
            task.exception()

    # ============================================
    # Introspection
    # ============================================

    def sessions(self) -> List[str]:
        return list(self._tokens.keys())

    def revoked_sessions(self) -> List[str]:
        self._prune_revoked()
        return list(self._revoked.keys())

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)


# ============================================
# Global Store Instance
# ============================================

_store: Optional[TokenStore] = None


def get_token_store() -> TokenStore:
    """Get the process-wide TokenStore (singleton pattern)."""
    global _store
    if _store is None:
        _store = TokenStore()
    return _store
