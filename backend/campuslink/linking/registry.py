"""
Session registry: in-memory directory of pending linking attempts.

Each entry owns one automation driver and the plaintext credentials that
will be stored once the push request is approved. Entries expire after a
fixed TTL measured from creation, regardless of polling activity. Expiry
is enforced lazily on lookup and by a background sweep task, so an
abandoned session still releases its browser.

Locking:
    - ``_lock`` guards the map itself (insert/lookup/pop).
    - ``PendingSession.lock`` serializes use of one driver. Eviction waits
      for it before cleaning up, so a poll in flight is never cut off.
    - ``remove()`` never takes an entry lock; callers may hold one.
    - ``evict()`` waits for the entry lock; callers must not hold it.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ..automation.base import AutomationDriver
from ..credentials import Credentials
from ..logging import get_logger

logger = get_logger("registry")

# 32 random bytes, well above the 128-bit minimum for bearer-style ids
SESSION_ID_BYTES = 32


@dataclass(eq=False)
class PendingSession:
    """One in-progress linking attempt."""
    session_id: str
    user_id: str
    credentials: Optional[Credentials]
    driver: AutomationDriver
    created_at: float
    expires_at: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    # Cached final result, replayed to polls that race the finalizer
    terminal: Optional[Any] = None
    # Set once the entry has left the registry
    released: bool = False


ExpireCallback = Callable[[PendingSession], Awaitable[None]]


class SessionRegistry:
    """Owns every pending session and its driver."""

    def __init__(
        self,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
        on_expire: Optional[ExpireCallback] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.on_expire = on_expire
        self._clock = clock
        self._sessions: dict[str, PendingSession] = {}
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(SESSION_ID_BYTES)

    def _is_expired(self, entry: PendingSession) -> bool:
        return self._clock() >= entry.expires_at

    # ── Mutation ──────────────────────────────────────────────────

    async def create(
        self,
        session_id: str,
        driver: AutomationDriver,
        user_id: str,
        credentials: Credentials,
    ) -> PendingSession:
        """Register a pending session. The registry now owns *driver*."""
        now = self._clock()
        entry = PendingSession(
            session_id=session_id,
            user_id=user_id,
            credentials=credentials,
            driver=driver,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        async with self._lock:
            if session_id in self._sessions:
                raise ValueError("session id already registered")
            self._sessions[session_id] = entry

        logger.info(f"Pending session created for user {user_id} (ttl {self.ttl_seconds:.0f}s)")
        return entry

    async def get(self, session_id: str) -> Optional[PendingSession]:
        """Return the live entry, or None if unknown or expired."""
        async with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            if not self._is_expired(entry):
                return entry
            self._pop(session_id)

        await self._expire(entry)
        return None

    async def find_by_user(self, user_id: str) -> Optional[PendingSession]:
        """Return the user's live, unfinished session if there is one."""
        async with self._lock:
            for entry in self._sessions.values():
                if (
                    entry.user_id == user_id
                    and entry.terminal is None
                    and not self._is_expired(entry)
                ):
                    return entry
        return None

    async def remove(self, session_id: str) -> bool:
        """Evict a session and release its driver. Safe to call repeatedly."""
        async with self._lock:
            entry = self._pop(session_id)
        if entry is None:
            return False

        await entry.driver.cleanup()
        logger.debug(f"Pending session removed for user {entry.user_id}")
        return True

    async def evict(self, session_id: str) -> bool:
        """Evict a session, releasing its driver once no poll is using it."""
        async with self._lock:
            entry = self._pop(session_id)
        if entry is None:
            return False

        async with entry.lock:
            await entry.driver.cleanup()
        logger.debug(f"Pending session evicted for user {entry.user_id}")
        return True

    async def retire(self, session_id: str, grace_seconds: float) -> None:
        """Keep a finalized session around for *grace_seconds*, then evict it."""
        async with self._lock:
            entry = self._sessions.get(session_id)
            if entry is not None:
                entry.expires_at = min(entry.expires_at, self._clock() + grace_seconds)

    def _pop(self, session_id: str) -> Optional[PendingSession]:
        entry = self._sessions.pop(session_id, None)
        if entry is not None:
            entry.released = True
            entry.credentials = None
        return entry

    async def _expire(self, entry: PendingSession) -> None:
        # Let an in-flight poll finish with the driver first
        async with entry.lock:
            await entry.driver.cleanup()

        if entry.terminal is not None:
            return

        logger.info(f"Pending session for user {entry.user_id} expired")
        if self.on_expire is not None:
            try:
                await self.on_expire(entry)
            except Exception as e:
                logger.error(f"Expiry callback failed for user {entry.user_id}: {e}")

    # ── Scheduled eviction ────────────────────────────────────────

    async def evict_expired(self) -> int:
        """Evict every expired session. Returns how many were evicted."""
        async with self._lock:
            expired = [
                self._pop(session_id)
                for session_id, entry in list(self._sessions.items())
                if self._is_expired(entry)
            ]

        for entry in expired:
            await self._expire(entry)
        return len(expired)

    async def _sweep_loop(self, interval: float, shutdown_event: asyncio.Event) -> None:
        while not shutdown_event.is_set():
            try:
                evicted = await self.evict_expired()
                if evicted:
                    logger.debug(f"Sweep evicted {evicted} session(s)")
            except Exception as e:
                logger.error(f"Session sweep failed: {e}")

            # Wait for the interval, but exit immediately on shutdown
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

    def start_sweeper(self, interval: float = 30.0) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._shutdown_event = asyncio.Event()
        self._sweeper = asyncio.create_task(self._sweep_loop(interval, self._shutdown_event))
        logger.info(f"Session sweeper started (every {interval:.0f}s)")

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._shutdown_event.set()
        await self._sweeper
        self._sweeper = None
        logger.info("Session sweeper stopped")

    async def close_all(self) -> int:
        """Stop sweeping and release every driver. Used on shutdown."""
        await self.stop()
        async with self._lock:
            entries = [self._pop(session_id) for session_id in list(self._sessions)]

        for entry in entries:
            await entry.driver.cleanup()
        if entries:
            logger.info(f"Closed {len(entries)} pending session(s)")
        return len(entries)
