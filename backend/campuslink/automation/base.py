"""
Automation Driver (Abstract)
============================
Contract for anything that can drive one third-party login session.

A driver owns exactly one browser session. It is never shared between
callers; the session registry hands it to one request at a time.

Lifecycle:
    1. ``login(creds)``: submit the login form once
    2. ``wait_for_approval_and_complete(ms)``: zero or more bounded polls
    3. ``cleanup()``: release the browser

``cleanup()`` is safe to call any number of times; the underlying
resources are released exactly once.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from ..credentials import Credentials
from ..logging import get_logger
from .outcomes import ApprovalOutcome, LoginOutcome

logger = get_logger("automation")


class AutomationDriver(ABC):
    """Abstract base for login drivers."""

    def __init__(self):
        self._closed = False
        self._cleanup_lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Login flow ────────────────────────────────────────────────

    @abstractmethod
    async def login(self, creds: Credentials) -> LoginOutcome:
        """Submit the login form and classify where it lands.

        Returns a ``LoginOutcome``. Raises ``InternalAutomationError`` if
        the browser itself fails.
        """
        ...

    @abstractmethod
    async def wait_for_approval_and_complete(self, timeout_ms: int) -> ApprovalOutcome:
        """Wait at most *timeout_ms* for the MFA request to resolve.

        Returns ``pending`` if nothing conclusive happened in time.
        """
        ...

    async def page_info(self) -> dict:
        """Current url/title/text excerpt, for diagnostics."""
        return {"url": "", "title": "", "content": ""}

    # ── Resource release ──────────────────────────────────────────

    @abstractmethod
    async def _release(self) -> None:
        """Close the underlying browser resources. Called at most once."""
        ...

    async def cleanup(self) -> None:
        """Release the browser. Idempotent; never raises."""
        async with self._cleanup_lock:
            if self._closed:
                return
            self._closed = True
            try:
                await self._release()
            except Exception as e:
                logger.error(f"Driver cleanup error: {type(e).__name__}: {e}")


DriverFactory = Callable[[], Awaitable[AutomationDriver]]
