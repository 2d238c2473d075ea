"""
Playwright login driver for Penn State (Microsoft Entra ID + Authenticator push).

Flow:
    1. Open the Microsoft login page
    2. Email → Next → password → Sign in
    3. Classify the landing page (portal / push challenge / failure)
    4. While the push is pending, poll the page in short bounded waits,
       answer "Stay signed in?" with No, and once the MFA page is left,
       land on the campus portal and capture the session cookies
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from ..config import LinkConfig
from ..credentials import Credentials
from ..errors import InternalAutomationError
from ..logging import get_logger, mask_identifier
from .base import AutomationDriver
from .classifier import (
    REASON_UNREACHABLE,
    REASON_UNRECOGNIZED,
    PageSnapshot,
    classify_approval,
    classify_login,
    is_on_portal,
)
from .outcomes import ApprovalOutcome, ApprovalResult, LoginOutcome, LoginResult, SessionData

logger = get_logger("automation")

_LAUNCH_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
]

_EMAIL_SELECTORS = 'input[type="email"], #i0116'
_PASSWORD_SELECTORS = 'input[type="password"], #i0118'
_SUBMIT_SELECTORS = '#idSIButton9, button[type="submit"], input[type="submit"]'
_STAY_SIGNED_IN_NO = "#idBtn_Back"

_POLL_INTERVAL_S = 1.0
# Time for the MFA screen to render the number after the password is accepted
_MFA_SETTLE_S = 3.0
# Floor for one page read, so a zero budget still sees the page once
_MIN_SNAPSHOT_S = 0.25
_PAGE_INFO_TIMEOUT_S = 2.0


class PlaywrightLoginDriver(AutomationDriver):
    """Drives one headless Chromium session through the Penn State login."""

    def __init__(
        self,
        config: LinkConfig,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
    ):
        super().__init__()
        self.config = config
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        # Polls that ended on a page no classifier recognized
        self._unrecognized_polls = 0

    @classmethod
    async def launch(cls, config: LinkConfig) -> "PlaywrightLoginDriver":
        """Start a browser and return a driver that owns it."""
        playwright = None
        browser = None
        try:
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(
                headless=config.headless,
                args=_LAUNCH_ARGS,
            )
            context = await browser.new_context(
                user_agent=config.user_agent,
                viewport={"width": 1200, "height": 900},
                locale="en-US",
            )
            page = await context.new_page()
        except PlaywrightError as e:
            logger.error(f"Failed to launch browser: {e}")
            if browser is not None:
                await browser.close()
            if playwright is not None:
                await playwright.stop()
            raise InternalAutomationError("browser launch failed") from e

        logger.debug("Browser launched")
        return cls(config, playwright, browser, context, page)

    # ── Helpers ───────────────────────────────────────────────────

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def _remaining_ms(self, deadline: float) -> int:
        return int((deadline - self._now()) * 1000)

    def _ensure_open(self) -> Page:
        if self.closed:
            raise InternalAutomationError("driver already cleaned up")
        return self._page

    async def _safe_goto(self, page: Page, url: str, timeout_ms: int) -> bool:
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            logger.warning(f"Navigation timed out: {url}")
            return False
        except PlaywrightError as e:
            logger.warning(f"Navigation error for {url}: {e}")
            return False

    async def _wait_for_network_idle(self, page: Page, timeout_ms: int) -> None:
        # Idle timeouts are not fatal; the page may keep a connection open
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightTimeout:
            pass

    async def _snapshot(self, page: Optional[Page] = None) -> PageSnapshot:
        page = page or self._page
        return PageSnapshot.from_html(page.url, await page.content())

    async def _snapshot_before(self, deadline: float) -> Optional[PageSnapshot]:
        """Read the page, or None if it does not answer before *deadline*."""
        budget = max(deadline - self._now(), _MIN_SNAPSHOT_S)
        try:
            return await asyncio.wait_for(self._snapshot(), timeout=budget)
        except asyncio.TimeoutError:
            logger.debug("Page did not answer within the poll budget")
            return None

    async def _submit(self, page: Page, field_selector: str) -> None:
        submit = await page.query_selector(_SUBMIT_SELECTORS)
        if submit is not None:
            try:
                await submit.click(timeout=10_000, no_wait_after=True)
                return
            except PlaywrightTimeout:
                pass
        await page.press(field_selector, "Enter")

    async def _fill_field(self, page: Page, selector: str, value: str, timeout_ms: int) -> bool:
        try:
            await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
        except PlaywrightTimeout:
            return False
        await page.fill(selector, "")
        await page.fill(selector, value)
        return True

    async def _session_data(self, page: Page) -> SessionData:
        cookies = await self._context.cookies()
        user_agent = await page.evaluate("() => navigator.userAgent")
        return SessionData(cookies=list(cookies), user_agent=user_agent)

    async def _decline_stay_signed_in(self, page: Page, timeout_ms: int) -> None:
        if timeout_ms <= 0:
            return
        try:
            button = await page.query_selector(_STAY_SIGNED_IN_NO)
            if button is not None and await button.is_visible():
                logger.info("Declining 'Stay signed in?' prompt")
                await button.click(timeout=min(timeout_ms, 5_000), no_wait_after=True)
        except PlaywrightTimeout:
            pass

    async def _land_on_portal(self, deadline: float) -> bool:
        """Get the page onto the campus portal before *deadline*.

        The current tab is checked first, then each portal URL is tried
        with whatever budget is left. Nothing starts once the budget is gone.
        """
        page = self._page
        remaining = self._remaining_ms(deadline)
        if remaining > 0:
            await self._wait_for_network_idle(page, min(remaining, 3_000))
        if is_on_portal(page.url):
            return True
        for url in self.config.portal_urls:
            remaining = self._remaining_ms(deadline)
            if remaining <= 0:
                return False
            if await self._safe_goto(page, url, remaining) and is_on_portal(page.url):
                return True
        return False

    # ── Login flow ────────────────────────────────────────────────

    async def login(self, creds: Credentials) -> LoginOutcome:
        page = self._ensure_open()
        timeout_ms = self.config.navigation_timeout_ms
        logger.info(f"Starting login for {mask_identifier(creds.username)}")

        try:
            if not await self._safe_goto(page, self.config.login_url, timeout_ms):
                return LoginOutcome.failed(REASON_UNREACHABLE)

            # Step 1: email
            if not await self._fill_field(page, _EMAIL_SELECTORS, creds.username, timeout_ms):
                logger.warning(f"Email field not found. URL: {page.url[:120]}")
                return classify_login(await self._snapshot())
            await self._submit(page, _EMAIL_SELECTORS)
            await self._wait_for_network_idle(page, 15_000)

            # Step 2: password
            if not await self._fill_field(page, _PASSWORD_SELECTORS, creds.password, timeout_ms):
                # Unknown account errors are shown on the email step
                outcome = classify_login(await self._snapshot())
                logger.warning(f"Password field not found, classified as {outcome.kind.value}")
                if outcome.kind == LoginResult.SUCCESS:
                    return LoginOutcome.failed(REASON_UNRECOGNIZED)
                return outcome
            await self._submit(page, _PASSWORD_SELECTORS)
            await self._wait_for_network_idle(page, 20_000)

            outcome = classify_login(await self._snapshot())
            if outcome.kind == LoginResult.CHALLENGE and outcome.match_code is None:
                # The number is sometimes rendered after the prompt text
                await asyncio.sleep(_MFA_SETTLE_S)
                outcome = classify_login(await self._snapshot())

            if outcome.kind == LoginResult.SUCCESS:
                if not await self._land_on_portal(self._now() + timeout_ms / 1000):
                    return LoginOutcome.failed(REASON_UNRECOGNIZED)
                logger.info("Login succeeded without MFA")
                return LoginOutcome.success(await self._session_data(page))

            if outcome.kind == LoginResult.CHALLENGE:
                logger.info(
                    "Push challenge issued"
                    + (" with number match" if outcome.match_code else "")
                )
            else:
                logger.info(f"Login failed: {outcome.reason}")
            return outcome

        except PlaywrightError as e:
            info = await self.page_info()
            logger.error(
                f"Browser error during login: {type(e).__name__}: {e} "
                f"(url={info['url'][:120]}, title={info['title'][:60]!r})"
            )
            raise InternalAutomationError("browser error during login") from e

    async def wait_for_approval_and_complete(self, timeout_ms: int) -> ApprovalOutcome:
        page = self._ensure_open()
        deadline = self._now() + max(timeout_ms, 0) / 1000

        try:
            verdict: Optional[ApprovalOutcome] = None
            while True:
                snapshot = await self._snapshot_before(deadline)
                if snapshot is None:
                    return ApprovalOutcome.pending()
                verdict = classify_approval(snapshot)

                if verdict is None and self._unrecognized_polls:
                    # Still off the known pages a poll later: only a
                    # confirmed portal landing counts as approval
                    return await self._resolve_unrecognized(deadline)
                if verdict is not None:
                    self._unrecognized_polls = 0

                if verdict is not None and verdict.kind == ApprovalResult.DENIED:
                    logger.info(f"Push request denied: {verdict.reason}")
                    return verdict

                if verdict is not None and verdict.kind == ApprovalResult.APPROVED:
                    if await self._land_on_portal(deadline):
                        logger.info("Push request approved, portal reached")
                        return ApprovalOutcome.approved(await self._session_data(page))
                    # Redirect chain still running; the next poll retries
                    return ApprovalOutcome.pending()

                if snapshot.has_stay_signed_in:
                    await self._decline_stay_signed_in(page, self._remaining_ms(deadline))

                remaining = deadline - self._now()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(_POLL_INTERVAL_S, remaining))

            if verdict is None:
                self._unrecognized_polls += 1
                logger.debug(f"No verdict within {timeout_ms}ms on {page.url[:120]}")
            return ApprovalOutcome.pending()

        except PlaywrightError as e:
            info = await self.page_info()
            logger.error(
                f"Browser error while waiting for approval: {type(e).__name__}: {e} "
                f"(url={info['url'][:120]}, title={info['title'][:60]!r})"
            )
            raise InternalAutomationError("browser error during approval") from e

    async def _resolve_unrecognized(self, deadline: float) -> ApprovalOutcome:
        page = self._page
        self._unrecognized_polls = 0
        if await self._land_on_portal(deadline):
            logger.info("Portal reached from an unrecognized page")
            return ApprovalOutcome.approved(await self._session_data(page))
        logger.warning(f"Unrecognized page while waiting for approval: {page.url[:120]}")
        return ApprovalOutcome.denied(REASON_UNRECOGNIZED)

    async def page_info(self) -> dict:
        if self.closed:
            return {"url": "unknown", "title": "unknown", "content": ""}
        try:
            snapshot = await asyncio.wait_for(self._snapshot(), timeout=_PAGE_INFO_TIMEOUT_S)
        except (PlaywrightError, asyncio.TimeoutError) as e:
            logger.debug(f"Page info unavailable: {type(e).__name__}")
            return {"url": "unknown", "title": "unknown", "content": ""}
        return {"url": snapshot.url, "title": snapshot.title, "content": snapshot.text[:1000]}

    # ── Resource release ──────────────────────────────────────────

    async def _release(self) -> None:
        try:
            await self._context.close()
            await self._browser.close()
        finally:
            await self._playwright.stop()
        logger.debug("Browser closed")
