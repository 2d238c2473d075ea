"""
Tests for the Playwright login driver's control flow, against a scripted page.
"""

import asyncio
import time
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from campuslink.automation.classifier import (
    REASON_BAD_CREDENTIALS,
    REASON_DENIED,
    REASON_UNRECOGNIZED,
)
from campuslink.automation.driver import PlaywrightLoginDriver
from campuslink.automation.outcomes import ApprovalResult, LoginResult
from campuslink.config import LinkConfig
from campuslink.credentials import Credentials
from campuslink.errors import InternalAutomationError

LOGIN_URL = "https://login.microsoftonline.com/common/login"
HANDOFF_URL = "https://login.microsoftonline.com/common/SAS/ProcessAuth"
PORTAL_URL = "https://psu-sp.transactcampus.com/PSU/AccountSummary.aspx"
INTERSTITIAL_URL = "https://sso.example.edu/interstitial"

EMAIL_PAGE = '<html><body><input type="email" id="i0116"><input type="submit" id="idSIButton9"></body></html>'
PASSWORD_PAGE = '<html><body><input type="password" id="i0118"><input type="submit" id="idSIButton9"></body></html>'
PUSH_PAGE = """
<html><body><div>Approve sign in request</div>
<div id="idRichContext_DisplaySign">57</div></body></html>
"""
UNKNOWN_ACCOUNT = """
<html><body><input type="email" id="i0116">
<div>We couldn't find an account with that username.</div></body></html>
"""
DENIED_PAGE = "<html><body><p>We didn't hear from you. Your request has been denied.</p></body></html>"
STAY_SIGNED_IN = """
<html><body><div>Stay signed in?</div>
<input type="button" id="idBtn_Back" value="No"><input type="submit" id="idSIButton9" value="Yes">
</body></html>
"""
PORTAL_PAGE = "<html><head><title>Account Summary</title></head><body>Balance</body></html>"
BLANK = "<html><body><div>Loading</div></body></html>"

CREDS = Credentials.parse("alice@psu.edu", "p@ss")


class ScriptedElement:
    def __init__(self, page: "ScriptedPage", selector: str):
        self.page = page
        self.selector = selector

    async def is_visible(self) -> bool:
        return True

    async def click(self, timeout=None, no_wait_after=None):
        self.page.clicked.append(self.selector)
        self.page.advance()


class ScriptedPage:
    """Page whose state moves along ``steps`` on every submit or click.

    With ``hang=True`` load-state waits and unrouted navigations use up
    their whole timeout before failing, like a portal that never answers.
    """

    def __init__(self, url: str, html: str, steps=None, routes=None, hang: bool = False):
        self.url = url
        self.html = html
        self.steps = list(steps or [])
        self.routes = dict(routes or {})
        self.hang = hang
        self.fill_error: Optional[Exception] = None
        self.visits: list[str] = []
        self.filled: dict[str, str] = {}
        self.clicked: list[str] = []

    def advance(self) -> None:
        if self.steps:
            self.url, self.html = self.steps.pop(0)

    def _find(self, selector: str):
        return BeautifulSoup(self.html, "html.parser").select_one(selector)

    async def content(self) -> str:
        return self.html

    async def goto(self, url, wait_until=None, timeout=None):
        self.visits.append(url)
        if url in self.routes:
            self.url, self.html = self.routes[url]
            return None
        if self.hang:
            await asyncio.sleep(timeout / 1000)
        raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded")

    async def wait_for_load_state(self, state=None, timeout=None):
        if self.hang:
            await asyncio.sleep(timeout / 1000)
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded")

    async def wait_for_selector(self, selector, state=None, timeout=None):
        if self._find(selector) is None:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded")

    async def fill(self, selector, value):
        if self.fill_error is not None:
            raise self.fill_error
        self.filled[selector] = value

    async def press(self, selector, key):
        self.advance()

    async def query_selector(self, selector):
        if self._find(selector) is None:
            return None
        return ScriptedElement(self, selector)

    async def evaluate(self, expression):
        return "scripted-agent"


@pytest.fixture
def driver_config():
    return LinkConfig(credential_secret="x" * 40, navigation_timeout_ms=1000)


def make_driver(config, page):
    context = MagicMock()
    context.cookies = AsyncMock(return_value=[{"name": "ASP.NET_SessionId", "value": "abc"}])
    context.close = AsyncMock()
    return PlaywrightLoginDriver(config, AsyncMock(), AsyncMock(), context, page)


class TestLogin:
    @pytest.mark.asyncio
    async def test_push_challenge_with_number(self, driver_config):
        page = ScriptedPage(
            "about:blank", "",
            routes={driver_config.login_url: (LOGIN_URL, EMAIL_PAGE)},
            steps=[(LOGIN_URL, PASSWORD_PAGE), (LOGIN_URL, PUSH_PAGE)],
        )
        outcome = await make_driver(driver_config, page).login(CREDS)

        assert outcome.kind == LoginResult.CHALLENGE
        assert outcome.match_code == "57"
        assert page.filled['input[type="password"], #i0118'] == "p@ss"

    @pytest.mark.asyncio
    async def test_missing_password_field_classifies_email_step(self, driver_config):
        page = ScriptedPage(
            "about:blank", "",
            routes={driver_config.login_url: (LOGIN_URL, EMAIL_PAGE)},
            steps=[(LOGIN_URL, UNKNOWN_ACCOUNT)],
        )
        outcome = await make_driver(driver_config, page).login(CREDS)

        assert outcome.kind == LoginResult.FAILED
        assert outcome.reason == REASON_BAD_CREDENTIALS

    @pytest.mark.asyncio
    async def test_portal_without_password_step_is_not_success(self, driver_config):
        page = ScriptedPage(
            "about:blank", "",
            routes={driver_config.login_url: (LOGIN_URL, EMAIL_PAGE)},
            steps=[(PORTAL_URL, PORTAL_PAGE)],
        )
        outcome = await make_driver(driver_config, page).login(CREDS)

        assert outcome.kind == LoginResult.FAILED
        assert outcome.reason == REASON_UNRECOGNIZED

    @pytest.mark.asyncio
    async def test_success_without_mfa_captures_session(self, driver_config):
        page = ScriptedPage(
            "about:blank", "",
            routes={driver_config.login_url: (LOGIN_URL, EMAIL_PAGE)},
            steps=[(LOGIN_URL, PASSWORD_PAGE), (PORTAL_URL, PORTAL_PAGE)],
        )
        outcome = await make_driver(driver_config, page).login(CREDS)

        assert outcome.kind == LoginResult.SUCCESS
        assert outcome.session.cookies[0]["name"] == "ASP.NET_SessionId"
        assert outcome.session.user_agent == "scripted-agent"

    @pytest.mark.asyncio
    async def test_browser_error_is_internal(self, driver_config):
        page = ScriptedPage("about:blank", "", routes={driver_config.login_url: (LOGIN_URL, EMAIL_PAGE)})
        page.fill_error = PlaywrightError("Target page, context or browser has been closed")

        with pytest.raises(InternalAutomationError):
            await make_driver(driver_config, page).login(CREDS)


class TestWaitForApproval:
    @pytest.mark.asyncio
    async def test_denied_page(self, driver_config):
        page = ScriptedPage(LOGIN_URL, DENIED_PAGE)
        outcome = await make_driver(driver_config, page).wait_for_approval_and_complete(1000)

        assert outcome.kind == ApprovalResult.DENIED
        assert outcome.reason == REASON_DENIED

    @pytest.mark.asyncio
    async def test_approval_counts_only_after_portal_landing(self, driver_config):
        page = ScriptedPage(HANDOFF_URL, BLANK, routes={driver_config.portal_urls[0]: (PORTAL_URL, PORTAL_PAGE)})
        outcome = await make_driver(driver_config, page).wait_for_approval_and_complete(2000)

        assert outcome.kind == ApprovalResult.APPROVED
        assert page.visits == [driver_config.portal_urls[0]]
        assert outcome.session.cookies

    @pytest.mark.asyncio
    async def test_unreachable_portal_stays_pending_within_budget(self, driver_config):
        page = ScriptedPage(HANDOFF_URL, BLANK, hang=True)
        driver = make_driver(driver_config, page)

        started = time.monotonic()
        outcome = await driver.wait_for_approval_and_complete(1000)
        elapsed = time.monotonic() - started

        assert outcome.kind == ApprovalResult.PENDING
        assert elapsed < 1.5

    @pytest.mark.asyncio
    async def test_unrecognized_page_is_bounded_and_then_denied(self, driver_config):
        page = ScriptedPage(INTERSTITIAL_URL, BLANK, hang=True)
        driver = make_driver(driver_config, page)

        started = time.monotonic()
        first = await driver.wait_for_approval_and_complete(1000)
        first_elapsed = time.monotonic() - started

        started = time.monotonic()
        second = await driver.wait_for_approval_and_complete(1000)
        second_elapsed = time.monotonic() - started

        assert first.kind == ApprovalResult.PENDING
        assert second.kind == ApprovalResult.DENIED
        assert second.reason == REASON_UNRECOGNIZED
        assert first_elapsed < 1.5
        assert second_elapsed < 1.5

    @pytest.mark.asyncio
    async def test_stay_signed_in_is_declined(self, driver_config):
        page = ScriptedPage(LOGIN_URL, STAY_SIGNED_IN, steps=[(PORTAL_URL, PORTAL_PAGE)])
        outcome = await make_driver(driver_config, page).wait_for_approval_and_complete(3000)

        assert page.clicked == ["#idBtn_Back"]
        assert outcome.kind == ApprovalResult.APPROVED

    @pytest.mark.asyncio
    async def test_push_page_keeps_waiting(self, driver_config):
        page = ScriptedPage(LOGIN_URL, PUSH_PAGE)
        outcome = await make_driver(driver_config, page).wait_for_approval_and_complete(0)
        assert outcome.kind == ApprovalResult.PENDING


class TestPageInfo:
    @pytest.mark.asyncio
    async def test_page_info_and_cleanup(self, driver_config):
        page = ScriptedPage(PORTAL_URL, PORTAL_PAGE)
        driver = make_driver(driver_config, page)

        info = await driver.page_info()
        assert info["url"] == PORTAL_URL
        assert info["title"] == "Account Summary"

        await driver.cleanup()
        await driver.cleanup()
        assert (await driver.page_info())["url"] == "unknown"
        driver._context.close.assert_awaited_once()
