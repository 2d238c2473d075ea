"""
Page classification for the Penn State (Microsoft Entra) login flow.

Everything here is pure: a ``PageSnapshot`` is built from a URL and the
page HTML, and the classifiers map it to a login or approval outcome. The
browser driver takes snapshots; tests build them from fixture HTML.

Ambiguous pages never classify as success. A false success would persist
credentials that were never verified.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from bs4 import BeautifulSoup

from .outcomes import ApprovalOutcome, LoginOutcome

# ---------------------------------------------------------------------------
# URL patterns
# ---------------------------------------------------------------------------

PORTAL_URL_PATTERNS: List[str] = [
    "transactcampus.com",
    "accountsummary.aspx",
    "accounttransaction.aspx",
]

# Identity provider hand-off endpoints seen right after MFA approval
SAML_HANDOFF_PATTERNS: List[str] = [
    "/saml2",
    "/sas/processauth",
]

LOGIN_HOST_PATTERNS: List[str] = [
    "login.microsoftonline.com",
    "login.live.com",
    "login.microsoft.com",
]

# ---------------------------------------------------------------------------
# DOM selectors
# ---------------------------------------------------------------------------

ERROR_BANNER_SELECTORS: List[str] = [
    "#usernameError",
    "#passwordError",
    "#idTD_Error",
    "#errorText",
    "#error",
    ".alert-error",
    ".error.ext-error",
]

OTP_INPUT_SELECTORS: List[str] = [
    'input[name="otc"]',
    "#idTxtBx_SAOTCC_OTC",
]

MATCH_CODE_SELECTORS: List[str] = [
    "#idRichContext_DisplaySign",
    ".displaySign",
]

STAY_SIGNED_IN_SELECTORS: List[str] = [
    "#idBtn_Back",
    "#KmsiCheckboxField",
]

# ---------------------------------------------------------------------------
# Text indicators (matched against lower-cased page text)
# ---------------------------------------------------------------------------

PUSH_INDICATORS: List[str] = [
    "approve sign-in request",
    "approve sign in request",
    "enter the number",
    "use the microsoft authenticator",
    "open your authenticator app",
    "waiting for approval",
]

DENIED_INDICATORS: List[str] = [
    "request has been denied",
    "request was denied",
    "we didn't hear from you",
    "authentication failed",
    "you've denied",
]

BAD_CREDENTIAL_INDICATORS: List[str] = [
    "your account or password is incorrect",
    "password is incorrect",
    "we couldn't find an account",
    "that microsoft account doesn't exist",
    "enter a valid email address",
]

STAY_SIGNED_IN_TEXT = "stay signed in?"

# ---------------------------------------------------------------------------
# Failure reason codes
# ---------------------------------------------------------------------------

REASON_BAD_CREDENTIALS = "credentials_rejected"
REASON_DENIED = "request_denied"
REASON_UNSUPPORTED_MFA = "unsupported_mfa_method"
REASON_LOGIN_FORM_PRESENT = "login_not_completed"
REASON_UNRECOGNIZED = "unrecognized_page"
REASON_UNREACHABLE = "login_page_unreachable"

_EXPLICIT_CODE_PATTERNS = [
    re.compile(r"enter\s+(?:the\s+)?number\s+(\d{2,3})\b", re.IGNORECASE),
    re.compile(r"number\s+(\d{2,3})\b", re.IGNORECASE),
    re.compile(r"code\s+(\d{2,3})\b", re.IGNORECASE),
    re.compile(r"\b(\d{2,3})\s+on\s+your", re.IGNORECASE),
    re.compile(r"\b(\d{2,3})\s+in\s+the", re.IGNORECASE),
]
_BARE_CODE_PATTERN = re.compile(r"\b(\d{2})\b")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class PageSnapshot:
    """What the classifiers need to know about one page state."""
    url: str
    text: str = ""
    title: str = ""
    error_banner: str = ""
    match_code_text: str = ""
    has_otp_input: bool = False
    has_password_input: bool = False
    has_stay_signed_in: bool = False

    @property
    def lower_text(self) -> str:
        return self.text.lower()

    @classmethod
    def from_html(cls, url: str, html: str) -> "PageSnapshot":
        """Parse a page's HTML into a snapshot."""
        soup = BeautifulSoup(html or "", "html.parser")
        for tag in soup(["script", "style", "noscript", "template"]):
            tag.decompose()

        text = _WHITESPACE.sub(" ", soup.get_text(" ", strip=True)).strip()
        title = soup.title.get_text(strip=True) if soup.title else ""

        error_banner = ""
        for selector in ERROR_BANNER_SELECTORS:
            el = soup.select_one(selector)
            if el is not None:
                banner = el.get_text(" ", strip=True)
                if banner:
                    error_banner = banner
                    break

        match_code_text = ""
        for selector in MATCH_CODE_SELECTORS:
            el = soup.select_one(selector)
            if el is not None and el.get_text(strip=True):
                match_code_text = el.get_text(strip=True)
                break

        has_stay_signed_in = STAY_SIGNED_IN_TEXT in text.lower() and any(
            soup.select_one(sel) is not None for sel in STAY_SIGNED_IN_SELECTORS
        )

        return cls(
            url=url,
            text=text,
            title=title,
            error_banner=error_banner,
            match_code_text=match_code_text,
            has_otp_input=any(soup.select_one(sel) is not None for sel in OTP_INPUT_SELECTORS),
            has_password_input=soup.select_one('input[type="password"]') is not None,
            has_stay_signed_in=has_stay_signed_in,
        )


def is_on_portal(url: str) -> bool:
    lowered = (url or "").lower()
    return any(pattern in lowered for pattern in PORTAL_URL_PATTERNS)


def is_saml_handoff(url: str) -> bool:
    lowered = (url or "").lower()
    return any(pattern in lowered for pattern in SAML_HANDOFF_PATTERNS)


def is_login_host(url: str) -> bool:
    lowered = (url or "").lower()
    return any(pattern in lowered for pattern in LOGIN_HOST_PATTERNS)


def _contains_any(text: str, indicators: List[str]) -> bool:
    return any(indicator in text for indicator in indicators)


def extract_match_code(snapshot: PageSnapshot) -> Optional[str]:
    """Find the number the user must enter in the authenticator app.

    Prefers the dedicated display element, then explicit phrasing such as
    "enter the number 42", then the first standalone two-digit number.
    """
    if snapshot.match_code_text.isdigit():
        return snapshot.match_code_text

    for pattern in _EXPLICIT_CODE_PATTERNS:
        match = pattern.search(snapshot.text)
        if match:
            return match.group(1)

    match = _BARE_CODE_PATTERN.search(snapshot.text)
    return match.group(1) if match else None


def is_push_challenge(snapshot: PageSnapshot) -> bool:
    return bool(snapshot.match_code_text) or _contains_any(snapshot.lower_text, PUSH_INDICATORS)


def classify_login(snapshot: PageSnapshot) -> LoginOutcome:
    """Classify the page reached after submitting the password."""
    if is_on_portal(snapshot.url):
        return LoginOutcome.success()

    text = snapshot.lower_text
    if snapshot.error_banner or _contains_any(text, BAD_CREDENTIAL_INDICATORS):
        return LoginOutcome.failed(REASON_BAD_CREDENTIALS)

    if _contains_any(text, DENIED_INDICATORS):
        return LoginOutcome.failed(REASON_DENIED)

    if is_push_challenge(snapshot):
        return LoginOutcome.challenge(extract_match_code(snapshot))

    # One-time code entry cannot be completed by push polling
    if snapshot.has_otp_input:
        return LoginOutcome.failed(REASON_UNSUPPORTED_MFA)

    if snapshot.has_password_input:
        return LoginOutcome.failed(REASON_LOGIN_FORM_PRESENT)

    return LoginOutcome.failed(REASON_UNRECOGNIZED)


def classify_approval(snapshot: PageSnapshot) -> Optional[ApprovalOutcome]:
    """Classify the page while waiting for MFA approval.

    Returns None when the page is not recognized (for example a redirect
    still in flight); the caller decides how long to tolerate that.
    An ``approved`` result here only means the MFA page was left; the
    driver still has to land on the portal before reporting approval.
    """
    if is_on_portal(snapshot.url) or is_saml_handoff(snapshot.url):
        return ApprovalOutcome.approved()

    text = snapshot.lower_text
    if _contains_any(text, DENIED_INDICATORS):
        return ApprovalOutcome.denied(REASON_DENIED)

    if snapshot.error_banner:
        return ApprovalOutcome.denied(REASON_DENIED)

    if snapshot.has_stay_signed_in or is_push_challenge(snapshot):
        return ApprovalOutcome.pending()

    if is_login_host(snapshot.url) and not snapshot.has_password_input:
        return ApprovalOutcome.pending()

    return None
