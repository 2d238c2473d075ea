"""Shared fakes and fixtures for the linking tests."""

import asyncio
from datetime import datetime
from typing import Optional

import pytest

from campuslink.automation.base import AutomationDriver
from campuslink.automation.outcomes import ApprovalOutcome, LoginOutcome
from campuslink.config import LinkConfig
from campuslink.db.models import CredentialRecord, LinkedAccountStatus, LinkedUser, utcnow
from campuslink.linking import LinkingService, SessionRegistry
from campuslink.vault import CredentialVault

SECRET = "s" * 40
TOKEN_SECRET = "t" * 40


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUserRepository:
    """In-memory stand-in for UserRepository."""

    def __init__(self):
        self.users: dict[str, LinkedUser] = {}
        self.status_history: list[tuple[str, LinkedAccountStatus]] = []

    def add(self, user_id: str, status: LinkedAccountStatus = LinkedAccountStatus.NOT_LINKED) -> LinkedUser:
        user = LinkedUser(id=user_id, email=f"{user_id}@example.com", linked_status=status)
        self.users[user_id] = user
        return user

    async def find_by_id(self, user_id: str) -> Optional[LinkedUser]:
        return self.users.get(user_id)

    async def update_link_status(
        self,
        user_id: str,
        status: LinkedAccountStatus,
        email: Optional[str] = None,
        linked_at: Optional[datetime] = None,
        last_sync: Optional[datetime] = None,
    ) -> Optional[LinkedUser]:
        user = self.users.get(user_id)
        if user is None:
            return None
        user.linked_status = status
        if status == LinkedAccountStatus.NOT_LINKED:
            user.linked_email = None
            user.linked_at = None
            user.last_sync = None
        else:
            user.linked_email = email.lower() if email else user.linked_email
            user.linked_at = linked_at or user.linked_at
            user.last_sync = last_sync or user.last_sync
        user.updated_at = utcnow()
        self.status_history.append((user_id, status))
        return user


class FakeCredentialRepository:
    """In-memory stand-in for CredentialRepository."""

    def __init__(self):
        self.records: dict[str, CredentialRecord] = {}
        self.writes = 0

    async def upsert(self, user_id, encrypted_username, encrypted_password, key_fingerprint):
        self.writes += 1
        existing = self.records.get(user_id)
        record = CredentialRecord(
            user_id=user_id,
            encrypted_username=encrypted_username,
            encrypted_password=encrypted_password,
            key_fingerprint=key_fingerprint,
            id=existing.id if existing else f"cred-{user_id}",
            created_at=existing.created_at if existing else utcnow(),
        )
        self.records[user_id] = record
        return record

    async def fetch(self, user_id):
        return self.records.get(user_id)

    async def exists(self, user_id):
        return user_id in self.records

    async def delete(self, user_id):
        return self.records.pop(user_id, None) is not None

    async def delete_older_than(self, cutoff):
        stale = [uid for uid, rec in self.records.items() if rec.updated_at < cutoff]
        for uid in stale:
            del self.records[uid]
        return len(stale)

    async def list_user_ids(self):
        return sorted(self.records)


class FakeDriver(AutomationDriver):
    """Scripted driver: returns queued outcomes, counts releases."""

    def __init__(
        self,
        login_outcome: Optional[LoginOutcome] = None,
        approvals: Optional[list] = None,
        login_error: Optional[Exception] = None,
        approval_error: Optional[Exception] = None,
    ):
        super().__init__()
        self.login_outcome = login_outcome or LoginOutcome.challenge("42")
        self.approvals = list(approvals or [ApprovalOutcome.pending()])
        self.login_error = login_error
        self.approval_error = approval_error
        self.login_calls = 0
        self.approval_calls = 0
        self.release_count = 0

    async def login(self, creds):
        self.login_calls += 1
        await asyncio.sleep(0)
        if self.login_error is not None:
            raise self.login_error
        return self.login_outcome

    async def wait_for_approval_and_complete(self, timeout_ms):
        self.approval_calls += 1
        await asyncio.sleep(0)
        if self.approval_error is not None:
            raise self.approval_error
        if len(self.approvals) > 1:
            return self.approvals.pop(0)
        return self.approvals[0]

    async def _release(self):
        self.release_count += 1


class DriverPool:
    """Driver factory handing out prepared drivers, or fresh challenge drivers."""

    def __init__(self):
        self.queue: list[FakeDriver] = []
        self.created: list[FakeDriver] = []

    def push(self, driver: FakeDriver) -> FakeDriver:
        self.queue.append(driver)
        return driver

    async def __call__(self) -> FakeDriver:
        driver = self.queue.pop(0) if self.queue else FakeDriver()
        self.created.append(driver)
        return driver


class SecretHolder:
    def __init__(self, secret: str = SECRET):
        self.secret = secret

    def __call__(self) -> str:
        return self.secret


@pytest.fixture
def config():
    return LinkConfig(
        credential_secret=SECRET,
        token_secret=TOKEN_SECRET,
        environment="test",
        approval_wait_seconds=0.0,
        finalize_grace_seconds=5.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users():
    repo = FakeUserRepository()
    repo.add("user-1")
    repo.add("user-2")
    return repo


@pytest.fixture
def credential_repo():
    return FakeCredentialRepository()


@pytest.fixture
def secret():
    return SecretHolder()


@pytest.fixture
def vault(secret, credential_repo):
    return CredentialVault(secret, credential_repo)


@pytest.fixture
def registry(clock, config):
    return SessionRegistry(ttl_seconds=config.session_ttl_seconds, clock=clock)


@pytest.fixture
def drivers():
    return DriverPool()


@pytest.fixture
def service(vault, users, registry, drivers, config):
    return LinkingService(
        vault=vault,
        users=users,
        registry=registry,
        driver_factory=drivers,
        config=config,
    )
