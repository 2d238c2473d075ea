"""
Tests for the pending session registry.
"""

import asyncio

import pytest

from campuslink.credentials import Credentials
from campuslink.linking import SessionRegistry

from conftest import FakeClock, FakeDriver

CREDS = Credentials(username="alice@psu.edu", password="p@ss")


def make_registry(clock=None, ttl=600.0):
    return SessionRegistry(ttl_seconds=ttl, clock=clock or FakeClock())


class TestSessionIds:
    def test_ids_are_unique_and_long(self):
        ids = {SessionRegistry.new_session_id() for _ in range(500)}
        assert len(ids) == 500
        # 32 random bytes, urlsafe base64 without padding
        assert all(len(session_id) >= 43 for session_id in ids)

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        registry = make_registry()
        await registry.create("sid", FakeDriver(), "user-1", CREDS)
        with pytest.raises(ValueError):
            await registry.create("sid", FakeDriver(), "user-1", CREDS)


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_returns_live_entry(self):
        registry = make_registry()
        driver = FakeDriver()
        await registry.create("sid", driver, "user-1", CREDS)

        entry = await registry.get("sid")
        assert entry.user_id == "user-1"
        assert entry.driver is driver
        assert entry.credentials == CREDS
        assert await registry.get("other") is None

    @pytest.mark.asyncio
    async def test_find_by_user(self):
        registry = make_registry()
        await registry.create("sid", FakeDriver(), "user-1", CREDS)
        assert (await registry.find_by_user("user-1")).session_id == "sid"
        assert await registry.find_by_user("user-2") is None


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_session_is_evicted_on_lookup(self):
        clock = FakeClock()
        registry = make_registry(clock)
        driver = FakeDriver()
        entry = await registry.create("sid", driver, "user-1", CREDS)

        clock.advance(599)
        assert await registry.get("sid") is entry

        clock.advance(1)
        assert await registry.get("sid") is None
        assert "sid" not in registry
        assert driver.release_count == 1
        assert entry.credentials is None

    @pytest.mark.asyncio
    async def test_sweep_evicts_without_lookup(self):
        clock = FakeClock()
        expired = []

        async def on_expire(entry):
            expired.append(entry.user_id)

        registry = SessionRegistry(ttl_seconds=600, clock=clock, on_expire=on_expire)
        old_driver, new_driver = FakeDriver(), FakeDriver()
        await registry.create("old", old_driver, "user-1", CREDS)
        clock.advance(300)
        await registry.create("new", new_driver, "user-2", CREDS)
        clock.advance(301)

        assert await registry.evict_expired() == 1
        assert expired == ["user-1"]
        assert old_driver.release_count == 1
        assert new_driver.release_count == 0
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_retired_session_expires_without_callback(self):
        clock = FakeClock()
        expired = []

        async def on_expire(entry):
            expired.append(entry.user_id)

        registry = SessionRegistry(ttl_seconds=600, clock=clock, on_expire=on_expire)
        entry = await registry.create("sid", FakeDriver(), "user-1", CREDS)
        entry.terminal = "done"
        await registry.retire("sid", 5)

        clock.advance(4)
        assert await registry.get("sid") is entry
        clock.advance(1)
        assert await registry.get("sid") is None
        assert expired == []

    @pytest.mark.asyncio
    async def test_sweeper_task_runs_and_stops(self):
        clock = FakeClock()
        registry = make_registry(clock, ttl=10)
        driver = FakeDriver()
        await registry.create("sid", driver, "user-1", CREDS)
        clock.advance(11)

        registry.start_sweeper(interval=0.01)
        for _ in range(50):
            if "sid" not in registry:
                break
            await asyncio.sleep(0.01)
        await registry.stop()

        assert "sid" not in registry
        assert driver.release_count == 1


class TestRemoval:
    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self):
        registry = make_registry()
        driver = FakeDriver()
        entry = await registry.create("sid", driver, "user-1", CREDS)

        assert await registry.remove("sid") is True
        assert await registry.remove("sid") is False
        assert driver.release_count == 1
        assert entry.released

    @pytest.mark.asyncio
    async def test_evict_waits_for_entry_lock(self):
        registry = make_registry()
        driver = FakeDriver()
        entry = await registry.create("sid", driver, "user-1", CREDS)

        await entry.lock.acquire()
        evicting = asyncio.create_task(registry.evict("sid"))
        await asyncio.sleep(0.01)

        assert "sid" not in registry
        assert entry.released
        assert driver.release_count == 0

        entry.lock.release()
        assert await evicting is True
        assert driver.release_count == 1
        assert await registry.evict("sid") is False

    @pytest.mark.asyncio
    async def test_close_all_releases_every_driver(self):
        registry = make_registry()
        drivers = [FakeDriver() for _ in range(3)]
        for i, driver in enumerate(drivers):
            await registry.create(f"sid-{i}", driver, f"user-{i}", CREDS)

        assert await registry.close_all() == 3
        assert len(registry) == 0
        assert [d.release_count for d in drivers] == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_driver_cleanup_runs_once(self):
        driver = FakeDriver()
        await asyncio.gather(driver.cleanup(), driver.cleanup(), driver.cleanup())
        assert driver.release_count == 1
        assert driver.closed
