"""
Unit Tests for the Periodic Trigger Set

Test coverage for:
- Liveness re-arm
- Auto-update gate: disabled flag, feed errors, version comparison,
  in-flight deployment
- Storage cleanup exclusion against deployment and cleanup
- Interval selection per environment and trigger registration
"""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from orchestrator.config import DEVELOPMENT
from orchestrator.job_registry import JobRegistry
from orchestrator.jobs import AUTO_UPDATER, CLEANUP_STORAGE, DEPLOY_APPLICATION, LIVENESS
from orchestrator.triggers import (
    LIVENESS_TRIGGER,
    STORAGE_CLEANUP_TRIGGER,
    UPDATE_CHECK_TRIGGER,
    PeriodicTriggerSet,
    TriggerOutcome,
)
from orchestrator.version_feed import VersionFeedError
from tests.conftest import FakeFeed


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def create_registry():
    """Registry with gated bodies for every named job."""
    registry = JobRegistry()
    gates = {}
    for name in (LIVENESS, DEPLOY_APPLICATION, CLEANUP_STORAGE, AUTO_UPDATER):
        gate = asyncio.Event()
        gates[name] = gate
        registry.register(name, gate.wait)
    return registry, gates


async def enable_auto_update(store, enabled=True):
    setting = await store.get_setting()
    await store.update_setting(setting.id, auto_update_enabled=enabled)


async def release_all(registry, gates):
    for gate in gates.values():
        gate.set()
    for name in gates:
        await registry.wait_for(name)


# -----------------------------------------------------------------------------
# Liveness
# -----------------------------------------------------------------------------
class TestLivenessTrigger:

    @pytest.mark.asyncio
    async def test_starts_inactive_job(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(), config)

        assert await triggers.check_liveness() == TriggerOutcome.STARTED
        assert registry.is_active(LIVENESS)
        await release_all(registry, gates)

    @pytest.mark.asyncio
    async def test_leaves_active_job_alone(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(), config)

        await triggers.check_liveness()
        assert await triggers.check_liveness() == TriggerOutcome.ALREADY_ACTIVE
        assert registry.get(LIVENESS).runs == 1
        await release_all(registry, gates)


# -----------------------------------------------------------------------------
# Auto-update
# -----------------------------------------------------------------------------
class TestUpdateCheckTrigger:

    @pytest.mark.asyncio
    async def test_disabled_never_runs_updater(self, store, config):
        registry, gates = create_registry()
        registry.run_once = AsyncMock(return_value=True)
        feed = FakeFeed(latest="99.0.0")
        triggers = PeriodicTriggerSet(registry, store, feed, config)
        await enable_auto_update(store, False)

        assert await triggers.check_for_update() == TriggerOutcome.DISABLED
        registry.run_once.assert_not_called()
        assert feed.calls == []

    @pytest.mark.asyncio
    async def test_newer_version_starts_updater(self, store, config):
        registry, gates = create_registry()
        feed = FakeFeed(latest="3.12.1")
        triggers = PeriodicTriggerSet(registry, store, feed, config)
        await enable_auto_update(store)

        assert await triggers.check_for_update() == TriggerOutcome.STARTED
        assert registry.is_active(AUTO_UPDATER)
        assert feed.calls == ["3.12.0"]
        await release_all(registry, gates)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("latest", ["3.12.0", "3.11.9", "3.12.0-rc.1"])
    async def test_not_newer_does_nothing(self, store, config, latest):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(latest=latest), config)
        await enable_auto_update(store)

        assert await triggers.check_for_update() == TriggerOutcome.UP_TO_DATE
        assert not registry.is_active(AUTO_UPDATER)

    @pytest.mark.asyncio
    async def test_blocked_by_active_deployment(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(latest="4.0.0"), config)
        await enable_auto_update(store)
        await registry.run_once(DEPLOY_APPLICATION)

        assert await triggers.check_for_update() == TriggerOutcome.BLOCKED
        assert not registry.is_active(AUTO_UPDATER)
        await release_all(registry, gates)

    @pytest.mark.asyncio
    async def test_updater_already_running(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(latest="4.0.0"), config)
        await enable_auto_update(store)
        await registry.run_once(AUTO_UPDATER)

        assert await triggers.check_for_update() == TriggerOutcome.ALREADY_ACTIVE
        assert registry.get(AUTO_UPDATER).runs == 1
        await release_all(registry, gates)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [VersionFeedError("unreachable"), None])
    async def test_feed_failures_skip_cycle(self, store, config, error):
        registry, gates = create_registry()
        feed = FakeFeed(latest="not-a-version", error=error)
        triggers = PeriodicTriggerSet(registry, store, feed, config)
        await enable_auto_update(store)

        assert await triggers.check_for_update() == TriggerOutcome.FEED_ERROR
        assert not registry.is_active(AUTO_UPDATER)

    @pytest.mark.asyncio
    async def test_uses_configured_version(self, store, config):
        registry, gates = create_registry()
        feed = FakeFeed(latest="3.12.1")
        triggers = PeriodicTriggerSet(registry, store, feed, replace(config, app_version="3.13.0"))
        await enable_auto_update(store)

        assert await triggers.check_for_update() == TriggerOutcome.UP_TO_DATE
        assert feed.calls == ["3.13.0"]


# -----------------------------------------------------------------------------
# Storage cleanup
# -----------------------------------------------------------------------------
class TestStorageCleanupTrigger:

    @pytest.mark.asyncio
    async def test_starts_when_idle(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(), config)

        assert await triggers.check_storage_cleanup() == TriggerOutcome.STARTED
        assert registry.is_active(CLEANUP_STORAGE)
        await release_all(registry, gates)

    @pytest.mark.asyncio
    async def test_refuses_during_deployment(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(), config)
        await registry.run_once(DEPLOY_APPLICATION)

        assert await triggers.check_storage_cleanup() == TriggerOutcome.BLOCKED
        assert not registry.is_active(CLEANUP_STORAGE)
        await release_all(registry, gates)

    @pytest.mark.asyncio
    async def test_refuses_overlapping_cleanup(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(), config)
        await registry.run_once(CLEANUP_STORAGE)

        assert await triggers.check_storage_cleanup() == TriggerOutcome.ALREADY_ACTIVE
        assert registry.get(CLEANUP_STORAGE).runs == 1
        await release_all(registry, gates)

    @pytest.mark.asyncio
    async def test_runs_again_after_deployment_finishes(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(), config)
        await registry.run_once(DEPLOY_APPLICATION)
        assert await triggers.check_storage_cleanup() == TriggerOutcome.BLOCKED

        gates[DEPLOY_APPLICATION].set()
        await registry.wait_for(DEPLOY_APPLICATION)

        assert await triggers.check_storage_cleanup() == TriggerOutcome.STARTED
        await release_all(registry, gates)


# -----------------------------------------------------------------------------
# Arming
# -----------------------------------------------------------------------------
class TestArming:

    def test_production_intervals(self, store, config):
        triggers = PeriodicTriggerSet(JobRegistry(), store, FakeFeed(), config)
        intervals = {t.name: t.interval_seconds for t in triggers.triggers()}

        assert intervals == {
            LIVENESS_TRIGGER: 2,
            UPDATE_CHECK_TRIGGER: 900,
            STORAGE_CLEANUP_TRIGGER: 600,
        }

    def test_development_intervals(self, store, config):
        dev = replace(config, environment=DEVELOPMENT)
        triggers = PeriodicTriggerSet(JobRegistry(), store, FakeFeed(), dev)
        intervals = {t.name: t.interval_seconds for t in triggers.triggers()}

        assert intervals[LIVENESS_TRIGGER] == 2
        assert intervals[UPDATE_CHECK_TRIGGER] == 5
        assert intervals[STORAGE_CLEANUP_TRIGGER] == 5

    def test_arm_registers_triggers_as_jobs(self, store, config):
        registry = JobRegistry()
        PeriodicTriggerSet(registry, store, FakeFeed(), config).arm()

        status = registry.status()
        assert status[LIVENESS_TRIGGER]["schedule"] == "every 2s"
        assert status[UPDATE_CHECK_TRIGGER]["schedule"] == "every 900s"
        assert status[STORAGE_CLEANUP_TRIGGER]["schedule"] == "every 600s"

    @pytest.mark.asyncio
    async def test_trigger_run_records_outcome(self, store, config):
        registry, gates = create_registry()
        triggers = PeriodicTriggerSet(registry, store, FakeFeed(), config)
        triggers.arm()

        await registry.run_once(STORAGE_CLEANUP_TRIGGER)
        await registry.wait_for(STORAGE_CLEANUP_TRIGGER)

        assert triggers.describe() == {STORAGE_CLEANUP_TRIGGER: "started"}
        await release_all(registry, gates)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
