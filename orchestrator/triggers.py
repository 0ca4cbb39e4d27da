"""
Periodic Trigger Set

Independent timer-driven checks that decide whether a job should run.
Each trigger is registered in the job registry under its own name, so a
slow check (e.g. a hanging version feed) is single-flight as well.

Triggers:
- liveness: every 2s, re-arms the liveness job if it is not active
- update-check: every 15min (5s in development); starts the auto-updater
  when auto-update is enabled, a newer version is published and no
  deployment is in flight
- storage-cleanup: every 10min (5s in development); starts the cleanup job
  when neither a deployment nor another cleanup is in flight

No ordering is assumed between triggers.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Protocol

from .config import OrchestratorConfig
from .job_registry import IntervalSchedule, JobRegistry
from .jobs import AUTO_UPDATER, CLEANUP_STORAGE, DEPLOY_APPLICATION, LIVENESS
from .state_store import StateStore
from .version_feed import VersionFeedError
from .versioning import VersionOrder, compare_versions

logger = logging.getLogger("triggers")

LIVENESS_TRIGGER = "trigger:liveness"
UPDATE_CHECK_TRIGGER = "trigger:update-check"
STORAGE_CLEANUP_TRIGGER = "trigger:storage-cleanup"


class TriggerOutcome(str, Enum):
    """What a single trigger firing decided."""
    STARTED = "started"
    ALREADY_ACTIVE = "already_active"
    BLOCKED = "blocked"
    DISABLED = "disabled"
    UP_TO_DATE = "up_to_date"
    FEED_ERROR = "feed_error"


class LatestVersionSource(Protocol):
    async def fetch_latest_version(self, current_version: str) -> str:
        ...


@dataclass(frozen=True)
class Trigger:
    """A named periodic check."""
    name: str
    interval_seconds: float
    check: Callable[[], Awaitable[TriggerOutcome]]


class PeriodicTriggerSet:
    """Builds and arms the periodic triggers against a shared registry."""

    def __init__(
        self,
        registry: JobRegistry,
        store: StateStore,
        feed: LatestVersionSource,
        config: OrchestratorConfig,
    ):
        self.registry = registry
        self.store = store
        self.feed = feed
        self.config = config
        self.last_outcomes: Dict[str, TriggerOutcome] = {}

    def triggers(self) -> List[Trigger]:
        return [
            Trigger(LIVENESS_TRIGGER, self.config.liveness_interval, self.check_liveness),
            Trigger(UPDATE_CHECK_TRIGGER, self.config.update_check_interval, self.check_for_update),
            Trigger(STORAGE_CLEANUP_TRIGGER, self.config.storage_cleanup_interval, self.check_storage_cleanup),
        ]

    def arm(self) -> List[Trigger]:
        """Register every trigger with its interval schedule."""
        armed = self.triggers()
        for trigger in armed:
            self.registry.register(
                trigger.name,
                self._recording(trigger),
                IntervalSchedule(trigger.interval_seconds),
            )
        logger.info(
            "Armed triggers: "
            + ", ".join(f"{t.name} every {t.interval_seconds:g}s" for t in armed)
        )
        return armed

    def _recording(self, trigger: Trigger) -> Callable[[], Awaitable[TriggerOutcome]]:
        async def run() -> TriggerOutcome:
            outcome = await trigger.check()
            self.last_outcomes[trigger.name] = outcome
            return outcome
        return run

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    async def check_liveness(self) -> TriggerOutcome:
        """Re-arm the liveness job if it has exited."""
        if self.registry.is_active(LIVENESS):
            return TriggerOutcome.ALREADY_ACTIVE
        started = await self.registry.run_once(LIVENESS)
        return TriggerOutcome.STARTED if started else TriggerOutcome.ALREADY_ACTIVE

    async def check_for_update(self) -> TriggerOutcome:
        """Start the auto-updater when a newer version is published."""
        setting = await self.store.get_setting()
        if not setting.auto_update_enabled:
            return TriggerOutcome.DISABLED

        current_version = self.config.app_version
        try:
            latest = await self.feed.fetch_latest_version(current_version)
            order = compare_versions(latest, current_version)
        except (VersionFeedError, ValueError) as e:
            # Next interval retries
            logger.warning(f"Update check skipped: {e}")
            return TriggerOutcome.FEED_ERROR

        if order is not VersionOrder.NEWER:
            logger.debug(f"No update available (latest {latest}, current {current_version})")
            return TriggerOutcome.UP_TO_DATE

        if self.registry.is_active(DEPLOY_APPLICATION):
            logger.info(f"Update {latest} available, waiting for in-flight deployment")
            return TriggerOutcome.BLOCKED

        started = await self.registry.run_once(AUTO_UPDATER, unless_active=(DEPLOY_APPLICATION,))
        if started:
            logger.info(f"Update {latest} available (current {current_version}), auto-updater started")
            return TriggerOutcome.STARTED
        return self._not_started_outcome(AUTO_UPDATER)

    async def check_storage_cleanup(self) -> TriggerOutcome:
        """Start storage cleanup unless a deployment or a cleanup is in flight."""
        started = await self.registry.run_once(
            CLEANUP_STORAGE,
            unless_active=(DEPLOY_APPLICATION, CLEANUP_STORAGE),
        )
        if started:
            return TriggerOutcome.STARTED
        return self._not_started_outcome(CLEANUP_STORAGE)

    def _not_started_outcome(self, name: str) -> TriggerOutcome:
        if self.registry.is_active(name):
            return TriggerOutcome.ALREADY_ACTIVE
        return TriggerOutcome.BLOCKED

    def describe(self) -> Dict[str, str]:
        return {name: outcome.value for name, outcome in self.last_outcomes.items()}
