"""
Startup Reconciler

Runs once, early in boot, before any background job is armed:

1. Shared network: create the platform's docker network. "Already exists"
   is the normal case on every boot after the first.
2. Migrations: every migration whose threshold version is newer than the
   version persisted by the previous boot runs once, in threshold order.
   The built-in migration fails builds left queued/running by a crash.
3. Architecture: record the machine architecture if not yet known.

No step is fatal. Each step reports a StepResult and the process keeps
starting even when persistence is unavailable.
"""

import logging
import platform
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .models import BuildStatus
from .shell import ShellCommandError, ShellResult
from .state_store import StateStore, StateStoreError
from .versioning import VersionOrder, compare_versions, is_older, parse_version

logger = logging.getLogger("reconciler")

# Versions before this one did not track build status durably
BUILD_STATUS_THRESHOLD = "3.8.1"

# Prior version assumed when none has been persisted
BASELINE_VERSION = "0.0.0"

ShellRunner = Callable[[str], Awaitable[ShellResult]]
MigrationAction = Callable[[StateStore], Awaitable[Any]]


@dataclass(frozen=True)
class Migration:
    """A one-time state migration gated on the previous application version."""
    threshold: str
    name: str
    action: MigrationAction


@dataclass
class StepResult:
    """Outcome of one reconciliation step."""
    name: str
    ok: bool
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "ok": self.ok, "detail": self.detail}


@dataclass
class ReconciliationReport:
    """Outcome of a full startup reconciliation."""
    current_version: str
    prior_version: Optional[str] = None
    migrations_applied: List[str] = field(default_factory=list)
    steps: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "current_version": self.current_version,
            "prior_version": self.prior_version,
            "migrations_applied": list(self.migrations_applied),
            "steps": [step.to_dict() for step in self.steps],
        }


async def fail_interrupted_builds(store: StateStore) -> int:
    """Mark every queued or running build as failed."""
    updated = await store.update_builds_where_status_in(
        BuildStatus.in_flight_states(), BuildStatus.FAILED
    )
    if updated:
        logger.warning(f"Marked {updated} interrupted builds as failed")
    return updated


DEFAULT_MIGRATIONS = (
    Migration(BUILD_STATUS_THRESHOLD, "fail_interrupted_builds", fail_interrupted_builds),
)

_ORDER_SIGN = {VersionOrder.OLDER: -1, VersionOrder.EQUAL: 0, VersionOrder.NEWER: 1}


def _compare_migrations(a: Migration, b: Migration) -> int:
    return _ORDER_SIGN[compare_versions(a.threshold, b.threshold)]


def _baseline_version(prior: Optional[str]) -> str:
    if not prior:
        return BASELINE_VERSION
    try:
        parse_version(prior)
    except ValueError:
        logger.warning(f"Persisted version {prior!r} is not a version, treating it as {BASELINE_VERSION}")
        return BASELINE_VERSION
    return prior


def normalize_arch(machine: str) -> str:
    """Map platform.machine() output onto docker-style architecture names."""
    value = (machine or "").strip().lower()
    if value in ("x86_64", "amd64", "x64"):
        return "amd64"
    if value in ("aarch64", "arm64", "armv8", "armv8l"):
        return "arm64"
    return value


class StartupReconciler:
    """Brings persisted state back to a consistent condition after a restart."""

    def __init__(
        self,
        store: StateStore,
        shell: ShellRunner,
        current_version: str,
        docker_network: str,
        migrations: Sequence[Migration] = DEFAULT_MIGRATIONS,
        machine: Optional[Callable[[], str]] = None,
    ):
        self.store = store
        self.shell = shell
        self.current_version = current_version
        self.docker_network = docker_network
        self.migrations = sorted(migrations, key=cmp_to_key(_compare_migrations))
        self._machine = machine or platform.machine

    async def run(self) -> ReconciliationReport:
        """Run all steps in order. Never raises."""
        logger.info(f"Reconciling state for version {self.current_version}...")
        report = ReconciliationReport(current_version=self.current_version)

        report.steps.append(await self.ensure_network())
        report.steps.append(await self.run_migrations(report))
        report.steps.append(await self.fill_arch())

        for step in report.steps:
            if not step.ok:
                logger.warning(f"Reconciliation step {step.name} failed: {step.detail}")
        logger.info(f"Reconciliation finished (ok={report.ok})")
        return report

    async def ensure_network(self) -> StepResult:
        """Create the shared docker network if absent."""
        command = f"docker network create --attachable {self.docker_network}"
        try:
            await self.shell(command)
            logger.info(f"Created docker network {self.docker_network}")
            return StepResult("network", True, "created")
        except ShellCommandError as e:
            if e.already_exists:
                logger.debug(f"Docker network {self.docker_network} already exists")
                return StepResult("network", True, "already exists")
            # Best-effort: reported ok regardless
            logger.warning(f"Could not create docker network {self.docker_network}: {e}")
            return StepResult("network", True, f"skipped: {e}")
        except OSError as e:
            logger.warning(f"Could not run docker: {e}")
            return StepResult("network", True, f"skipped: {e}")

    async def run_migrations(self, report: ReconciliationReport) -> StepResult:
        """Run migrations newer than the previously persisted version."""
        try:
            prior = await self.store.get_app_version()
            report.prior_version = prior
            baseline = _baseline_version(prior)

            pending = [m for m in self.migrations if is_older(baseline, m.threshold)]
            for migration in pending:
                logger.info(f"Running migration {migration.name} (prior version {baseline} < {migration.threshold})")
                await migration.action(self.store)
                report.migrations_applied.append(migration.name)

            if prior != self.current_version:
                await self.store.set_app_version(self.current_version)
            return StepResult("migrations", True, f"{len(pending)} applied")
        except Exception as e:
            # Version is not advanced, so the failed migration is retried next boot
            logger.exception(f"Migration step failed: {e}")
            return StepResult("migrations", False, str(e))

    async def fill_arch(self) -> StepResult:
        """Record the machine architecture once."""
        try:
            setting = await self.store.get_setting()
            if setting.arch:
                return StepResult("arch", True, f"already set: {setting.arch}")

            arch = normalize_arch(self._machine())
            await self.store.update_setting(setting.id, arch=arch)
            logger.info(f"Recorded architecture: {arch}")
            return StepResult("arch", True, arch)
        except StateStoreError as e:
            logger.error(f"Could not record architecture: {e}")
            return StepResult("arch", False, str(e))
        except Exception as e:
            logger.exception(f"Architecture step failed: {e}")
            return StepResult("arch", False, f"{e.__class__.__name__}: {e}")

