"""
Named job bodies.

The registry treats bodies as opaque async callables. This module holds the
canonical job names and the default bodies the control process ships with.
The deployment pipeline itself lives elsewhere; when the embedding
application provides one it is registered under DEPLOY_APPLICATION.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from .config import OrchestratorConfig
from .job_registry import JobBody, JobRegistry
from .shell import ShellCommandError, ShellResult, exec_shell

logger = logging.getLogger("jobs")

DEPLOY_APPLICATION = "deployApplication"
CLEANUP_STORAGE = "cleanupStorage"
AUTO_UPDATER = "autoUpdater"
LIVENESS = "liveness"

ShellRunner = Callable[[str], Awaitable[ShellResult]]


class Heartbeat:
    """Last time the liveness job ran."""

    def __init__(self):
        self.last_beat_at: Optional[datetime] = None
        self.beats = 0

    async def beat(self) -> None:
        self.last_beat_at = datetime.utcnow()
        self.beats += 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "last_beat_at": self.last_beat_at.isoformat() if self.last_beat_at else None,
            "beats": self.beats,
        }


def make_cleanup_storage(shell: ShellRunner, commands: Sequence[str]) -> JobBody:
    """Build the storage cleanup body: run every cleanup command in order."""

    async def cleanup_storage() -> int:
        failed = 0
        for command in commands:
            try:
                await shell(command)
            except (ShellCommandError, OSError) as e:
                failed += 1
                logger.warning(f"Cleanup command failed: {e}")
        logger.info(f"Storage cleanup finished ({len(commands) - failed}/{len(commands)} commands succeeded)")
        return failed

    return cleanup_storage


def make_auto_updater(shell: ShellRunner, update_command: Optional[str]) -> JobBody:
    """Build the auto-update body around the configured update command."""

    async def auto_updater() -> Optional[ShellResult]:
        if not update_command:
            logger.warning("Update available but no update command is configured")
            return None
        logger.info(f"Running update command: {update_command}")
        result = await shell(update_command)
        logger.info("Update command finished")
        return result

    return auto_updater


def register_default_jobs(
    registry: JobRegistry,
    config: OrchestratorConfig,
    heartbeat: Heartbeat,
    shell: ShellRunner = exec_shell,
    deploy_pipeline: Optional[JobBody] = None,
) -> List[str]:
    """
    Register the job bodies the triggers start.

    None of them carries its own schedule: the periodic triggers decide
    when they run.
    """
    registry.register(LIVENESS, heartbeat.beat)
    registry.register(CLEANUP_STORAGE, make_cleanup_storage(shell, config.cleanup_commands))
    registry.register(AUTO_UPDATER, make_auto_updater(shell, config.update_command))
    if deploy_pipeline is not None:
        registry.register(DEPLOY_APPLICATION, deploy_pipeline)
    else:
        logger.info(f"No deployment pipeline supplied, {DEPLOY_APPLICATION} not registered")
    return registry.names()
