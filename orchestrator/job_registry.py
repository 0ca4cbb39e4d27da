"""
Job Registry (Scheduler)

Tracks which named jobs are executing and runs them single-flight.

Features:
- Named job bodies (opaque async callables)
- Optional per-job schedule (fixed interval or cron expression)
- Single-flight: a run requested while the same job is active is dropped,
  never queued
- Exclusion: a run can be refused while any other named job is active
- Failure isolation: a body that raises is logged and its flag cleared;
  nothing propagates to the host process
- No retries: the next scheduled tick is the retry

Registry state is in-memory only and rebuilt on every process start.
Interrupted work is detected from build records, not from the registry.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

from croniter import croniter

logger = logging.getLogger("job_registry")

JobBody = Callable[[], Awaitable[Any]]


class UnknownJobError(KeyError):
    """Raised when a run is requested for a job that was never registered."""


# -----------------------------------------------------------------------------
# Schedules
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class IntervalSchedule:
    """Fire every `seconds`, first tick one interval after arming."""
    seconds: float

    def __post_init__(self):
        if self.seconds <= 0:
            raise ValueError(f"Interval must be positive, got {self.seconds}")

    def next_delay(self, now: datetime) -> float:
        return float(self.seconds)

    def describe(self) -> str:
        return f"every {self.seconds:g}s"


@dataclass(frozen=True)
class CronSchedule:
    """Fire on a cron expression, evaluated in local time."""
    expression: str

    def __post_init__(self):
        if not croniter.is_valid(self.expression):
            raise ValueError(f"Invalid cron expression: {self.expression!r}")

    def next_delay(self, now: datetime) -> float:
        next_fire = croniter(self.expression, now).get_next(datetime)
        return max(0.0, (next_fire - now).total_seconds())

    def describe(self) -> str:
        return f"cron '{self.expression}'"


Schedule = Union[IntervalSchedule, CronSchedule]


# -----------------------------------------------------------------------------
# Job Handle
# -----------------------------------------------------------------------------
@dataclass
class JobHandle:
    """A registered job and its in-memory run state."""
    name: str
    body: JobBody
    schedule: Optional[Schedule] = None
    active: bool = False
    runs: int = 0
    failures: int = 0
    dropped: int = 0
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    registered_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "active": self.active,
            "schedule": self.schedule.describe() if self.schedule else None,
            "runs": self.runs,
            "failures": self.failures,
            "dropped": self.dropped,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_error": self.last_error,
        }


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------
class JobRegistry:
    """
    Owns every named background job of the process.

    Created once at process start and passed to every trigger. The
    check-and-set in run_once happens under a mutex with no suspension
    point between the check and the flag update.
    """

    def __init__(self):
        self._handles: Dict[str, JobHandle] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._running: Dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def names(self) -> list:
        return sorted(self._handles)

    def get(self, name: str) -> Optional[JobHandle]:
        return self._handles.get(name)

    def register(self, name: str, body: JobBody, schedule: Optional[Schedule] = None) -> JobHandle:
        """
        Register a job body, optionally on a schedule.

        Registering an existing name replaces its body and schedule; run
        statistics and the active flag are kept, and the old timer is
        cancelled so a name never has two timers.
        """
        handle = self._handles.get(name)
        if handle is None:
            handle = JobHandle(name=name, body=body, schedule=schedule)
            self._handles[name] = handle
            logger.info(f"Registered job {name}" + (f" ({schedule.describe()})" if schedule else ""))
        else:
            handle.body = body
            handle.schedule = schedule
            logger.info(f"Re-registered job {name}" + (f" ({schedule.describe()})" if schedule else ""))

        self._cancel_timer(name)
        if self._started and schedule is not None:
            self._arm(handle)
        return handle

    def is_active(self, name: str) -> bool:
        """Non-blocking query of a job's run state. Unknown names are inactive."""
        handle = self._handles.get(name)
        return bool(handle and handle.active)

    async def run_once(self, name: str, unless_active: Iterable[str] = ()) -> bool:
        """
        Start one run of `name` unless it (or any job in `unless_active`) is active.

        Returns:
            True if a run was started, False if the request was dropped

        Raises:
            UnknownJobError: If `name` was never registered
        """
        handle = self._handles.get(name)
        if handle is None:
            raise UnknownJobError(name)

        with self._lock:
            if handle.active:
                handle.dropped += 1
                logger.debug(f"Job {name} already active, request dropped")
                return False

            blockers = [other for other in unless_active if other != name and self.is_active(other)]
            if blockers:
                logger.debug(f"Job {name} not started, blocked by active: {', '.join(blockers)}")
                return False

            handle.active = True

        try:
            task = asyncio.get_running_loop().create_task(self._execute(handle), name=f"job:{name}")
        except RuntimeError:
            handle.active = False
            raise
        self._running[name] = task
        return True

    async def wait_for(self, name: str) -> None:
        """Wait until the in-flight run of `name` (if any) has finished."""
        task = self._running.get(name)
        if task is not None:
            await asyncio.wait({task})

    def status(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every registered job."""
        return {name: handle.to_dict() for name, handle in sorted(self._handles.items())}

    def start(self) -> None:
        """Arm timers for every scheduled job."""
        if self._started:
            logger.warning("Job registry already started")
            return

        self._started = True
        for handle in self._handles.values():
            if handle.schedule is not None:
                self._arm(handle)
        logger.info(f"Job registry started ({len(self._timers)} scheduled jobs)")

    async def stop(self) -> None:
        """Cancel all timers and in-flight runs."""
        self._started = False
        tasks = list(self._timers.values()) + list(self._running.values())
        self._timers.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        # A task cancelled before its first step never reaches its finally block
        self._running.clear()
        for handle in self._handles.values():
            handle.active = False
        logger.info("Job registry stopped")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _arm(self, handle: JobHandle) -> None:
        self._timers[handle.name] = asyncio.get_running_loop().create_task(
            self._timer_loop(handle.name, handle.schedule),
            name=f"timer:{handle.name}",
        )

    def _cancel_timer(self, name: str) -> None:
        timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()

    async def _timer_loop(self, name: str, schedule: Schedule) -> None:
        while True:
            await asyncio.sleep(schedule.next_delay(datetime.now()))
            try:
                await self.run_once(name)
            except Exception as e:
                logger.error(f"Timer for job {name} failed to start a run: {e}")

    async def _execute(self, handle: JobHandle) -> None:
        name = handle.name
        handle.runs += 1
        handle.last_started_at = datetime.utcnow()
        logger.debug(f"Job {name} started")
        try:
            await handle.body()
            handle.last_error = None
            logger.debug(f"Job {name} finished")
        except asyncio.CancelledError:
            handle.last_error = "cancelled"
            logger.info(f"Job {name} cancelled")
            raise
        except Exception as e:
            handle.failures += 1
            handle.last_error = f"{e.__class__.__name__}: {e}"
            logger.exception(f"Job {name} failed: {e}")
        finally:
            handle.active = False
            handle.last_finished_at = datetime.utcnow()
            if self._running.get(name) is asyncio.current_task():
                del self._running[name]
