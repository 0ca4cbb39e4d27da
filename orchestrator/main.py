"""
Deployment Orchestrator - FastAPI Application

Control-process entry point. Startup order:

1. Startup reconciliation runs to completion (network, migrations, arch)
2. Periodic triggers are armed and the job registry starts its timers
3. Identity bootstrap is scheduled as a background task

All three happen inside the startup hook, which uvicorn runs before it
binds the listening socket. The bootstrap task is only created there; it
finishes while, or after, the server starts accepting connections and
never delays that.

The HTTP surface is read-only: service info, health and a scheduler
snapshot. Background orchestration never fails the startup hook.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from . import SERVICE_NAME, __version__
from .config import OrchestratorConfig, load_config
from .identity_bootstrap import IdentityBootstrap
from .job_registry import JobBody, JobRegistry
from .jobs import Heartbeat, register_default_jobs
from .network_probe import PublicAddressProbe
from .reconciler import ReconciliationReport, StartupReconciler
from .shell import exec_shell
from .state_store import StateStore
from .triggers import PeriodicTriggerSet
from .version_feed import VersionFeedClient

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("orchestrator")


# -----------------------------------------------------------------------------
# Runtime
# -----------------------------------------------------------------------------
@dataclass
class Runtime:
    """Everything the control process owns for its lifetime."""
    config: OrchestratorConfig
    store: StateStore
    registry: JobRegistry
    reconciler: StartupReconciler
    triggers: PeriodicTriggerSet
    bootstrap: IdentityBootstrap
    heartbeat: Heartbeat
    report: Optional[ReconciliationReport] = None
    bootstrap_task: Optional[asyncio.Task] = None


def build_runtime(
    config: Optional[OrchestratorConfig] = None,
    deploy_pipeline: Optional[JobBody] = None,
) -> Runtime:
    """Wire the production collaborators together."""
    config = config or load_config()
    store = StateStore(config.state_file, auto_update_default=config.auto_update_default)
    registry = JobRegistry()
    heartbeat = Heartbeat()
    register_default_jobs(registry, config, heartbeat, exec_shell, deploy_pipeline)

    feed = VersionFeedClient(
        config.versions_url,
        config.product,
        app_id=config.app_id,
        timeout=config.feed_timeout_seconds,
    )
    return Runtime(
        config=config,
        store=store,
        registry=registry,
        reconciler=StartupReconciler(store, exec_shell, config.app_version, config.docker_network),
        triggers=PeriodicTriggerSet(registry, store, feed, config),
        bootstrap=IdentityBootstrap(store, PublicAddressProbe(), timeout=config.probe_timeout_seconds),
        heartbeat=heartbeat,
    )


# -----------------------------------------------------------------------------
# Response Models
# -----------------------------------------------------------------------------
class ServiceInfoResponse(BaseModel):
    service: str
    status: str
    version: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    environment: str
    version: str
    scheduler_running: bool
    last_heartbeat: Optional[str] = None
    reconciliation: Optional[Dict[str, Any]] = None
    identity: Optional[Dict[str, Any]] = None


class SchedulerStatusResponse(BaseModel):
    running: bool
    jobs: Dict[str, Dict[str, Any]]
    active: List[str]
    triggers: Dict[str, str]


# -----------------------------------------------------------------------------
# Application
# -----------------------------------------------------------------------------
def create_app(runtime_factory: Optional[Callable[[], Runtime]] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The runtime is created in the startup hook so importing this module
    touches neither the state file nor the network.
    """
    factory = runtime_factory or build_runtime
    app = FastAPI(
        title=SERVICE_NAME,
        description="Startup reconciliation and background job orchestration",
        version=__version__
    )
    app.state.runtime = None

    def current_runtime() -> Optional[Runtime]:
        return app.state.runtime

    @app.on_event("startup")
    async def startup_event():
        """Reconcile, arm triggers, then bootstrap identity in the background."""
        runtime = factory()
        app.state.runtime = runtime
        logger.info(f"{SERVICE_NAME} {runtime.config.app_version} starting ({runtime.config.environment})...")
        logger.info(f"State file: {runtime.store.path}")

        runtime.report = await runtime.reconciler.run()

        runtime.triggers.arm()
        runtime.registry.start()

        runtime.bootstrap_task = asyncio.create_task(runtime.bootstrap.run(), name="identity-bootstrap")
        logger.info(f"{SERVICE_NAME} started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop timers and in-flight jobs."""
        runtime = current_runtime()
        if runtime is None:
            return
        logger.info(f"{SERVICE_NAME} shutting down...")

        task = runtime.bootstrap_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await runtime.registry.stop()

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------
    @app.get("/", response_model=ServiceInfoResponse)
    async def root():
        """Service info."""
        return ServiceInfoResponse(service=SERVICE_NAME, status="running", version=__version__)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Liveness, reconciliation outcome and identity bootstrap outcome."""
        runtime = current_runtime()
        if runtime is None:
            return HealthResponse(
                status="starting",
                timestamp=datetime.utcnow().isoformat(),
                environment="unknown",
                version=__version__,
                scheduler_running=False,
            )

        report = runtime.report
        status = "healthy" if report is not None and report.ok else "degraded"
        last_beat = runtime.heartbeat.last_beat_at
        identity = runtime.bootstrap.last_report
        return HealthResponse(
            status=status,
            timestamp=datetime.utcnow().isoformat(),
            environment=runtime.config.environment,
            version=runtime.config.app_version,
            scheduler_running=runtime.registry.started,
            last_heartbeat=last_beat.isoformat() if last_beat else None,
            reconciliation=report.to_dict() if report else None,
            identity=identity.to_dict() if identity else None,
        )

    @app.get("/scheduler/status", response_model=SchedulerStatusResponse)
    async def scheduler_status():
        """Per-job run state and the last decision of every trigger."""
        runtime = current_runtime()
        if runtime is None:
            return SchedulerStatusResponse(running=False, jobs={}, active=[], triggers={})

        registry = runtime.registry
        return SchedulerStatusResponse(
            running=registry.started,
            jobs=registry.status(),
            active=[name for name in registry.names() if registry.is_active(name)],
            triggers=runtime.triggers.describe(),
        )

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    config = load_config()
    logging.getLogger().setLevel(config.log_level.upper())
    uvicorn.run(
        create_app(lambda: build_runtime(config)),
        host=config.host,
        port=config.listen_port,
    )


if __name__ == "__main__":
    run()
