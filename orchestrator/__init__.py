"""
Deployment Orchestrator Module

Control-process core of the self-hosted deployment platform.
Owns everything that happens between "process started" and "background jobs
are running on schedule":

- Startup reconciliation: shared docker network, version-gated crash recovery
  of interrupted builds, one-time architecture detection
- Job registry: named background jobs with single-flight execution
- Periodic triggers: liveness re-arm, auto-update check, storage cleanup
- Identity bootstrap: best-effort discovery of the public IPv4/IPv6 addresses

CONSTRAINTS:
- A single control process owns the registry and the persisted state
- Background orchestration never takes down the serving process
- No two runs of the same named job are ever in flight at once
"""

__version__ = "3.12.0"

SERVICE_NAME = "Deployment Orchestrator"
