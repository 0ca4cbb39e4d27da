"""
Persistent State Store

JSON-document persistence for the Setting singleton, build history and the
last application version that booted against this state.

Stores state to a single JSON file, enabling:
- Crash recovery of interrupted builds at startup
- Fill-once environment facts (addresses, architecture)
- Version-gated migrations (prior version survives restarts)

Each operation is atomic on its own (lock + write-temp-then-replace).
There are no multi-operation transactions: a check-then-write across two
calls is best-effort.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .models import SETTING_MUTABLE_FIELDS, Build, BuildStatus, Setting

logger = logging.getLogger("state_store")


class StateStoreError(Exception):
    """Raised when persisted state cannot be read or written."""


class StateStore:
    """
    File-backed store for orchestration state.

    A missing file is treated as an empty store. A file that exists but
    cannot be parsed raises StateStoreError instead of being reset, so a
    transient corruption never wipes build history.
    """

    def __init__(self, state_file: Path, auto_update_default: bool = False):
        self._state_file = Path(state_file)
        self._auto_update_default = auto_update_default
        self._lock = asyncio.Lock()
        self._ensure_dir()

    @property
    def path(self) -> Path:
        return self._state_file

    def _ensure_dir(self) -> None:
        """Ensure state file directory exists."""
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # Surfaced on first write instead
            logger.debug(f"Could not create state file directory: {e}")

    # -------------------------------------------------------------------------
    # Setting
    # -------------------------------------------------------------------------

    async def get_setting(self) -> Setting:
        """Return the Setting singleton, creating it on first access."""
        async with self._lock:
            state = self._load_state()
            if state.get("setting"):
                return Setting.from_dict(state["setting"])

            setting = Setting.create(auto_update_enabled=self._auto_update_default)
            state["setting"] = setting.to_dict()
            self._save_state(state)
            logger.info(f"Created settings record {setting.id}")
            return setting

    async def update_setting(self, setting_id: str, **fields: Any) -> Setting:
        """
        Update fields of the Setting singleton.

        Raises:
            StateStoreError: Unknown setting id or a field that may not be written
        """
        disallowed = set(fields) - SETTING_MUTABLE_FIELDS
        if disallowed:
            raise StateStoreError(f"Setting fields not writable: {sorted(disallowed)}")

        async with self._lock:
            state = self._load_state()
            current = state.get("setting")
            if not current or current.get("id") != setting_id:
                raise StateStoreError(f"Setting {setting_id} not found")

            current.update(fields)
            self._save_state(state)
            logger.debug(f"Updated setting {setting_id}: {sorted(fields)}")
            return Setting.from_dict(current)

    # -------------------------------------------------------------------------
    # Builds
    # -------------------------------------------------------------------------

    async def add_build(self, build: Build) -> Build:
        """Save or replace a build record."""
        async with self._lock:
            state = self._load_state()
            state["builds"][build.id] = build.to_dict()
            self._save_state(state)
            return build

    async def get_build(self, build_id: str) -> Optional[Build]:
        async with self._lock:
            data = self._load_state()["builds"].get(build_id)
        return Build.from_dict(data) if data else None

    async def list_builds(self, status: Optional[BuildStatus] = None) -> List[Build]:
        """List builds, oldest first, optionally filtered by status."""
        async with self._lock:
            records = list(self._load_state()["builds"].values())

        builds = [Build.from_dict(record) for record in records]
        if status is not None:
            builds = [b for b in builds if b.status == status]
        builds.sort(key=lambda b: (b.created_at, b.id))
        return builds

    async def update_builds_where_status_in(
        self,
        statuses: Iterable[BuildStatus],
        new_status: BuildStatus,
    ) -> int:
        """
        Bulk-transition every build whose status is in `statuses`.

        Returns:
            Number of builds updated
        """
        wanted = {BuildStatus(s).value for s in statuses}
        async with self._lock:
            state = self._load_state()
            now = datetime.utcnow().isoformat()
            updated = 0
            for record in state["builds"].values():
                if record.get("status") in wanted:
                    record["status"] = new_status.value
                    record["updated_at"] = now
                    updated += 1
            if updated:
                self._save_state(state)
            return updated

    # -------------------------------------------------------------------------
    # Application version
    # -------------------------------------------------------------------------

    async def get_app_version(self) -> Optional[str]:
        """Version of the application that last completed reconciliation."""
        async with self._lock:
            return self._load_state().get("app_version")

    async def set_app_version(self, version: str) -> None:
        async with self._lock:
            state = self._load_state()
            state["app_version"] = version
            self._save_state(state)

    # -------------------------------------------------------------------------
    # File I/O
    # -------------------------------------------------------------------------

    def _load_state(self) -> Dict[str, Any]:
        """Load state from file."""
        default_state: Dict[str, Any] = {
            "setting": None,
            "builds": {},
            "app_version": None,
            "created_at": datetime.utcnow().isoformat(),
        }

        if not self._state_file.exists():
            return default_state
        try:
            state = json.loads(self._state_file.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise StateStoreError(f"Failed to load state file {self._state_file}: {e}") from e

        if not isinstance(state, dict):
            raise StateStoreError(f"State file is not a JSON object (was {type(state).__name__})")

        if not isinstance(state.get("builds"), dict):
            logger.warning(f"State builds field missing or invalid (was {type(state.get('builds'))}), resetting builds")
            state["builds"] = {}
        return state

    def _save_state(self, state: Dict[str, Any]) -> None:
        """Save state to file atomically."""
        state["last_updated"] = datetime.utcnow().isoformat()
        temp_file = self._state_file.with_suffix(".tmp")
        try:
            temp_file.write_text(json.dumps(state, indent=2, default=str))
            temp_file.replace(self._state_file)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise StateStoreError(f"Failed to save state file {self._state_file}: {e}") from e
