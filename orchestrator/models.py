"""
Persisted records shared by the orchestration core.

Setting is a singleton: exactly one row exists. The identity bootstrap fills
ipv4/ipv6 and the reconciler fills arch, each at most once.

Build is a deployment history record. Only the deployment pipeline creates
and advances builds; the reconciler performs the crash-recovery transition.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set


class BuildStatus(str, Enum):
    """
    Build lifecycle states.

    State machine:
    QUEUED → RUNNING → FINISHED
       ↓        ↓
     FAILED   FAILED
    """
    QUEUED = "queued"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"

    @classmethod
    def in_flight_states(cls) -> Set["BuildStatus"]:
        """States that cannot survive a process restart."""
        return {cls.QUEUED, cls.RUNNING}


# Setting fields that collaborators are allowed to write
SETTING_MUTABLE_FIELDS = frozenset({"auto_update_enabled", "ipv4", "ipv6", "arch"})


@dataclass
class Setting:
    """Singleton installation settings."""
    id: str
    auto_update_enabled: bool = False
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None
    arch: Optional[str] = None

    @classmethod
    def create(cls, auto_update_enabled: bool = False) -> "Setting":
        return cls(id=str(uuid.uuid4()), auto_update_enabled=auto_update_enabled)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "auto_update_enabled": self.auto_update_enabled,
            "ipv4": self.ipv4,
            "ipv6": self.ipv6,
            "arch": self.arch,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Setting":
        return cls(
            id=data["id"],
            auto_update_enabled=bool(data.get("auto_update_enabled", False)),
            ipv4=data.get("ipv4") or None,
            ipv6=data.get("ipv6") or None,
            arch=data.get("arch") or None,
        )


@dataclass
class Build:
    """A deployment build history record."""
    id: str
    status: BuildStatus
    application_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def create(cls, application_id: Optional[str] = None, status: BuildStatus = BuildStatus.QUEUED) -> "Build":
        return cls(id=str(uuid.uuid4()), status=status, application_id=application_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "application_id": self.application_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Build":
        return cls(
            id=data["id"],
            status=BuildStatus(data["status"]),
            application_id=data.get("application_id"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data.get("updated_at") or data["created_at"]),
        )
