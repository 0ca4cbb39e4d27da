"""
Network/Identity Bootstrap

Runs once after the server accepts connections, in the background. Fills the
Setting's public ipv4/ipv6 fields when they are empty. The two probes run
independently: a failing IPv6 probe never stops IPv4 from being saved.

Failures are logged and left alone. The field stays empty, so the next boot
tries again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Optional, Protocol

from .network_probe import DEFAULT_TIMEOUT_SECONDS, ProbeError
from .state_store import StateStore, StateStoreError

logger = logging.getLogger("identity_bootstrap")


class AddressProbe(Protocol):
    async def public_ipv4(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> str:
        ...

    async def public_ipv6(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> str:
        ...


@dataclass
class BootstrapReport:
    """What the bootstrap did per address field: set, skipped, or failed."""
    results: Dict[str, str] = field(default_factory=dict)
    addresses: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"results": dict(self.results), "addresses": dict(self.addresses)}


class IdentityBootstrap:
    """Best-effort discovery of the installation's public addresses."""

    def __init__(self, store: StateStore, probe: AddressProbe, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.store = store
        self.probe = probe
        self.timeout = timeout
        self.last_report: Optional[BootstrapReport] = None

    async def run(self) -> BootstrapReport:
        """Probe and persist each empty address field. Never raises."""
        report = BootstrapReport()
        try:
            setting = await self.store.get_setting()
        except Exception as e:
            logger.warning(f"Identity bootstrap skipped, settings unavailable: {e}")
            report.results = {"ipv4": "failed", "ipv6": "failed"}
            self.last_report = report
            return report

        pending = []
        for field_name, current, lookup in (
            ("ipv4", setting.ipv4, self.probe.public_ipv4),
            ("ipv6", setting.ipv6, self.probe.public_ipv6),
        ):
            if current:
                report.results[field_name] = "skipped"
                report.addresses[field_name] = current
            else:
                pending.append(self._fill(report, setting.id, field_name, lookup(self.timeout)))

        if pending:
            await asyncio.gather(*pending)

        logger.info(f"Identity bootstrap finished: {report.results}")
        self.last_report = report
        return report

    async def _fill(
        self,
        report: BootstrapReport,
        setting_id: str,
        field_name: str,
        lookup: Awaitable[str],
    ) -> None:
        try:
            address = await lookup
            await self.store.update_setting(setting_id, **{field_name: address})
        except ProbeError as e:
            logger.info(f"Public {field_name} not discovered: {e}")
            report.results[field_name] = "failed"
            return
        except StateStoreError as e:
            logger.warning(f"Could not save public {field_name}: {e}")
            report.results[field_name] = "failed"
            return
        except Exception as e:
            logger.warning(f"Public {field_name} discovery failed: {e.__class__.__name__}: {e}")
            report.results[field_name] = "failed"
            return

        logger.info(f"Recorded public {field_name}: {address}")
        report.results[field_name] = "set"
        report.addresses[field_name] = address
