"""
Pytest configuration for the Deployment Orchestrator tests.

This module provides:
1. Common fixtures (state store, config, registry)
2. Fakes for the shell and the version feed
3. Helper factories
"""

from pathlib import Path
from typing import List, Optional

import pytest

from orchestrator.config import OrchestratorConfig
from orchestrator.job_registry import JobRegistry
from orchestrator.shell import ShellCommandError, ShellResult
from orchestrator.state_store import StateStore


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------
class FakeShell:
    """Records commands; fails those registered in `failures`."""

    def __init__(self, failures: Optional[dict] = None):
        self.commands: List[str] = []
        self.failures = failures or {}

    async def __call__(self, command: str) -> ShellResult:
        self.commands.append(command)
        if command in self.failures:
            failure = self.failures[command]
            if isinstance(failure, Exception):
                raise failure
            raise ShellCommandError(ShellResult(command, 1, "", failure))
        return ShellResult(command, 0, "", "")


class FakeFeed:
    """Version feed returning a fixed version, or raising."""

    def __init__(self, latest: str = "3.12.0", error: Optional[Exception] = None):
        self.latest = latest
        self.error = error
        self.calls: List[str] = []

    async def fetch_latest_version(self, current_version: str) -> str:
        self.calls.append(current_version)
        if self.error is not None:
            raise self.error
        return self.latest


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def state_file(tmp_path) -> Path:
    return tmp_path / "state" / "orchestrator_state.json"


@pytest.fixture
def store(state_file) -> StateStore:
    """Create a StateStore backed by a temp file."""
    return StateStore(state_file)


@pytest.fixture
def config(state_file) -> OrchestratorConfig:
    """Production config pointed at the temp state file."""
    return OrchestratorConfig(state_file=state_file, app_version="3.12.0")


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def fake_shell() -> FakeShell:
    return FakeShell()
