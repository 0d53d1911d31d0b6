"""Pytest configuration for crabctl tests."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

import pytest

from crabctl.core.executor import Executor
from crabctl.core.models import SessionListing

logging.getLogger("crabctl").handlers.clear()


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))


WAITING_SCREEN = "⏺ Done.\n\n❯\n───────────────────\n  ? for shortcuts"
RUNNING_SCREEN = "⏺ Read(main.go)\n\n✻ Pondering…"
TASK_DONE_SCREEN = "⏺ All tests pass. TASK DONE!\n\n❯\n───────────────────\n  ? for shortcuts"


@dataclass
class FakePane:
    screens: list[str] = field(default_factory=lambda: [WAITING_SCREEN])
    work_dir: str = "/work"
    created_at: datetime = field(default_factory=lambda: datetime(2026, 1, 1, tzinfo=timezone.utc))
    attached: int = 0

    def next_screen(self) -> str:
        if len(self.screens) > 1:
            return self.screens.pop(0)
        return self.screens[0] if self.screens else ""


class FakeExecutor(Executor):
    """In-memory executor recording every mutating call."""

    def __init__(self, host: str = "", prefix: str = "crab-") -> None:
        self._host = host
        self._prefix = prefix
        self.panes: dict[str, FakePane] = {}
        self.sent: list[tuple[str, str]] = []
        self.enters: list[str] = []
        self.created: list[tuple[str, str, tuple[str, ...]]] = []
        self.killed: list[str] = []
        self.list_gate: Optional[asyncio.Event] = None
        self.list_error: Optional[Exception] = None
        self.list_calls = 0
        self.screen_on_create: list[str] = [WAITING_SCREEN]

    @property
    def host_tag(self) -> str:
        return self._host

    @property
    def session_prefix(self) -> str:
        return self._prefix

    def add(self, name: str, *screens: str, **kwargs) -> FakePane:
        pane = FakePane(screens=list(screens) or [WAITING_SCREEN], **kwargs)
        self.panes[self.full_name(name)] = pane
        return pane

    async def list_sessions(self) -> list[SessionListing]:
        self.list_calls += 1
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.list_error is not None:
            raise self.list_error
        return [
            SessionListing(
                name=full_name[len(self._prefix) :],
                full_name=full_name,
                attached_count=pane.attached,
                created_at=pane.created_at,
            )
            for full_name, pane in self.panes.items()
        ]

    async def capture_pane_text(self, full_name: str, max_lines: int) -> str:
        pane = self.panes.get(full_name)
        return pane.next_screen() if pane else ""

    async def send_literal_text(self, full_name: str, text: str) -> None:
        self.sent.append((full_name, text))

    async def send_enter(self, full_name: str) -> None:
        self.enters.append(full_name)

    async def create_session(self, name: str, work_dir: str, agent_args: Sequence[str]) -> str:
        full_name = self.full_name(name)
        self.created.append((name, work_dir, tuple(agent_args)))
        self.panes[full_name] = FakePane(screens=list(self.screen_on_create), work_dir=work_dir)
        return full_name

    async def kill_session(self, full_name: str) -> None:
        self.killed.append(full_name)
        self.panes.pop(full_name, None)

    async def has_session(self, full_name: str) -> bool:
        return full_name in self.panes

    async def resolve_working_directory(self, full_name: str) -> str:
        pane = self.panes.get(full_name)
        return pane.work_dir if pane else ""

    async def session_created_at(self, full_name: str) -> Optional[datetime]:
        pane = self.panes.get(full_name)
        return pane.created_at if pane else None


@pytest.fixture
def fake_executor():
    """Factory for in-memory executors: fake_executor(host="bay1")."""
    return FakeExecutor


@pytest.fixture
def no_sleep(monkeypatch):
    """Make asyncio.sleep return immediately in crabctl modules."""

    real_sleep = asyncio.sleep

    async def _instant(_delay, *args, **kwargs):
        await real_sleep(0)

    monkeypatch.setattr("crabctl.core.session_ops.asyncio.sleep", _instant)
    return _instant
