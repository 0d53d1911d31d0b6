"""Executor capability interface.

An executor runs tmux operations on one host. The local variant shells out to
tmux directly; the remote variant wraps the same tmux invocations in ssh. The
rest of crabctl only ever talks to this interface.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from crabctl.core.models import SessionListing


class Executor(ABC):
    """tmux operations against a single host."""

    @property
    @abstractmethod
    def host_tag(self) -> str:
        """Host nickname; empty for the local machine."""

    @property
    @abstractmethod
    def session_prefix(self) -> str:
        """Prefix that marks tmux sessions as managed by crabctl."""

    @abstractmethod
    async def list_sessions(self) -> list[SessionListing]:
        """Managed sessions on the host; empty when tmux is absent or has no server."""

    @abstractmethod
    async def capture_pane_text(self, full_name: str, max_lines: int) -> str:
        """Last max_lines of the pane with ANSI codes and ghost text stripped."""

    @abstractmethod
    async def send_literal_text(self, full_name: str, text: str) -> None:
        """Type text literally, then press Enter as a separate keystroke."""

    @abstractmethod
    async def send_enter(self, full_name: str) -> None:
        """Press Enter only."""

    @abstractmethod
    async def create_session(self, name: str, work_dir: str, agent_args: Sequence[str]) -> str:
        """Start the agent in a new detached session; returns the full session name."""

    @abstractmethod
    async def kill_session(self, full_name: str) -> None:
        """Interrupt the agent, give it a moment, then kill the session."""

    @abstractmethod
    async def has_session(self, full_name: str) -> bool:
        ...

    @abstractmethod
    async def resolve_working_directory(self, full_name: str) -> str:
        """Current path of the session's pane; empty when unknown."""

    @abstractmethod
    async def session_created_at(self, full_name: str) -> Optional[datetime]:
        ...

    def full_name(self, name: str) -> str:
        return f"{self.session_prefix}{name}"

    def address(self, name: str) -> str:
        """Display address: "host:name" for remote, bare name for local."""
        return f"{self.host_tag}:{name}" if self.host_tag else name
