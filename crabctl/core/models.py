"""Data models for crabctl sessions and transcripts."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Status(str, Enum):
    """Closed set of states the classifier can infer from a session's screen."""

    UNKNOWN = "unknown"
    RUNNING = "running"
    WAITING = "waiting"
    PERMISSION = "permission"
    CONFIRM = "confirm"
    TASK_DONE = "task done"

    def __str__(self) -> str:
        return self.value


@dataclass
class StatusBarInfo:
    """Metadata scraped from the bottom status bar."""

    mode: str = ""  # "bypass", "plan", "auto-edit" or ""
    git_changes: str = ""  # e.g. "5 files +415 -44"
    pr: str = ""  # e.g. "PR #498"
    context: str = ""  # e.g. "10%" context left until auto-compact


@dataclass
class SessionListing:
    """One row of an executor's session table."""

    name: str
    full_name: str  # name with the host's session prefix
    attached_count: int
    created_at: datetime


@dataclass
class Session:  # pylint: disable=too-many-instance-attributes  # Snapshot of everything shown per session
    """One monitored agent instance, recomputed from scratch on every poll."""

    name: str
    full_name: str
    host: str = ""  # empty for local, nickname for remote
    status: Status = Status.UNKNOWN
    mode: str = ""
    last_action: str = ""  # e.g. "Write(/tmp/foo.txt)"
    git_changes: str = ""
    pr: str = ""
    context: str = ""
    duration: float = 0.0  # seconds since the tmux session was created
    last_active: Optional[datetime] = None  # newest transcript mtime (local only)
    attached_count: int = 0
    work_dir: str = ""
    created_at: Optional[datetime] = None

    @property
    def is_local(self) -> bool:
        return self.host == ""

    @property
    def address(self) -> str:
        """CLI address of the session: "host:name" for remote, bare name for local."""
        return f"{self.host}:{self.name}" if self.host else self.name

    @property
    def key(self) -> str:
        return session_key(self.host, self.full_name)


@dataclass
class TranscriptInfo:
    """A past agent conversation that can be resumed."""

    session_id: str
    project_dir: str  # working directory from the transcript, or its encoded folder name
    mod_time: datetime
    first_message: str = ""
    started: Optional[datetime] = None
    name: str = ""  # crab session name when known from the store


@dataclass
class TranscriptMeta:
    """Fields read from the head of a transcript file."""

    cwd: str = ""
    first_message: str = ""
    started: Optional[datetime] = None


@dataclass
class TranscriptLink:
    """Stored association between a session name and its transcript."""

    session_id: str
    work_dir: str
    killed: bool = False


@dataclass
class ResumableSession:
    """A stored session that can be resumed from its transcript."""

    name: str  # full session name, including prefix
    session_id: str  # transcript id
    work_dir: str
    first_message: str
    last_seen: Optional[datetime] = None
    killed: bool = False  # True if explicitly killed (False = lost or crashed)


@dataclass
class AutoForwardState:
    """Per-session watchdog state; only `enabled` is persisted."""

    enabled: bool = False
    waiting_since: Optional[float] = None
    forward_count: int = 0


@dataclass
class HostSnapshot:
    """Last applied poll result for one host."""

    host: str
    sessions: list[Session] = field(default_factory=list)
    sequence: int = 0
    updated_at: Optional[float] = None
    last_error: Optional[str] = None


def session_key(host: str, full_name: str) -> str:
    """Identity of a session across hosts, used as the store key.

    Local sessions are keyed by their full name alone, so rows written for
    local sessions keep working when remote hosts are added later.
    """
    return f"{host}:{full_name}" if host else full_name
