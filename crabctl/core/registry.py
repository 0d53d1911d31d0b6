"""Session registry: the merged view of every host's sessions.

Each host's entries are replaced wholesale by that host's poll result and by
nothing else. Results carry a per-host sequence number so a slow, older fetch
can never overwrite a newer one that finished first.
"""

import logging
from typing import Iterable, Optional

from crabctl.core.models import HostSnapshot, Session, Status

logger = logging.getLogger(__name__)

LOCAL_HOST = ""

_STATUS_PRIORITY = {
    Status.PERMISSION: 0,
    Status.CONFIRM: 0,
    Status.TASK_DONE: 0,
    Status.RUNNING: 1,
    Status.WAITING: 2,
    Status.UNKNOWN: 3,
}


def status_priority(status: Status) -> int:
    """Lower sorts first; the states needing a human come before everything else."""
    return _STATUS_PRIORITY.get(status, 3)


def sort_key(session: Session) -> tuple[bool, int, float]:
    return (not session.is_local, status_priority(session.status), session.duration)


def sort_sessions(sessions: Iterable[Session]) -> list[Session]:
    """Local before remote, then by status priority, then youngest first."""
    return sorted(sessions, key=sort_key)


class SessionRegistry:
    """Per-host session snapshots, merged on demand."""

    def __init__(self, remote_hosts: Iterable[str] = ()) -> None:
        self._snapshots: dict[str, HostSnapshot] = {LOCAL_HOST: HostSnapshot(host=LOCAL_HOST)}
        for host in remote_hosts:
            self._snapshots[host] = HostSnapshot(host=host)

    def has_host(self, host: str) -> bool:
        return host in self._snapshots

    def add_host(self, host: str) -> None:
        self._snapshots.setdefault(host, HostSnapshot(host=host))

    def remove_host(self, host: str) -> None:
        """Forget a host; late results for it are then discarded."""
        if host == LOCAL_HOST:
            return
        self._snapshots.pop(host, None)

    def snapshot(self, host: str) -> Optional[HostSnapshot]:
        return self._snapshots.get(host)

    def apply(self, host: str, sequence: int, sessions: list[Session], now: Optional[float] = None) -> bool:
        """Replace one host's entries. Returns False when the result was dropped."""
        snapshot = self._snapshots.get(host)
        if snapshot is None:
            logger.debug("Dropping result for unconfigured host %r", host)
            return False
        if sequence <= snapshot.sequence:
            logger.debug(
                "Dropping stale result for %s (seq %d <= %d)", host or "local", sequence, snapshot.sequence
            )
            return False

        snapshot.sessions = [s for s in sessions if s.host == host]
        snapshot.sequence = sequence
        snapshot.updated_at = now
        snapshot.last_error = None
        return True

    def record_failure(self, host: str, sequence: int, error: str) -> bool:
        """Note a failed fetch; the host's previous entries stay as they were."""
        snapshot = self._snapshots.get(host)
        if snapshot is None or sequence <= snapshot.sequence:
            return False
        snapshot.sequence = sequence
        snapshot.last_error = error
        return True

    def sessions(self) -> list[Session]:
        """All sessions, sorted for display."""
        merged: list[Session] = []
        for snapshot in self._snapshots.values():
            merged.extend(snapshot.sessions)
        return sort_sessions(merged)
