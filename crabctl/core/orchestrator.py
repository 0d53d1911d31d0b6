"""Polling orchestrator.

A single message loop owns the session registry and the watchdog. Everything
that blocks (tmux and ssh calls, transcript reads, store access) runs as a
tracked task that posts exactly one result message back to the queue, so
state is only ever mutated inside `handle`.

Cadence:
- local sessions every `local_interval`;
- remote hosts every `remote_interval`, doubling per `idle_backoff_step` of
  user inactivity up to `max_remote_interval`. Activity after such a backoff
  triggers an immediate remote refresh.

Each remote host is fetched independently and has its own in-flight guard, so
a slow host never delays another and never overlaps with itself. Every fetch
carries a per-host sequence number; results older than the last applied one
for that host are dropped, as are results for hosts removed meanwhile.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from crabctl.config.schema import PollingConfig
from crabctl.constants import PREVIEW_CAPTURE_LINES, TRANSCRIPT_RETRY_INTERVAL
from crabctl.core.auto_forward import AutoForwardWatchdog, NudgeRequest, deliver_nudge
from crabctl.core.correlator import CorrelationRequest, link_is_current, resolve_transcripts
from crabctl.core.db import Db
from crabctl.core.executor import Executor
from crabctl.core.models import Session
from crabctl.core.registry import LOCAL_HOST, SessionRegistry
from crabctl.core.session_lister import list_host_sessions
from crabctl.core.task_registry import TaskRegistry

logger = logging.getLogger(__name__)


# --- messages --------------------------------------------------------------


@dataclass(frozen=True)
class LocalTick:
    pass


@dataclass(frozen=True)
class RemoteTick:
    pass


@dataclass(frozen=True)
class UserActivity:
    pass


@dataclass(frozen=True)
class Stop:
    pass


@dataclass
class HostSessionsLoaded:
    """Result of one host fetch; `error` is set when the fetch failed."""

    host: str
    sequence: int
    sessions: list[Session] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class AutoForwardSent:
    key: str


@dataclass(frozen=True)
class AutoForwardSettingsLoaded:
    enabled: frozenset[str]
    error: Optional[str] = None


@dataclass
class TranscriptsResolved:
    resolved: dict[str, str]  # session key -> transcript id
    attempted: list[str]


Message = object
ChangeCallback = Callable[[list[Session]], None]


class Orchestrator:  # pylint: disable=too-many-instance-attributes  # Owns all polling state
    """Keeps the session registry fresh and drives the auto-forward watchdog."""

    def __init__(  # pylint: disable=too-many-arguments  # Collaborators are injected for tests
        self,
        local_executor: Executor,
        remote_executors: Optional[dict[str, Executor]] = None,
        store: Optional[Db] = None,
        polling: Optional[PollingConfig] = None,
        watchdog: Optional[AutoForwardWatchdog] = None,
        clock: Callable[[], float] = time.monotonic,
        on_change: Optional[ChangeCallback] = None,
        projects_dir: Optional[Path] = None,
    ) -> None:
        self.local_executor = local_executor
        self.remote_executors: dict[str, Executor] = dict(remote_executors or {})
        self.store = store
        self.polling = polling or PollingConfig()
        self.watchdog = watchdog or AutoForwardWatchdog()
        self.clock = clock
        self.on_change = on_change
        self.projects_dir = projects_dir

        self.queue: asyncio.Queue[Message] = asyncio.Queue()
        self.tasks = TaskRegistry()
        self.registry = SessionRegistry(self.remote_executors)

        self._issued: dict[str, int] = {}
        self._in_flight: set[str] = set()
        self._last_activity = clock()
        self._syncing_settings = False
        self._remote_ticking = False
        self._resolving = False
        self._transcripts: dict[str, str] = {}
        self._resolve_attempted: dict[str, float] = {}

    # --- public surface ----------------------------------------------------

    def post(self, message: Message) -> None:
        self.queue.put_nowait(message)

    def notify_activity(self) -> None:
        """Report user input; resets the remote backoff."""
        self.post(UserActivity())

    def stop(self) -> None:
        self.post(Stop())

    def remote_interval(self, now: Optional[float] = None) -> float:
        """Current remote poll interval given how long the user has been idle."""
        if now is None:
            now = self.clock()
        idle = now - self._last_activity
        interval = self.polling.remote_interval
        threshold = self.polling.idle_backoff_step
        while interval < self.polling.max_remote_interval and idle >= threshold:
            interval *= 2
            threshold += self.polling.idle_backoff_step
        return min(interval, self.polling.max_remote_interval)

    def add_host(self, host: str, executor: Executor) -> None:
        """Start polling a host; the first remote host also starts the remote cadence."""
        self.remote_executors[host] = executor
        self.registry.add_host(host)
        self._start_remote_ticks()

    def remove_host(self, host: str) -> None:
        """Stop polling a host and drop its entries; in-flight results for it are discarded."""
        self.remote_executors.pop(host, None)
        self.registry.remove_host(host)
        self._in_flight.discard(host)
        self._changed()

    def sessions(self) -> list[Session]:
        return self.registry.sessions()

    async def run(self) -> None:
        """Process messages until Stop, then cancel outstanding work."""
        self.post(LocalTick())
        self._start_remote_ticks()
        try:
            while True:
                message = await self.queue.get()
                if isinstance(message, Stop):
                    break
                self.handle(message)
        finally:
            await self.tasks.shutdown(timeout=2.0)

    # --- message handling --------------------------------------------------

    def handle(self, message: Message) -> None:
        if isinstance(message, LocalTick):
            self._on_local_tick()
        elif isinstance(message, RemoteTick):
            self._on_remote_tick()
        elif isinstance(message, UserActivity):
            self._on_user_activity()
        elif isinstance(message, HostSessionsLoaded):
            self._on_host_sessions_loaded(message)
        elif isinstance(message, AutoForwardSent):
            self.watchdog.record_sent(message.key)
        elif isinstance(message, AutoForwardSettingsLoaded):
            self._on_settings_loaded(message)
        elif isinstance(message, TranscriptsResolved):
            self._on_transcripts_resolved(message)
        else:
            logger.warning("Ignoring unknown message %r", message)

    def _on_local_tick(self) -> None:
        self._schedule(LocalTick(), self.polling.local_interval)
        self.refresh_local()
        self.sync_settings()

    def _start_remote_ticks(self) -> None:
        if self._remote_ticking or not self.remote_executors:
            return
        self._remote_ticking = True
        self.post(RemoteTick())

    def _on_remote_tick(self) -> None:
        if not self.remote_executors:
            # Restarted by the next add_host
            self._remote_ticking = False
            return
        self._schedule(RemoteTick(), self.remote_interval())
        self.refresh_remote()

    def _on_user_activity(self) -> None:
        now = self.clock()
        was_backed_off = self.remote_interval(now) > self.polling.remote_interval
        self._last_activity = now
        if was_backed_off:
            logger.debug("User back after idle backoff, refreshing remote hosts")
            self.refresh_remote()

    def _on_host_sessions_loaded(self, result: HostSessionsLoaded) -> None:
        self._in_flight.discard(result.host)
        if not self.registry.has_host(result.host):
            logger.debug("Discarding result for removed host %r", result.host)
            return

        if result.error is not None:
            if self.registry.record_failure(result.host, result.sequence, result.error):
                logger.warning(
                    "Polling %s failed, keeping last known sessions: %s", result.host or "local", result.error
                )
            return

        if not self.registry.apply(result.host, result.sequence, result.sessions, self.clock()):
            return
        self._changed()

        if result.host == LOCAL_HOST:
            self._check_auto_forward()
            self._resolve_local_transcripts(result.sessions)

    def _on_settings_loaded(self, message: AutoForwardSettingsLoaded) -> None:
        self._syncing_settings = False
        if message.error is not None:
            logger.warning("Could not load auto-forward settings: %s", message.error)
            return
        self.watchdog.sync_enabled(message.enabled)

    def _on_transcripts_resolved(self, message: TranscriptsResolved) -> None:
        self._resolving = False
        now = self.clock()
        for key in message.attempted:
            self._resolve_attempted[key] = now
        self._transcripts.update(message.resolved)

    # --- dispatch ----------------------------------------------------------

    def _next_sequence(self, host: str) -> int:
        sequence = self._issued.get(host, 0) + 1
        self._issued[host] = sequence
        return sequence

    def _schedule(self, message: Message, delay: float) -> None:
        self.tasks.spawn(self._deliver_later(message, delay), name=f"tick:{type(message).__name__}")

    async def _deliver_later(self, message: Message, delay: float) -> None:
        await asyncio.sleep(delay)
        self.post(message)

    def refresh_local(self) -> None:
        """Fetch local sessions; never blocked by remote work."""
        sequence = self._next_sequence(LOCAL_HOST)
        self.tasks.spawn(self._fetch(LOCAL_HOST, self.local_executor, sequence), name="fetch:local")

    def refresh_remote(self) -> None:
        """Start a fetch for every remote host that has none in flight."""
        for host, executor in self.remote_executors.items():
            if host in self._in_flight:
                logger.debug("Fetch for %s still in flight, skipping", host)
                continue
            self._in_flight.add(host)
            sequence = self._next_sequence(host)
            self.tasks.spawn(self._fetch(host, executor, sequence), name=f"fetch:{host}")

    async def _fetch(self, host: str, executor: Executor, sequence: int) -> None:
        try:
            sessions = await list_host_sessions(
                executor, datetime.now(timezone.utc), self.projects_dir if not host else None
            )
        except Exception as e:  # pylint: disable=broad-exception-caught  # Unit boundary: failure becomes a message
            self.post(HostSessionsLoaded(host=host, sequence=sequence, error=str(e) or type(e).__name__))
            return
        self.post(HostSessionsLoaded(host=host, sequence=sequence, sessions=sessions))

    def sync_settings(self) -> None:
        """Re-read auto-forward flags so changes made from the CLI take effect."""
        if self.store is None or self._syncing_settings:
            return
        self._syncing_settings = True
        self.tasks.spawn(self._load_settings(self.store), name="store:auto-forward")

    async def _load_settings(self, store: Db) -> None:
        try:
            enabled = await store.load_all_auto_forward()
        except Exception as e:  # pylint: disable=broad-exception-caught  # Unit boundary: failure becomes a message
            self.post(AutoForwardSettingsLoaded(enabled=frozenset(), error=str(e)))
            return
        self.post(AutoForwardSettingsLoaded(enabled=frozenset(enabled)))

    def _check_auto_forward(self) -> None:
        for request in self.watchdog.check(self.registry.sessions(), self.clock()):
            executor = self._executor_for(request.host)
            if executor is None:
                continue
            self.tasks.spawn(self._nudge(executor, request), name=f"nudge:{request.key}")

    async def _nudge(self, executor: Executor, request: NudgeRequest) -> None:
        try:
            sent = await deliver_nudge(executor, request.full_name, self.watchdog.message)
        except Exception as e:  # pylint: disable=broad-exception-caught  # Unit boundary: a failed nudge is retried later
            logger.warning("Auto-forward to %s failed: %s", request.key, e)
            return
        if sent:
            self.post(AutoForwardSent(request.key))

    def _executor_for(self, host: str) -> Optional[Executor]:
        if host == LOCAL_HOST:
            return self.local_executor
        return self.remote_executors.get(host)

    def _resolve_local_transcripts(self, sessions: list[Session]) -> None:
        present = {s.key for s in sessions}
        for key in [k for k in self._transcripts if k not in present]:
            del self._transcripts[key]
        for key in [k for k in self._resolve_attempted if k not in present]:
            del self._resolve_attempted[key]

        if self.store is None or self._resolving:
            return
        now = self.clock()
        pending = [
            s
            for s in sessions
            if s.key not in self._transcripts
            and now - self._resolve_attempted.get(s.key, float("-inf")) >= TRANSCRIPT_RETRY_INTERVAL
        ]
        if not pending:
            return
        self._resolving = True
        claimed = frozenset(self._transcripts.values())
        self.tasks.spawn(self._resolve(self.store, pending, claimed), name="transcripts:resolve")

    async def _resolve(self, store: Db, sessions: list[Session], claimed: frozenset[str]) -> None:
        resolved: dict[str, str] = {}
        try:
            requests: list[CorrelationRequest] = []
            for session in sessions:
                link = await store.get_transcript_link(session.key)
                current = await asyncio.to_thread(
                    link_is_current, link, session.work_dir, session.created_at, self.projects_dir
                )
                if link is not None and current:
                    resolved[session.key] = link.session_id
                    continue
                if link is not None:
                    logger.debug("Stored transcript of %s is stale: %s", session.key, link.session_id)
                pane = await self.local_executor.capture_pane_text(session.full_name, PREVIEW_CAPTURE_LINES)
                requests.append(CorrelationRequest(session.key, session.work_dir, session.created_at, pane))

            by_key = {s.key: s for s in sessions}
            # Reads up to a batch of transcript files; keep it off the loop thread
            found = await asyncio.to_thread(
                resolve_transcripts, requests, claimed | frozenset(resolved.values()), self.projects_dir
            )
            for key, (transcript_id, first_message) in found.items():
                await store.save_session_transcript(key, transcript_id, by_key[key].work_dir, first_message)
                resolved[key] = transcript_id
                logger.info("Matched %s to transcript %s", key, transcript_id)
        except Exception as e:  # pylint: disable=broad-exception-caught  # Unit boundary: retried on a later tick
            logger.warning("Transcript resolution failed: %s", e)
        self.post(TranscriptsResolved(resolved=resolved, attempted=[s.key for s in sessions]))

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self.registry.sessions())
