"""Auto-forward watchdog.

For sessions with auto-forward enabled, a session sitting at its prompt for
longer than the configured delay is sent a "keep going" message. Nudges stop
after a cap of consecutive sends and the count resets once the agent is seen
working again. Sessions that said TASK DONE are left alone.

The watchdog only decides. Sending happens in a dispatched unit
(`deliver_nudge`), which re-captures the pane first so an agent that finished
in the meantime is never nudged.
"""

import logging
from dataclasses import dataclass
from typing import AbstractSet, Iterable

from crabctl.constants import AUTO_FORWARD_DELAY, AUTO_FORWARD_MESSAGE, MAX_AUTO_FORWARDS, STATUS_CAPTURE_LINES
from crabctl.core.executor import Executor
from crabctl.core.models import AutoForwardState, Session, Status
from crabctl.core.status_classifier import detect_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NudgeRequest:
    key: str
    host: str
    full_name: str


class AutoForwardWatchdog:
    """Per-session auto-forward bookkeeping, keyed by session key."""

    def __init__(
        self,
        delay: float = AUTO_FORWARD_DELAY,
        max_forwards: int = MAX_AUTO_FORWARDS,
        message: str = AUTO_FORWARD_MESSAGE,
    ) -> None:
        self.delay = delay
        self.max_forwards = max_forwards
        self.message = message
        self._states: dict[str, AutoForwardState] = {}

    def state(self, key: str) -> AutoForwardState:
        return self._states.get(key, AutoForwardState())

    def is_enabled(self, key: str) -> bool:
        return self.state(key).enabled

    def set_enabled(self, key: str, enabled: bool) -> None:
        if enabled:
            self._states.setdefault(key, AutoForwardState()).enabled = True
        else:
            self._states.pop(key, None)

    def sync_enabled(self, enabled_keys: AbstractSet[str]) -> None:
        """Adopt the persisted flags, keeping runtime counters of unchanged sessions."""
        for key in enabled_keys:
            self.set_enabled(key, True)
        for key in [k for k, s in self._states.items() if s.enabled and k not in enabled_keys]:
            self.set_enabled(key, False)

    def check(self, sessions: Iterable[Session], now: float) -> list[NudgeRequest]:
        """Advance timers against a fresh snapshot and return the nudges now due."""
        requests: list[NudgeRequest] = []
        present: set[str] = set()

        for session in sessions:
            key = session.key
            present.add(key)
            state = self._states.get(key)
            if state is None or not state.enabled:
                continue

            if session.status == Status.WAITING:
                if state.waiting_since is None:
                    state.waiting_since = now
            else:
                state.waiting_since = None
                if session.status == Status.RUNNING:
                    state.forward_count = 0

            if session.status == Status.TASK_DONE:
                continue
            if state.waiting_since is None or now - state.waiting_since < self.delay:
                continue
            if state.forward_count >= self.max_forwards:
                continue

            requests.append(NudgeRequest(key=key, host=session.host, full_name=session.full_name))
            # Wait a full delay again before the next nudge
            state.waiting_since = now

        for key, state in self._states.items():
            if key not in present:
                # Not in this snapshot (gone, or its host not loaded yet): restart the timers only
                state.waiting_since = None
                state.forward_count = 0

        return requests

    def record_sent(self, key: str) -> None:
        state = self._states.get(key)
        if state is None:
            return
        state.forward_count += 1
        logger.info("Auto-forwarded %s (%d/%d)", key, state.forward_count, self.max_forwards)


async def deliver_nudge(executor: Executor, full_name: str, message: str) -> bool:
    """Send the nudge if the session is still waiting; returns whether it was sent."""
    output = await executor.capture_pane_text(full_name, STATUS_CAPTURE_LINES)
    status = detect_status(output)
    if status != Status.WAITING:
        logger.debug("Skipping nudge for %s: now %s", full_name, status)
        return False
    await executor.send_literal_text(full_name, message)
    return True
