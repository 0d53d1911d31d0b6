"""tmux bridge: session management through the tmux command line.

TmuxExecutor builds every tmux invocation as an argv list and leaves running it
to a subclass. LocalExecutor runs them directly; the ssh variant in
crabctl.core.ssh_executor runs the same argv on a remote host.
"""

import asyncio
import logging
import shlex
from abc import abstractmethod
from datetime import datetime, timezone
from typing import Optional, Sequence

from crabctl.constants import (
    AGENT_COMMAND,
    AGENT_FLAGS_ENV,
    KILL_GRACE_DELAY,
    SESSION_PREFIX,
    SUBPROCESS_TIMEOUT,
)
from crabctl.core.errors import ExecutorError
from crabctl.core.executor import Executor
from crabctl.core.models import SessionListing
from crabctl.utils import clean_pane_text

logger = logging.getLogger(__name__)

LIST_FORMAT = "#{session_name}|#{session_attached}|#{session_created}"

# Exit code reported when the binary could not be started at all
COMMAND_NOT_FOUND = 127
TIMED_OUT = -1


async def run_command(argv: Sequence[str], timeout: float = SUBPROCESS_TIMEOUT) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    A missing binary or a timeout is reported as a failed run instead of raising.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError:
        logger.debug("Command not found: %s", argv[0])
        return COMMAND_NOT_FOUND, "", f"{argv[0]}: command not found"

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("Command timed out after %.1fs: %s", timeout, shlex.join(argv))
        return TIMED_OUT, "", "timed out"

    returncode = proc.returncode if proc.returncode is not None else -1
    return (
        returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace").strip(),
    )


def parse_session_list(output: str, prefix: str) -> list[SessionListing]:
    """Parse `list-sessions -F name|attached|created` output, keeping prefixed names."""
    sessions: list[SessionListing] = []
    for line in output.strip().split("\n"):
        parts = line.split("|", 2)
        if len(parts) != 3:
            continue
        full_name, attached, created = parts
        if not full_name.startswith(prefix):
            continue
        try:
            attached_count = int(attached)
        except ValueError:
            attached_count = 0
        try:
            created_at = datetime.fromtimestamp(int(created), tz=timezone.utc)
        except ValueError:
            created_at = datetime.fromtimestamp(0, tz=timezone.utc)
        sessions.append(
            SessionListing(
                name=full_name[len(prefix) :],
                full_name=full_name,
                attached_count=attached_count,
                created_at=created_at,
            )
        )
    return sessions


def build_agent_command(agent_args: Sequence[str]) -> str:
    """Shell command that launches the agent outside any parent agent's environment."""
    if not agent_args:
        return AGENT_COMMAND
    return f"{AGENT_COMMAND} {shlex.join(agent_args)}"


class TmuxExecutor(Executor):
    """Executor whose operations are tmux invocations."""

    @abstractmethod
    async def _tmux(self, *args: str) -> tuple[int, str, str]:
        """Run `tmux <args>` on this executor's host."""

    async def _tmux_checked(self, *args: str) -> str:
        returncode, stdout, stderr = await self._tmux(*args)
        if returncode != 0:
            raise ExecutorError(f"tmux {args[0]}", returncode, stderr)
        return stdout

    async def list_sessions(self) -> list[SessionListing]:
        returncode, stdout, stderr = await self._tmux("list-sessions", "-F", LIST_FORMAT)
        if returncode != 0:
            # No tmux binary or no server running: nothing to list
            logger.debug("list-sessions on %s returned %d: %s", self.host_tag or "local", returncode, stderr)
            return []
        return parse_session_list(stdout, self.session_prefix)

    async def capture_pane_text(self, full_name: str, max_lines: int) -> str:
        returncode, stdout, stderr = await self._tmux(
            "capture-pane", "-t", full_name, "-p", "-e", "-S", f"-{max_lines}"
        )
        if returncode != 0:
            logger.debug("capture-pane %s failed (%d): %s", full_name, returncode, stderr)
            return ""
        return clean_pane_text(stdout)

    async def send_literal_text(self, full_name: str, text: str) -> None:
        await self._tmux_checked("send-keys", "-t", full_name, "-l", text)
        await self.send_enter(full_name)

    async def send_enter(self, full_name: str) -> None:
        await self._tmux_checked("send-keys", "-t", full_name, "Enter")

    async def create_session(self, name: str, work_dir: str, agent_args: Sequence[str]) -> str:
        full_name = self.full_name(name)
        args = ["new-session", "-d", "-s", full_name]
        if work_dir:
            args.extend(["-c", work_dir])
        args.append(build_agent_command(agent_args))
        await self._tmux_checked(*args)

        if agent_args:
            returncode, _, stderr = await self._tmux(
                "set-environment", "-t", full_name, AGENT_FLAGS_ENV, " ".join(agent_args)
            )
            if returncode != 0:
                logger.warning("Could not record agent flags on %s: %s", full_name, stderr)

        logger.info("Created session %s in %s", self.address(name), work_dir or "~")
        return full_name

    async def kill_session(self, full_name: str) -> None:
        # Interrupt first so the agent can flush its transcript
        await self._tmux("send-keys", "-t", full_name, "C-c")
        await asyncio.sleep(KILL_GRACE_DELAY)
        await self._tmux_checked("kill-session", "-t", full_name)
        logger.info("Killed session %s on %s", full_name, self.host_tag or "local")

    async def has_session(self, full_name: str) -> bool:
        returncode, _, _ = await self._tmux("has-session", "-t", full_name)
        return returncode == 0

    async def resolve_working_directory(self, full_name: str) -> str:
        returncode, stdout, _ = await self._tmux("display-message", "-t", full_name, "-p", "#{pane_current_path}")
        if returncode != 0:
            return ""
        return stdout.strip()

    async def session_created_at(self, full_name: str) -> Optional[datetime]:
        returncode, stdout, _ = await self._tmux("display-message", "-t", full_name, "-p", "#{session_created}")
        if returncode != 0:
            return None
        try:
            return datetime.fromtimestamp(int(stdout.strip()), tz=timezone.utc)
        except ValueError:
            return None


class LocalExecutor(TmuxExecutor):
    """tmux on this machine."""

    def __init__(self, prefix: str = SESSION_PREFIX, tmux_bin: str = "tmux") -> None:
        self._prefix = prefix
        self._tmux_bin = tmux_bin

    @property
    def host_tag(self) -> str:
        return ""

    @property
    def session_prefix(self) -> str:
        return self._prefix

    async def _tmux(self, *args: str) -> tuple[int, str, str]:
        return await run_command([self._tmux_bin, *args])
