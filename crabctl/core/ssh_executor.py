"""Remote tmux over ssh.

Connections are multiplexed through an ssh ControlMaster socket so that the
many short tmux calls of a poll round reuse one TCP connection.
"""

import logging
import shlex

from crabctl.config.schema import HostConfig
from crabctl.core.errors import ExecutorError
from crabctl.core.tmux_bridge import TIMED_OUT, TmuxExecutor, run_command

logger = logging.getLogger(__name__)

CONTROL_PATH = "/tmp/crabctl-ssh-%r@%h:%p"

# ssh exits with 255 when it failed itself (unreachable host, auth) rather than the remote command
SSH_FAILURE = 255


class SSHExecutor(TmuxExecutor):
    """tmux on a remote host, reached with ssh."""

    def __init__(self, nickname: str, host: HostConfig) -> None:
        self._nickname = nickname
        self._host = host

    @property
    def host_tag(self) -> str:
        return self._nickname

    @property
    def session_prefix(self) -> str:
        return self._host.prefix

    def ssh_args(self) -> list[str]:
        args = [
            "-o",
            "ControlMaster=auto",
            "-o",
            f"ControlPath={CONTROL_PATH}",
            "-o",
            "ControlPersist=60",
            "-o",
            "StrictHostKeyChecking=accept-new",
        ]
        if self._host.ssh_key:
            args.extend(["-i", self._host.ssh_key])
        args.append(f"{self._host.user}@{self._host.host}")
        return args

    async def _tmux(self, *args: str) -> tuple[int, str, str]:
        remote_command = shlex.join(["tmux", *args])
        returncode, stdout, stderr = await run_command(["ssh", *self.ssh_args(), remote_command])
        if returncode in (SSH_FAILURE, TIMED_OUT):
            logger.warning("ssh to %s failed: %s", self._nickname, stderr)
            raise ExecutorError(f"ssh {self._nickname}", returncode, stderr)
        return returncode, stdout, stderr
