"""Exceptions raised by crabctl operations."""


class CrabctlError(Exception):
    """Base class for crabctl errors."""


class SessionNotFoundError(CrabctlError):
    """Raised when the addressed session does not exist on its host."""

    def __init__(self, address: str) -> None:
        super().__init__(f"session {address!r} not found")
        self.address = address


class SessionExistsError(CrabctlError):
    """Raised when creating a session whose name is already taken."""

    def __init__(self, address: str) -> None:
        super().__init__(f"session {address!r} already exists")
        self.address = address


class InvalidSessionNameError(CrabctlError):
    """Raised for names outside [a-zA-Z0-9_-]."""

    def __init__(self, name: str) -> None:
        super().__init__(f"invalid session name {name!r}: use only letters, digits, '-' and '_'")
        self.name = name


class PromptTimeoutError(CrabctlError):
    """Raised when a new session never reached its input prompt.

    The session itself is left running.
    """

    def __init__(self, address: str, timeout: float) -> None:
        super().__init__(f"session {address!r} did not show a prompt within {timeout:.0f}s")
        self.address = address
        self.timeout = timeout


class ExecutorError(CrabctlError):
    """Raised when a mutating tmux or ssh call fails."""

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        detail = f": {stderr}" if stderr else ""
        super().__init__(f"{command} failed with exit code {returncode}{detail}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class UnknownHostError(CrabctlError):
    """Raised when an address names a host missing from the config."""

    def __init__(self, host: str) -> None:
        super().__init__(f"unknown host {host!r}: add it under 'hosts' in the config file")
        self.host = host
