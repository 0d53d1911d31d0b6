from __future__ import annotations

import os
from pathlib import Path


def state_dir() -> Path:
    """Directory for crabctl state ($XDG_STATE_HOME/crabctl)."""
    state_home = os.getenv("XDG_STATE_HOME")
    base = Path(state_home).expanduser() if state_home else Path("~/.local/state").expanduser()
    return base / "crabctl"


def db_path() -> Path:
    """State database path (CRABCTL_DB_PATH wins for tests)."""
    env_path = os.getenv("CRABCTL_DB_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return state_dir() / "state.db"


def log_path() -> Path:
    return state_dir() / "crabctl.log"


def config_path() -> Path:
    env_path = os.getenv("CRABCTL_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return Path("~/.config/crabctl/config.yaml").expanduser()


def claude_projects_dir() -> Path:
    """Root under which the agent keeps one transcript folder per working directory."""
    env_path = os.getenv("CRABCTL_CLAUDE_PROJECTS_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return Path("~/.claude/projects").expanduser()
