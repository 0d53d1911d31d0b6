"""Configuration management.

`.env` is loaded at import time (override its location with CRABCTL_ENV_PATH);
the YAML config is loaded on demand:

    from crabctl.config import load_config
    cfg = load_config()
"""

import os
from pathlib import Path

from dotenv import load_dotenv

from crabctl.config.loader import load_config, workbench_host
from crabctl.config.schema import AutoForwardConfig, CrabctlConfig, HostConfig, PollingConfig

_env_path = os.getenv("CRABCTL_ENV_PATH")
_dotenv_path = Path(_env_path).expanduser() if _env_path else Path("~/.config/crabctl/.env").expanduser()
load_dotenv(_dotenv_path)

__all__ = [
    "AutoForwardConfig",
    "CrabctlConfig",
    "HostConfig",
    "PollingConfig",
    "load_config",
    "workbench_host",
]
