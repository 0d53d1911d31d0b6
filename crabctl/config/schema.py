from pathlib import Path
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crabctl.constants import (
    AUTO_FORWARD_DELAY,
    AUTO_FORWARD_MESSAGE,
    LOCAL_POLL_INTERVAL,
    MAX_AUTO_FORWARDS,
    MAX_REMOTE_POLL_INTERVAL,
    REMOTE_IDLE_BACKOFF_STEP,
    REMOTE_POLL_INTERVAL,
    SESSION_PREFIX,
)


class HostConfig(BaseModel):
    """A remote machine reached over ssh."""

    model_config = ConfigDict(extra="allow")
    host: str
    user: str = "root"
    ssh_key: str = ""
    prefix: str = SESSION_PREFIX

    @field_validator("prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        """Empty means the default prefix; anything else always ends in '-'."""
        if not v:
            return SESSION_PREFIX
        return v if v.endswith("-") else f"{v}-"

    @field_validator("ssh_key")
    @classmethod
    def expand_ssh_key(cls, v: str) -> str:
        if v.startswith("~"):
            return str(Path(v).expanduser())
        return v


class PollingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    local_interval: float = Field(default=LOCAL_POLL_INTERVAL, gt=0)
    remote_interval: float = Field(default=REMOTE_POLL_INTERVAL, gt=0)
    max_remote_interval: float = Field(default=MAX_REMOTE_POLL_INTERVAL, gt=0)
    idle_backoff_step: float = Field(default=REMOTE_IDLE_BACKOFF_STEP, gt=0)


class AutoForwardConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    delay: float = Field(default=AUTO_FORWARD_DELAY, ge=0)
    max_forwards: int = Field(default=MAX_AUTO_FORWARDS, ge=0)
    message: str = AUTO_FORWARD_MESSAGE


class CrabctlConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    hosts: Dict[str, HostConfig] = {}
    polling: PollingConfig = PollingConfig()
    auto_forward: AutoForwardConfig = AutoForwardConfig()
