import logging
import os
import re
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel

from crabctl.config.schema import CrabctlConfig, HostConfig
from crabctl.constants import SESSION_PREFIX
from crabctl.paths import config_path

logger = logging.getLogger(__name__)

_BAY_PATTERN = re.compile(r"bay[^0-9]*(\d+)")


def _warn_unknown_keys(model: BaseModel, path: str, source: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, source, list(model.model_extra.keys()))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", source)
        elif isinstance(field_value, dict):
            for key, value in field_value.items():
                if isinstance(value, BaseModel):
                    _warn_unknown_keys(value, f"{path}.{field_name}.{key}", source)


def workbench_host(env: Mapping[str, str]) -> Optional[tuple[str, HostConfig]]:
    """Host synthesized from WORKBENCH_HOST when nothing is configured.

    The nickname is "bay<N>" when the hostname contains "bay...<N>", else
    "workbench". Sessions there are prefixed with the workbench user's name.
    """
    hostname = env.get("WORKBENCH_HOST", "")
    if not hostname:
        return None

    match = _BAY_PATTERN.search(hostname)
    nickname = f"bay{match.group(1)}" if match else "workbench"
    user = env.get("WORKBENCH_USER") or env.get("USER") or ""
    prefix = f"{user}-" if user else SESSION_PREFIX
    return nickname, HostConfig(host=hostname, user="root", prefix=prefix)


def load_config(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> CrabctlConfig:
    """Load and validate ~/.config/crabctl/config.yaml.

    A missing file yields defaults. A file that cannot be read or parsed is
    logged and also yields defaults, so a broken config never stops the watcher.
    Validation errors (wrong types) propagate.
    """
    if path is None:
        path = config_path()
    if env is None:
        env = os.environ

    raw: dict = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to read config file %s: %s", path, e)
            raw = {}

    cfg = CrabctlConfig.model_validate(raw)
    _warn_unknown_keys(cfg, "root", path)

    if not cfg.hosts:
        fallback = workbench_host(env)
        if fallback is not None:
            nickname, host = fallback
            logger.debug("Using workbench host %s (%s)", nickname, host.host)
            cfg.hosts[nickname] = host

    return cfg
