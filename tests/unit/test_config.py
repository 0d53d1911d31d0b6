"""Unit tests for config loading."""

import logging

import pytest
from pydantic import ValidationError

from crabctl.config import CrabctlConfig, HostConfig, load_config, workbench_host
from crabctl.constants import AUTO_FORWARD_MESSAGE, LOCAL_POLL_INTERVAL

pytestmark = pytest.mark.unit


def test_missing_file_gives_defaults(tmp_path):
    cfg = load_config(tmp_path / "missing.yaml", env={})

    assert cfg.hosts == {}
    assert cfg.polling.local_interval == LOCAL_POLL_INTERVAL
    assert cfg.auto_forward.max_forwards == 5
    assert cfg.auto_forward.message == AUTO_FORWARD_MESSAGE


def test_hosts_and_overrides(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        """
hosts:
  bay3:
    host: bay3.example.com
    user: dev
    ssh_key: ~/.ssh/bay3
    prefix: alice
polling:
  remote_interval: 8
auto_forward:
  delay: 20
""",
        encoding="utf-8",
    )
    cfg = load_config(path, env={})

    host = cfg.hosts["bay3"]
    assert host.host == "bay3.example.com"
    assert host.user == "dev"
    assert host.prefix == "alice-"
    assert not host.ssh_key.startswith("~")
    assert host.ssh_key.endswith(".ssh/bay3")
    assert cfg.polling.remote_interval == 8
    assert cfg.auto_forward.delay == 20


def test_host_defaults():
    host = HostConfig(host="h")
    assert (host.user, host.ssh_key, host.prefix) == ("root", "", "crab-")
    assert HostConfig(host="h", prefix="").prefix == "crab-"
    assert HostConfig(host="h", prefix="bob-").prefix == "bob-"


def test_unknown_keys_are_warned_not_fatal(tmp_path, caplog, monkeypatch):
    monkeypatch.setattr(logging.getLogger("crabctl"), "propagate", True)
    path = tmp_path / "config.yaml"
    path.write_text("polling:\n  local_interval: 2\n  turbo: true\nextra_section: 1\n", encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="crabctl.config.loader"):
        cfg = load_config(path, env={})

    assert cfg.polling.local_interval == 2
    assert isinstance(cfg, CrabctlConfig)
    assert "turbo" in caplog.text
    assert "extra_section" in caplog.text


def test_invalid_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("hosts: [unclosed\n", encoding="utf-8")

    assert load_config(path, env={}).hosts == {}


def test_wrong_types_raise(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("polling:\n  local_interval: -1\n", encoding="utf-8")

    with pytest.raises(ValidationError):
        load_config(path, env={})


@pytest.mark.parametrize(
    ("hostname", "nickname"),
    [("bay3.lab.internal", "bay3"), ("dev-bay-12", "bay12"), ("workstation.example.com", "workbench")],
)
def test_workbench_host_nickname(hostname, nickname):
    name, host = workbench_host({"WORKBENCH_HOST": hostname, "WORKBENCH_USER": "alice"})
    assert name == nickname
    assert host.host == hostname
    assert host.prefix == "alice-"


def test_workbench_host_prefix_falls_back_to_user():
    assert workbench_host({"WORKBENCH_HOST": "h", "USER": "bob"})[1].prefix == "bob-"
    assert workbench_host({"WORKBENCH_HOST": "h"})[1].prefix == "crab-"
    assert workbench_host({}) is None


def test_workbench_host_used_only_without_configured_hosts(tmp_path):
    env = {"WORKBENCH_HOST": "bay7.lab", "USER": "carol"}
    assert list(load_config(tmp_path / "missing.yaml", env=env).hosts) == ["bay7"]

    path = tmp_path / "config.yaml"
    path.write_text("hosts:\n  build:\n    host: build.example.com\n", encoding="utf-8")
    assert list(load_config(path, env=env).hosts) == ["build"]
