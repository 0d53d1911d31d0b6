"""Unit tests for the crabctl command line."""

from datetime import datetime, timezone

import pytest

from crabctl.cli.main import _main_impl, _pick_resumable, build_parser, resolve_executor, sessions_table
from crabctl.config import CrabctlConfig, HostConfig
from crabctl.core.errors import UnknownHostError
from crabctl.core.models import ResumableSession, Session, Status
from crabctl.core.ssh_executor import SSHExecutor
from crabctl.core.tmux_bridge import LocalExecutor

pytestmark = pytest.mark.unit


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.setenv("CRABCTL_CONFIG", str(tmp_path / "config.yaml"))
    monkeypatch.setenv("CRABCTL_DB_PATH", str(tmp_path / "state.db"))
    monkeypatch.delenv("WORKBENCH_HOST", raising=False)
    return tmp_path


def test_parser_commands():
    parser = build_parser()

    args = parser.parse_args(["new", "bay3:worker", "-c", "/src", "fix", "the", "bug"])
    assert (args.command, args.address, args.dir, args.text) == ("new", "bay3:worker", "/src", ["fix", "the", "bug"])

    assert parser.parse_args(["ls"]).command == "ls"
    assert parser.parse_args(["kill", "-f", "w"]).force
    assert parser.parse_args(["set", "w", "-a"]).autoforward is True
    assert parser.parse_args(["set", "w", "-A"]).autoforward is False
    assert parser.parse_args(["resume", "2", "--all"]).selector == "2"
    assert parser.parse_args(["peek", "w", "-t", "-n", "5"]).lines == 5


def test_parser_rejects_conflicting_autoforward_flags():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["set", "w", "-a", "-A"])


def test_resolve_executor():
    cfg = CrabctlConfig(hosts={"bay3": HostConfig(host="bay3.example.com")})

    assert isinstance(resolve_executor(cfg, ""), LocalExecutor)
    remote = resolve_executor(cfg, "bay3")
    assert isinstance(remote, SSHExecutor)
    assert remote.host_tag == "bay3"
    with pytest.raises(UnknownHostError):
        resolve_executor(cfg, "bay9")


def test_pick_resumable():
    rows = [
        ResumableSession(name="crab-alpha", session_id="1", work_dir="/a", first_message=""),
        ResumableSession(name="bay3:crab-beta", session_id="2", work_dir="/b", first_message=""),
    ]
    assert _pick_resumable(rows, "2") is rows[1]
    assert _pick_resumable(rows, "alpha") is rows[0]
    assert _pick_resumable(rows, "crab-beta") is rows[1]
    assert _pick_resumable(rows, "bay3:crab-beta") is rows[1]
    assert _pick_resumable(rows, "3") is None
    assert _pick_resumable(rows, "gamma") is None


def test_sessions_table_rows():
    sessions = [
        Session(name="a", full_name="crab-a", status=Status.PERMISSION, duration=90),
        Session(
            name="b",
            full_name="crab-b",
            host="bay3",
            status=Status.RUNNING,
            last_active=datetime.now(timezone.utc),
        ),
    ]
    table = sessions_table(sessions, frozenset({"bay3:crab-b"}))

    assert table.row_count == 2
    assert len(table.columns) == 10


def test_unknown_host_exits_with_error(isolated_env, capsys):
    assert _main_impl(["send", "nowhere:w", "hello"]) == 1


def test_resume_with_nothing_stored(isolated_env):
    assert _main_impl(["resume"]) == 0
