"""crabctl: watch and drive agent sessions running in tmux, locally or over ssh."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from rich.console import Console
from rich.live import Live
from rich.table import Table

from crabctl import __version__
from crabctl.config import CrabctlConfig, load_config
from crabctl.constants import PREVIEW_CAPTURE_LINES
from crabctl.core import session_ops
from crabctl.core.auto_forward import AutoForwardWatchdog
from crabctl.core.db import Db
from crabctl.core.decoration import clean_preview_output
from crabctl.core.errors import CrabctlError, PromptTimeoutError, SessionNotFoundError, UnknownHostError
from crabctl.core.executor import Executor
from crabctl.core.models import ResumableSession, Session, Status
from crabctl.core.orchestrator import Orchestrator
from crabctl.core.registry import sort_sessions
from crabctl.core.session_lister import list_host_sessions
from crabctl.core.ssh_executor import SSHExecutor
from crabctl.core.tmux_bridge import LocalExecutor
from crabctl.core.transcript import list_recent_transcripts, read_transcript_preview
from crabctl.logging_config import setup_logging
from crabctl.paths import db_path
from crabctl.utils import format_duration, format_duration_coarse


console = Console()
err_console = Console(stderr=True)

_STATUS_STYLES = {
    Status.PERMISSION: "bold red",
    Status.CONFIRM: "bold magenta",
    Status.TASK_DONE: "bold green",
    Status.RUNNING: "yellow",
    Status.WAITING: "cyan",
    Status.UNKNOWN: "dim",
}


def resolve_executor(cfg: CrabctlConfig, host: str) -> Executor:
    if not host:
        return LocalExecutor()
    host_cfg = cfg.hosts.get(host)
    if host_cfg is None:
        raise UnknownHostError(host)
    return SSHExecutor(host, host_cfg)


def remote_executors(cfg: CrabctlConfig) -> dict[str, Executor]:
    return {nickname: SSHExecutor(nickname, host) for nickname, host in cfg.hosts.items()}


def open_store() -> Db:
    return Db(str(db_path()))


def _ago(moment: Optional[datetime]) -> str:
    if moment is None:
        return ""
    seconds = (datetime.now(timezone.utc) - moment).total_seconds()
    return f"{format_duration_coarse(max(0.0, seconds))} ago"


def sessions_table(sessions: Sequence[Session], auto_forward: frozenset[str] = frozenset()) -> Table:
    table = Table(box=None, header_style="bold", pad_edge=False)
    for column in ("NAME", "STATUS", "MODE", "AGE", "ACTIVE", "LAST ACTION", "CHANGES", "PR", "CTX", "AF"):
        table.add_column(column, no_wrap=True)
    for s in sessions:
        table.add_row(
            s.address,
            f"[{_STATUS_STYLES[s.status]}]{s.status}[/]",
            s.mode,
            format_duration(s.duration),
            _ago(s.last_active),
            s.last_action,
            s.git_changes,
            s.pr,
            s.context,
            "on" if s.key in auto_forward else "",
        )
    return table


def resumable_table(rows: Sequence[ResumableSession]) -> Table:
    table = Table(box=None, header_style="bold", pad_edge=False)
    for column in ("#", "NAME", "STATE", "SEEN", "DIR", "FIRST MESSAGE"):
        table.add_column(column, no_wrap=True)
    for index, row in enumerate(rows, start=1):
        table.add_row(
            str(index),
            row.name,
            "killed" if row.killed else "lost",
            _ago(row.last_seen),
            row.work_dir,
            row.first_message,
        )
    return table


# --- commands --------------------------------------------------------------


async def cmd_list(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    executors: list[Executor] = [LocalExecutor(), *remote_executors(cfg).values()]
    results = await asyncio.gather(*(list_host_sessions(ex) for ex in executors), return_exceptions=True)

    sessions: list[Session] = []
    for executor, result in zip(executors, results):
        if isinstance(result, BaseException):
            err_console.print(f"[yellow]warning:[/] {executor.host_tag}: {result}")
            continue
        sessions.extend(result)

    async with open_store() as store:
        auto_forward = frozenset(await store.load_all_auto_forward())

    if not sessions:
        console.print("No sessions.")
        return 0
    console.print(sessions_table(sort_sessions(sessions), auto_forward))
    return 0


async def cmd_new(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    host, name = session_ops.parse_address(args.address)
    executor = resolve_executor(cfg, host)
    work_dir = args.dir or ("" if host else os.getcwd())
    message = args.message or " ".join(args.text)

    try:
        await session_ops.create_session(executor, name, work_dir, message or None)
    except PromptTimeoutError as e:
        err_console.print(f"[yellow]warning:[/] {e} (session created but message not sent)")
        return 0
    console.print(f"Created session {args.address!r}")
    if message:
        console.print(f"Sent: {message}")
    return 0


async def cmd_send(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    host, name = session_ops.parse_address(args.address)
    executor = resolve_executor(cfg, host)
    text = " ".join(args.text)
    async with open_store() as store:
        await session_ops.send_to_session(executor, name, text, store)
    console.print(f"Sent to {args.address!r}: {text}")
    return 0


async def cmd_kill(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    host, name = session_ops.parse_address(args.address)
    executor = resolve_executor(cfg, host)
    await session_ops.require_session(executor, name)

    if not args.force:
        answer = input(f"Kill session {args.address!r}? [y/N] ")
        if not answer.strip().lower().startswith("y"):
            console.print("Cancelled.")
            return 0

    async with open_store() as store:
        await session_ops.kill_session(executor, name, store)
    console.print(f"Killed session {args.address!r}")
    return 0


async def cmd_set(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    host, name = session_ops.parse_address(args.address)
    executor = resolve_executor(cfg, host)
    async with open_store() as store:
        await session_ops.set_auto_forward(executor, name, args.autoforward, store)
    console.print(f"{'Enabled' if args.autoforward else 'Disabled'} autoforward for {args.address!r}")
    return 0


def _pick_resumable(rows: Sequence[ResumableSession], selector: str) -> Optional[ResumableSession]:
    if selector.isdigit():
        index = int(selector)
        return rows[index - 1] if 0 < index <= len(rows) else None
    for row in rows:
        full_name = row.name.rpartition(":")[2]
        if selector in (row.name, full_name) or full_name.endswith(f"-{selector}"):
            return row
    return None


async def cmd_resume(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    async with open_store() as store:
        rows = await (store.list_resumable(args.limit) if args.all else store.list_killed(args.limit))
        if not args.selector:
            if not rows:
                console.print("Nothing to resume.")
            else:
                console.print(resumable_table(rows))
            return 0

        past = _pick_resumable(rows, args.selector)
        if past is None:
            raise SessionNotFoundError(args.selector)
        host = past.name.partition(":")[0] if ":" in past.name else ""
        executor = resolve_executor(cfg, host)
        full_name = await session_ops.resume_session(executor, past, store)
    console.print(f"Resumed {full_name} on transcript {past.session_id}")
    return 0


async def cmd_peek(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    host, name = session_ops.parse_address(args.address)
    executor = resolve_executor(cfg, host)
    full_name = await session_ops.require_session(executor, name)

    if args.transcript:
        if host:
            raise CrabctlError("transcripts are only readable for local sessions")
        async with open_store() as store:
            transcript_id, _ = await session_ops.current_transcript(executor, full_name, store)
        work_dir = await executor.resolve_working_directory(full_name)
        console.print(read_transcript_preview(work_dir, transcript_id, args.lines) or "No transcript found.")
        return 0

    output = await executor.capture_pane_text(full_name, args.lines)
    console.print(clean_preview_output(output), markup=False, highlight=False)
    return 0


async def cmd_history(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    table = Table(box=None, header_style="bold", pad_edge=False)
    for column in ("ID", "MODIFIED", "DIR", "FIRST MESSAGE"):
        table.add_column(column, no_wrap=True)
    for info in list_recent_transcripts(args.limit):
        table.add_row(info.session_id, _ago(info.mod_time), info.project_dir, info.first_message)
    console.print(table)
    return 0


async def cmd_watch(cfg: CrabctlConfig, args: argparse.Namespace) -> int:
    watchdog = AutoForwardWatchdog(
        delay=cfg.auto_forward.delay,
        max_forwards=cfg.auto_forward.max_forwards,
        message=cfg.auto_forward.message,
    )
    async with open_store() as store:
        with Live(sessions_table([]), console=console, auto_refresh=False) as live:

            def render(sessions: list[Session]) -> None:
                enabled = frozenset(k for k in (s.key for s in sessions) if watchdog.is_enabled(k))
                live.update(sessions_table(sessions, enabled), refresh=True)

            orchestrator = Orchestrator(
                LocalExecutor(),
                remote_executors(cfg),
                store=store,
                polling=cfg.polling,
                watchdog=watchdog,
                on_change=render,
            )
            await orchestrator.run()
    return 0


_COMMANDS = {
    "list": cmd_list,
    "new": cmd_new,
    "send": cmd_send,
    "kill": cmd_kill,
    "set": cmd_set,
    "resume": cmd_resume,
    "peek": cmd_peek,
    "history": cmd_history,
    "watch": cmd_watch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crabctl", description="Manage agent sessions in tmux.")
    parser.add_argument("--version", action="version", version=f"crabctl {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr at debug level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", aliases=["ls"], help="List sessions on every host")

    new = sub.add_parser("new", help="Create a new session")
    new.add_argument("address", metavar="[host:]name")
    new.add_argument("text", nargs="*", help="First message to send once the agent is ready")
    new.add_argument("-c", "--dir", default="", help="Working directory for the session")
    new.add_argument("-m", "--message", default="", help="First message (alternative to positional text)")

    send = sub.add_parser("send", help="Send text to a session")
    send.add_argument("address", metavar="[host:]name")
    send.add_argument("text", nargs="+")

    kill = sub.add_parser("kill", help="Kill a session, keeping it resumable")
    kill.add_argument("address", metavar="[host:]name")
    kill.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    set_cmd = sub.add_parser("set", help="Set session options")
    set_cmd.add_argument("address", metavar="[host:]name")
    toggle = set_cmd.add_mutually_exclusive_group(required=True)
    toggle.add_argument("-a", "--autoforward", dest="autoforward", action="store_true", default=None)
    toggle.add_argument("-A", "--stop-autoforward", dest="autoforward", action="store_false")

    resume = sub.add_parser("resume", help="List killed sessions or resume one")
    resume.add_argument("selector", nargs="?", help="Row number or session name")
    resume.add_argument("--all", action="store_true", help="Include sessions lost without a kill")
    resume.add_argument("-n", "--limit", type=int, default=20)

    peek = sub.add_parser("peek", help="Show a session's screen or transcript")
    peek.add_argument("address", metavar="[host:]name")
    peek.add_argument("-t", "--transcript", action="store_true", help="Show recent transcript turns instead")
    peek.add_argument("-n", "--lines", type=int, default=PREVIEW_CAPTURE_LINES)

    history = sub.add_parser("history", help="List recent agent transcripts")
    history.add_argument("-n", "--limit", type=int, default=20)

    sub.add_parser("watch", help="Poll continuously and auto-forward idle sessions")
    return parser


def _main_impl(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    command = "list" if args.command == "ls" else args.command
    setup_logging("DEBUG" if args.verbose else None, to_stderr=args.verbose)

    cfg = load_config()
    try:
        return asyncio.run(_COMMANDS[command](cfg, args))
    except CrabctlError as e:
        err_console.print(f"[red]crabctl error:[/] {e}")
        return 1


def main(argv: Optional[Sequence[str]] = None) -> None:
    try:
        sys.exit(_main_impl(argv))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
