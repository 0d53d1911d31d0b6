"""Session operations behind the CLI: create, send, kill, resume, auto-forward."""

import asyncio
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import AbstractSet, Optional, Sequence

from crabctl.constants import (
    DEFAULT_AGENT_ARGS,
    PREVIEW_CAPTURE_LINES,
    PROMPT_CAPTURE_LINES,
    PROMPT_WAIT_POLL,
    PROMPT_WAIT_TIMEOUT,
    SESSION_NAME_PATTERN,
    SUBMIT_VERIFY_ATTEMPTS,
    SUBMIT_VERIFY_DELAY,
)
from crabctl.core.correlator import find_transcript, link_is_current
from crabctl.core.db import Db
from crabctl.core.errors import InvalidSessionNameError, PromptTimeoutError, SessionExistsError, SessionNotFoundError
from crabctl.core.executor import Executor
from crabctl.core.models import ResumableSession, Status, session_key
from crabctl.core.status_classifier import detect_status

logger = logging.getLogger(__name__)

_VALID_NAME = re.compile(SESSION_NAME_PATTERN)


def parse_address(address: str) -> tuple[str, str]:
    """Split "host:name" into (host, name); a bare name is local."""
    host, sep, name = address.partition(":")
    if not sep:
        return "", address
    return host, name


def validate_name(name: str) -> None:
    if not _VALID_NAME.match(name):
        raise InvalidSessionNameError(name)


async def require_session(executor: Executor, name: str) -> str:
    """Full name of an existing session, or SessionNotFoundError."""
    full_name = executor.full_name(name)
    if not await executor.has_session(full_name):
        raise SessionNotFoundError(executor.address(name))
    return full_name


async def wait_for_prompt(
    executor: Executor,
    full_name: str,
    timeout: float = PROMPT_WAIT_TIMEOUT,
    poll: float = PROMPT_WAIT_POLL,
) -> None:
    """Poll until the agent shows its input prompt; PromptTimeoutError otherwise."""
    attempts = max(1, int(timeout / poll))
    for _ in range(attempts):
        await asyncio.sleep(poll)
        output = await executor.capture_pane_text(full_name, PROMPT_CAPTURE_LINES)
        if detect_status(output) == Status.WAITING:
            return
    raise PromptTimeoutError(full_name, timeout)


async def submit_message(executor: Executor, full_name: str, text: str) -> bool:
    """Send text, then re-press Enter while the prompt still shows it unsubmitted.

    The agent sometimes swallows the Enter that arrives right after pasted
    text. Returns True once the agent is seen working, False if it still sat
    at the prompt after every retry (the text was still delivered).
    """
    await executor.send_literal_text(full_name, text)
    for _ in range(SUBMIT_VERIFY_ATTEMPTS):
        await asyncio.sleep(SUBMIT_VERIFY_DELAY)
        output = await executor.capture_pane_text(full_name, PROMPT_CAPTURE_LINES)
        if detect_status(output) != Status.WAITING:
            return True
        logger.debug("Message to %s not submitted yet, pressing Enter again", full_name)
        await executor.send_enter(full_name)
    return False


async def create_session(
    executor: Executor,
    name: str,
    work_dir: str,
    message: Optional[str] = None,
    agent_args: Sequence[str] = DEFAULT_AGENT_ARGS,
    prompt_timeout: float = PROMPT_WAIT_TIMEOUT,
) -> str:
    """Start a new agent session and optionally hand it a first message.

    Raises PromptTimeoutError when the agent never became ready for the
    message; the session is left running in that case.
    """
    validate_name(name)
    full_name = executor.full_name(name)
    if await executor.has_session(full_name):
        raise SessionExistsError(executor.address(name))

    await executor.create_session(name, work_dir, agent_args)

    if message:
        try:
            await wait_for_prompt(executor, full_name, timeout=prompt_timeout)
        except PromptTimeoutError:
            logger.warning("Session %s created but never showed a prompt; message not sent", full_name)
            raise
        await submit_message(executor, full_name, message)
    return full_name


async def send_to_session(executor: Executor, name: str, text: str, store: Optional[Db] = None) -> str:
    full_name = await require_session(executor, name)
    await executor.send_literal_text(full_name, text)
    if store is not None:
        await store.record_send(session_key(executor.host_tag, full_name))
    return full_name


async def current_transcript(
    executor: Executor,
    full_name: str,
    store: Optional[Db] = None,
    exclude: AbstractSet[str] = frozenset(),
    projects_dir: Optional[Path] = None,
) -> tuple[str, str]:
    """(transcript id, first message) of a live session, or ("", "").

    The store's link is used when it belongs to this session, otherwise the
    transcript is correlated now (local sessions only).
    """
    key = session_key(executor.host_tag, full_name)
    local = not executor.host_tag
    work_dir = await executor.resolve_working_directory(full_name)
    started: Optional[datetime] = await executor.session_created_at(full_name)

    if store is not None:
        link = await store.get_transcript_link(key)
        if link is not None and await asyncio.to_thread(
            link_is_current, link, work_dir, started, projects_dir, local
        ):
            return link.session_id, ""
    if not local:
        return "", ""
    pane = await executor.capture_pane_text(full_name, PREVIEW_CAPTURE_LINES)
    return await asyncio.to_thread(find_transcript, work_dir, started, pane, exclude, projects_dir)


async def kill_session(
    executor: Executor,
    name: str,
    store: Optional[Db] = None,
    exclude: AbstractSet[str] = frozenset(),
    projects_dir: Optional[Path] = None,
) -> str:
    """Kill a session, recording its transcript first so it can be resumed."""
    full_name = await require_session(executor, name)
    work_dir = await executor.resolve_working_directory(full_name)
    transcript_id, first_message = await current_transcript(executor, full_name, store, exclude, projects_dir)

    await executor.kill_session(full_name)

    if store is not None and transcript_id:
        await store.mark_killed(session_key(executor.host_tag, full_name), transcript_id, work_dir, first_message)
    return full_name


async def resume_session(
    executor: Executor,
    past: ResumableSession,
    store: Optional[Db] = None,
    agent_args: Sequence[str] = DEFAULT_AGENT_ARGS,
) -> str:
    """Recreate a killed or lost session on its transcript, under its old name."""
    full_name = past.name.rpartition(":")[2]
    if not full_name.startswith(executor.session_prefix):
        raise SessionNotFoundError(past.name)
    name = full_name[len(executor.session_prefix) :]
    if await executor.has_session(full_name):
        raise SessionExistsError(executor.address(name))

    await executor.create_session(name, past.work_dir, [*agent_args, "--resume", past.session_id])
    if store is not None:
        await store.mark_resumed(past.name)
    logger.info("Resumed %s on transcript %s", full_name, past.session_id)
    return full_name


async def set_auto_forward(executor: Executor, name: str, enabled: bool, store: Db) -> str:
    full_name = await require_session(executor, name)
    await store.set_auto_forward(session_key(executor.host_tag, full_name), enabled)
    return full_name
