"""Build Session snapshots for one host."""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from crabctl.constants import STATUS_CAPTURE_LINES
from crabctl.core.executor import Executor
from crabctl.core.models import Session, SessionListing
from crabctl.core.status_classifier import analyze_output
from crabctl.core.transcript import latest_transcript_mtime

logger = logging.getLogger(__name__)


async def build_session(
    executor: Executor,
    listing: SessionListing,
    now: datetime,
    projects_dir: Optional[Path] = None,
) -> Session:
    output = await executor.capture_pane_text(listing.full_name, STATUS_CAPTURE_LINES)
    status, bar, last_action = analyze_output(output)
    work_dir = await executor.resolve_working_directory(listing.full_name)

    host = executor.host_tag
    # Transcripts are only readable for sessions on this machine
    last_active = await asyncio.to_thread(latest_transcript_mtime, work_dir, projects_dir) if not host else None

    return Session(
        name=listing.name,
        full_name=listing.full_name,
        host=host,
        status=status,
        mode=bar.mode,
        last_action=last_action,
        git_changes=bar.git_changes,
        pr=bar.pr,
        context=bar.context,
        duration=max(0.0, (now - listing.created_at).total_seconds()),
        last_active=last_active,
        attached_count=listing.attached_count,
        work_dir=work_dir,
        created_at=listing.created_at,
    )


async def list_host_sessions(
    executor: Executor,
    now: Optional[datetime] = None,
    projects_dir: Optional[Path] = None,
) -> list[Session]:
    """Every managed session on the executor's host, classified from a fresh capture."""
    if now is None:
        now = datetime.now(timezone.utc)

    listings = await executor.list_sessions()
    sessions = [await build_session(executor, listing, now, projects_dir) for listing in listings]
    logger.debug("Listed %d sessions on %s", len(sessions), executor.host_tag or "local")
    return sessions
