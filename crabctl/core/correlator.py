"""Match a live session to the transcript file it is writing.

Several sessions can share one working directory, so "newest file in the
folder" is not enough. Candidates are the newest transcripts in the folder
(never opening excluded ones), tried with these strategies in order:

1. content match: the candidate whose recent human messages appear on screen;
2. start proximity: the first candidate that started at or after the session;
3. written during the session's lifetime;
4. newest overall.

Candidate order (mtime descending, then id) breaks every tie, so the same
inputs always give the same answer.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AbstractSet, Iterable, Optional

from crabctl.constants import CONTENT_MATCH_TURNS, MAX_TRANSCRIPT_CANDIDATES
from crabctl.core.models import TranscriptLink
from crabctl.core.transcript import (
    TRANSCRIPT_SUFFIX,
    list_transcript_files,
    project_dir_path,
    read_last_user_messages,
    read_transcript_meta,
    transcript_mtime,
)

logger = logging.getLogger(__name__)

NO_MATCH = ("", "")


@dataclass
class Candidate:
    session_id: str
    path: Path
    mod_time: datetime
    first_message: str = ""
    started: Optional[datetime] = None


@dataclass
class CorrelationRequest:
    """One session to resolve in a batch."""

    key: str  # caller's handle for the session, usually its full name
    work_dir: str
    session_start: Optional[datetime]
    pane_content: str = ""


def collect_candidates(
    work_dir: str,
    exclude: AbstractSet[str],
    projects_dir: Optional[Path] = None,
    limit: int = MAX_TRANSCRIPT_CANDIDATES,
) -> list[Candidate]:
    """Newest non-excluded transcripts for a work dir, with their metadata read."""
    folder = project_dir_path(work_dir, projects_dir)
    files = [(sid, mtime) for sid, mtime in list_transcript_files(folder) if sid not in exclude]
    files.sort(key=lambda item: (-item[1].timestamp(), item[0]))

    candidates: list[Candidate] = []
    for session_id, mtime in files[:limit]:
        path = folder / f"{session_id}{TRANSCRIPT_SUFFIX}"
        meta = read_transcript_meta(path)
        candidates.append(
            Candidate(
                session_id=session_id,
                path=path,
                mod_time=mtime,
                first_message=meta.first_message,
                started=meta.started,
            )
        )
    return candidates


def match_by_content(candidates: list[Candidate], pane_content: str) -> Optional[Candidate]:
    """Candidate with the most recent human messages visible on screen."""
    best: Optional[Candidate] = None
    best_score = 0
    for candidate in candidates:
        snippets = read_last_user_messages(candidate.path, CONTENT_MATCH_TURNS)
        score = sum(1 for snippet in snippets if snippet in pane_content)
        if score > best_score:
            best, best_score = candidate, score
    return best


def match_by_start(candidates: list[Candidate], session_start: datetime) -> Optional[Candidate]:
    """Candidate whose first human turn is closest to, and not before, session start."""
    best: Optional[Candidate] = None
    best_gap: Optional[float] = None
    for candidate in candidates:
        if candidate.started is None:
            continue
        gap = (candidate.started - session_start).total_seconds()
        if gap >= 0 and (best_gap is None or gap < best_gap):
            best, best_gap = candidate, gap
    return best


def match_by_lifetime(candidates: list[Candidate], session_start: datetime) -> Optional[Candidate]:
    """Newest transcript written after the session started (covers resumed conversations)."""
    for candidate in candidates:
        if candidate.mod_time >= session_start:
            return candidate
    return None


def find_transcript(
    work_dir: str,
    session_start: Optional[datetime],
    pane_content: str = "",
    exclude: AbstractSet[str] = frozenset(),
    projects_dir: Optional[Path] = None,
) -> tuple[str, str]:
    """Return (session id, first message) of the best transcript, or ("", "")."""
    if not work_dir:
        return NO_MATCH

    candidates = collect_candidates(work_dir, exclude, projects_dir)
    if not candidates:
        return NO_MATCH

    match: Optional[Candidate] = None
    strategy = ""
    if pane_content and len(candidates) > 1:
        match, strategy = match_by_content(candidates, pane_content), "content"
    if match is None and session_start is not None:
        match, strategy = match_by_start(candidates, session_start), "start"
    if match is None and session_start is not None:
        match, strategy = match_by_lifetime(candidates, session_start), "lifetime"
    if match is None:
        match, strategy = candidates[0], "newest"

    logger.debug("Correlated %s to %s by %s", work_dir, match.session_id, strategy)
    return match.session_id, match.first_message


def resolve_transcripts(
    requests: Iterable[CorrelationRequest],
    exclude: AbstractSet[str] = frozenset(),
    projects_dir: Optional[Path] = None,
) -> dict[str, tuple[str, str]]:
    """Resolve several sessions in one pass; each transcript is claimed at most once.

    Ids in `exclude` (already claimed by known sessions) are never handed out.
    Unresolved requests are absent from the result.
    """
    claimed = set(exclude)
    resolved: dict[str, tuple[str, str]] = {}
    for request in requests:
        session_id, first_message = find_transcript(
            request.work_dir, request.session_start, request.pane_content, claimed, projects_dir
        )
        if session_id:
            claimed.add(session_id)
            resolved[request.key] = (session_id, first_message)
    return resolved


def link_is_current(
    link: Optional[TranscriptLink],
    work_dir: str,
    session_start: Optional[datetime],
    projects_dir: Optional[Path] = None,
    check_mtime: bool = True,
) -> bool:
    """Whether a stored link belongs to the session running under that name now.

    A name outlives its sessions: a killed session's row stays behind, and a
    later `new` with the same name must not inherit that transcript. The link
    counts only when it is not marked killed, was made in the same working
    directory, and (when the file is readable here) the transcript was
    written at or after the session started.
    """
    if link is None or link.killed or not link.session_id:
        return False
    if not work_dir or link.work_dir != work_dir:
        return False
    if not check_mtime or session_start is None:
        return True
    written = transcript_mtime(work_dir, link.session_id, projects_dir)
    return written is not None and written >= session_start
