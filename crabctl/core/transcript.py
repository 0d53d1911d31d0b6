"""Reading the agent's JSONL transcripts.

The agent appends one JSON object per line to
`<projects dir>/<encoded work dir>/<session id>.jsonl`. Only a few fields are
used here: `type` ("user" / "assistant"), `cwd`, `timestamp` (RFC 3339) and
`message.content`, which is either a string or a list of content blocks.
Malformed lines are skipped; unreadable files read as empty.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from crabctl.constants import FIRST_MESSAGE_MAX_CHARS, PREVIEW_MESSAGE_MAX_CHARS, SNIPPET_MAX_CHARS
from crabctl.core.models import TranscriptInfo, TranscriptMeta
from crabctl.core.ui_catalog import COMMAND_MESSAGE_PREFIX
from crabctl.paths import claude_projects_dir
from crabctl.utils import normalize_whitespace, truncate

logger = logging.getLogger(__name__)

TRANSCRIPT_SUFFIX = ".jsonl"

_ROLE_LABELS = {"user": "You", "assistant": "Claude"}


def encode_project_dir(work_dir: str) -> str:
    """Folder name the agent uses for a working directory: "/" becomes "-"."""
    return work_dir.replace("/", "-")


def project_dir_path(work_dir: str, projects_dir: Optional[Path] = None) -> Path:
    root = projects_dir if projects_dir is not None else claude_projects_dir()
    return root / encode_project_dir(work_dir)


def transcript_path(work_dir: str, session_id: str, projects_dir: Optional[Path] = None) -> Path:
    return project_dir_path(work_dir, projects_dir) / f"{session_id}{TRANSCRIPT_SUFFIX}"


def file_mtime(path: Path) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


def parse_timestamp(ts: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp such as "2025-11-11T04:25:33.890Z"."""
    if not ts:
        return None
    try:
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def iter_entries(path: Path) -> Iterator[dict]:
    """Yield the JSON objects of a transcript file, skipping malformed lines."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(entry, dict):
                    yield entry
    except OSError as e:
        logger.debug("Cannot read transcript %s: %s", path, e)


def extract_text(entry: dict) -> str:
    """Text of a turn: the string content, or the first non-empty text block."""
    message = entry.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str) and text:
                    return text
    return ""


def _human_text(entry: dict) -> str:
    """Text of a user turn typed by a human; command invocations read as empty."""
    text = extract_text(entry)
    if text.startswith(COMMAND_MESSAGE_PREFIX):
        return ""
    return text


def read_transcript_meta(path: Path) -> TranscriptMeta:
    """cwd, first human message and start time, taken from user turns only."""
    meta = TranscriptMeta()
    for entry in iter_entries(path):
        if entry.get("type") != "user":
            continue

        cwd = entry.get("cwd")
        if not meta.cwd and isinstance(cwd, str):
            meta.cwd = cwd
        timestamp = entry.get("timestamp")
        if meta.started is None and isinstance(timestamp, str):
            meta.started = parse_timestamp(timestamp)

        if meta.first_message:
            continue
        text = _human_text(entry)
        if not text:
            continue
        meta.first_message = truncate(text.replace("\n", " "), FIRST_MESSAGE_MAX_CHARS)
        if meta.cwd and meta.started is not None:
            break
    return meta


def read_last_user_messages(path: Path, count: int) -> list[str]:
    """Last `count` human messages, whitespace-collapsed and cut to a matchable snippet."""
    messages: list[str] = []
    for entry in iter_entries(path):
        if entry.get("type") != "user":
            continue
        text = _human_text(entry)
        if not text:
            continue
        messages.append(normalize_whitespace(text)[:SNIPPET_MAX_CHARS])
    return messages[-count:] if count > 0 else []


def read_transcript_preview(
    work_dir: str, session_id: str, max_messages: int, projects_dir: Optional[Path] = None
) -> str:
    """The last `max_messages` turns as "You: ..." / "Claude: ..." lines."""
    if not session_id:
        return ""

    lines: list[str] = []
    for entry in iter_entries(transcript_path(work_dir, session_id, projects_dir)):
        label = _ROLE_LABELS.get(str(entry.get("type")))
        if label is None:
            continue
        text = _human_text(entry)
        if not text:
            continue
        lines.append(f"{label}: {truncate(normalize_whitespace(text), PREVIEW_MESSAGE_MAX_CHARS)}")

    if max_messages <= 0:
        return ""
    return "\n".join(lines[-max_messages:])


def list_transcript_files(directory: Path) -> list[tuple[str, datetime]]:
    """(session id, mtime) for every transcript in one project folder."""
    files: list[tuple[str, datetime]] = []
    try:
        entries = list(directory.iterdir())
    except OSError:
        return files
    for path in entries:
        if path.suffix != TRANSCRIPT_SUFFIX or not path.is_file():
            continue
        mtime = file_mtime(path)
        if mtime is not None:
            files.append((path.stem, mtime))
    return files


def list_recent_transcripts(limit: int, projects_dir: Optional[Path] = None) -> list[TranscriptInfo]:
    """Most recently modified transcripts across every project folder."""
    root = projects_dir if projects_dir is not None else claude_projects_dir()
    found: list[tuple[Path, TranscriptInfo]] = []
    try:
        folders = [p for p in root.iterdir() if p.is_dir()]
    except OSError:
        return []

    for folder in folders:
        for session_id, mtime in list_transcript_files(folder):
            info = TranscriptInfo(session_id=session_id, project_dir=folder.name, mod_time=mtime)
            found.append((folder / f"{session_id}{TRANSCRIPT_SUFFIX}", info))

    found.sort(key=lambda item: (-item[1].mod_time.timestamp(), item[1].session_id))
    recent = found[:limit]

    for path, info in recent:
        meta = read_transcript_meta(path)
        info.first_message = meta.first_message
        info.started = meta.started
        if meta.cwd:
            info.project_dir = meta.cwd
    return [info for _, info in recent]


def latest_transcript_mtime(work_dir: str, projects_dir: Optional[Path] = None) -> Optional[datetime]:
    """Newest transcript mtime for a working directory (when the agent last wrote)."""
    if not work_dir:
        return None
    files = list_transcript_files(project_dir_path(work_dir, projects_dir))
    if not files:
        return None
    return max(mtime for _, mtime in files)


def transcript_mtime(work_dir: str, session_id: str, projects_dir: Optional[Path] = None) -> Optional[datetime]:
    if not work_dir or not session_id:
        return None
    return file_mtime(transcript_path(work_dir, session_id, projects_dir))
