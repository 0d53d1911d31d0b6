"""Unit tests for transcript reading."""

import json
import os
from datetime import datetime, timezone

import pytest

from crabctl.core.transcript import (
    encode_project_dir,
    extract_text,
    latest_transcript_mtime,
    list_recent_transcripts,
    parse_timestamp,
    read_last_user_messages,
    read_transcript_meta,
    read_transcript_preview,
    transcript_mtime,
    transcript_path,
)

pytestmark = pytest.mark.unit


def _write(path, entries, mtime=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def _user(text, ts="2026-01-01T10:00:00.000Z", cwd="/work/app"):
    return {"type": "user", "cwd": cwd, "timestamp": ts, "message": {"role": "user", "content": text}}


def _assistant(text):
    return {"type": "assistant", "message": {"role": "assistant", "content": [{"type": "text", "text": text}]}}


@pytest.mark.parametrize(
    ("work_dir", "expected"),
    [
        ("/Users/alice/projects/app", "-Users-alice-projects-app"),
        ("/root", "-root"),
        ("relative/dir", "relative-dir"),
        ("/Users/a/b", "-Users-a-b"),
        ("", ""),
    ],
)
def test_encode_project_dir(work_dir, expected):
    assert encode_project_dir(work_dir) == expected


def test_transcript_path_layout(tmp_path):
    assert transcript_path("/work/app", "abc", tmp_path) == tmp_path / "-work-app" / "abc.jsonl"


def test_parse_timestamp():
    assert parse_timestamp("2025-11-11T04:25:33.890Z") == datetime(2025, 11, 11, 4, 25, 33, 890000, tzinfo=timezone.utc)
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None


def test_extract_text_variants():
    assert extract_text({"message": {"content": "plain"}}) == "plain"
    blocks = {"message": {"content": [{"type": "tool_use"}, {"type": "text", "text": ""}, {"type": "text", "text": "hi"}]}}
    assert extract_text(blocks) == "hi"
    assert extract_text({"message": "not a dict"}) == ""
    assert extract_text({}) == ""


def test_read_transcript_meta(tmp_path):
    path = _write(
        tmp_path / "s.jsonl",
        [
            "not json",
            _assistant("hello"),
            _user("<command-message>init</command-message>", ts="2026-01-01T09:00:00Z"),
            _user("Fix the\nlogin bug", ts="2026-01-01T09:01:00Z"),
            _user("later message"),
        ],
    )
    meta = read_transcript_meta(path)

    assert meta.cwd == "/work/app"
    assert meta.started == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    assert meta.first_message == "Fix the login bug"


def test_read_transcript_meta_truncates_long_first_message(tmp_path):
    path = _write(tmp_path / "s.jsonl", [_user("x" * 200)])
    assert read_transcript_meta(path).first_message == "x" * 77 + "..."


def test_read_transcript_meta_missing_file(tmp_path):
    meta = read_transcript_meta(tmp_path / "missing.jsonl")
    assert meta.cwd == ""
    assert meta.started is None


def test_read_last_user_messages(tmp_path):
    path = _write(
        tmp_path / "s.jsonl",
        [_user("one"), _assistant("reply"), _user("two  words\nhere"), _user("three"), _user("y" * 100)],
    )
    assert read_last_user_messages(path, 2) == ["three", "y" * 80]
    assert read_last_user_messages(path, 10) == ["one", "two words here", "three", "y" * 80]
    assert read_last_user_messages(path, 0) == []


def test_read_transcript_preview(tmp_path):
    _write(
        transcript_path("/work/app", "abc", tmp_path),
        [_user("first"), _assistant("answer one"), _user("second"), _assistant("answer two")],
    )
    preview = read_transcript_preview("/work/app", "abc", 3, projects_dir=tmp_path)
    assert preview == "Claude: answer one\nYou: second\nClaude: answer two"
    assert read_transcript_preview("/work/app", "", 3, projects_dir=tmp_path) == ""
    assert read_transcript_preview("/work/app", "missing", 3, projects_dir=tmp_path) == ""


def test_list_recent_transcripts_newest_first(tmp_path):
    _write(transcript_path("/work/a", "old", tmp_path), [_user("old task", cwd="/work/a")], mtime=1_000)
    _write(transcript_path("/work/b", "new", tmp_path), [_user("new task", cwd="/work/b")], mtime=3_000)
    _write(transcript_path("/work/a", "mid", tmp_path), [_user("mid task", cwd="/work/a")], mtime=2_000)
    (tmp_path / "-work-a" / "notes.txt").write_text("ignored")

    recent = list_recent_transcripts(2, projects_dir=tmp_path)

    assert [info.session_id for info in recent] == ["new", "mid"]
    assert recent[0].project_dir == "/work/b"
    assert recent[0].first_message == "new task"
    assert recent[0].mod_time == datetime.fromtimestamp(3_000, tz=timezone.utc)


def test_list_recent_transcripts_missing_root(tmp_path):
    assert list_recent_transcripts(5, projects_dir=tmp_path / "nope") == []


def test_transcript_mtimes(tmp_path):
    _write(transcript_path("/work/app", "a", tmp_path), [_user("a")], mtime=1_000)
    _write(transcript_path("/work/app", "b", tmp_path), [_user("b")], mtime=5_000)

    assert latest_transcript_mtime("/work/app", tmp_path) == datetime.fromtimestamp(5_000, tz=timezone.utc)
    assert transcript_mtime("/work/app", "a", tmp_path) == datetime.fromtimestamp(1_000, tz=timezone.utc)
    assert latest_transcript_mtime("/work/other", tmp_path) is None
    assert latest_transcript_mtime("", tmp_path) is None
    assert transcript_mtime("/work/app", "missing", tmp_path) is None


def test_encode_project_dir_is_stable():
    assert encode_project_dir("/srv/app") == encode_project_dir("/srv/app")
