"""Unit tests for the state database."""

import pytest

from crabctl.core.db import Db

pytestmark = pytest.mark.unit


@pytest.fixture
async def db(tmp_path):
    store = Db(str(tmp_path / "state" / "crabctl.db"))
    await store.initialize()
    yield store
    await store.close()


async def test_initialize_creates_parent_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "crabctl.db"
    async with Db(str(path)) as store:
        assert await store.load_all_auto_forward() == set()
    assert path.exists()


async def test_conn_requires_initialize():
    store = Db(":memory:")
    with pytest.raises(RuntimeError):
        _ = store.conn


async def test_auto_forward_flags(db):
    assert not await db.get_auto_forward("crab-a")

    await db.set_auto_forward("crab-a", True)
    await db.set_auto_forward("bay1:crab-b", True)
    await db.set_auto_forward("crab-c", False)
    assert await db.get_auto_forward("crab-a")
    assert await db.load_all_auto_forward() == {"crab-a", "bay1:crab-b"}

    await db.set_auto_forward("crab-a", False)
    assert await db.load_all_auto_forward() == {"bay1:crab-b"}


async def test_session_transcript_roundtrip(db):
    await db.save_session_transcript("crab-a", "abc", "/work", "fix the bug")
    link = await db.get_transcript_link("crab-a")
    assert (link.session_id, link.work_dir, link.killed) == ("abc", "/work", False)


async def test_transcript_link(db):
    assert await db.get_transcript_link("crab-a") is None
    await db.set_auto_forward("crab-a", True)
    assert await db.get_transcript_link("crab-a") is None

    await db.mark_killed("crab-a", "old", "/work", "old task")
    link = await db.get_transcript_link("crab-a")
    assert (link.session_id, link.work_dir, link.killed) == ("old", "/work", True)

    # A live session matched under the same name replaces the killed row
    await db.save_session_transcript("crab-a", "new", "/work", "new task")
    link = await db.get_transcript_link("crab-a")
    assert (link.session_id, link.killed) == ("new", False)
    assert await db.list_killed() == []


async def test_saving_transcript_keeps_auto_forward_flag(db):
    await db.set_auto_forward("crab-a", True)
    await db.save_session_transcript("crab-a", "abc", "/work", "hello")
    assert await db.get_auto_forward("crab-a")


async def test_mark_killed_and_list(db):
    await db.save_session_transcript("crab-a", "id-a", "/work/a", "task a")
    await db.mark_killed("crab-a", "id-a", "", "")
    await db.mark_killed("crab-b", "id-b", "/work/b", "task b")

    killed = await db.list_killed()
    assert [s.name for s in killed] == ["crab-b", "crab-a"]
    first = killed[1]
    assert first.session_id == "id-a"
    assert first.work_dir == "/work/a"
    assert first.first_message == "task a"
    assert first.killed
    assert first.last_seen is not None
    assert first.last_seen.tzinfo is not None


async def test_list_resumable_includes_lost_sessions(db):
    await db.save_session_transcript("crab-lost", "id-lost", "/work", "crashed one")
    await db.mark_killed("crab-gone", "id-gone", "/work", "killed one")
    await db.set_auto_forward("crab-nofile", True)

    resumable = {s.name: s for s in await db.list_resumable()}
    assert set(resumable) == {"crab-lost", "crab-gone"}
    assert not resumable["crab-lost"].killed
    assert resumable["crab-gone"].killed
    assert await db.list_killed() == [resumable["crab-gone"]]


async def test_mark_resumed_clears_killed(db):
    await db.mark_killed("crab-a", "id-a", "/work", "task")
    await db.mark_resumed("crab-a")

    assert await db.list_killed() == []
    [entry] = await db.list_resumable()
    assert entry.name == "crab-a"
    assert not entry.killed


async def test_list_limit(db):
    for i in range(5):
        await db.mark_killed(f"crab-{i}", f"id-{i}", "/work", "")
    assert len(await db.list_killed(limit=3)) == 3


async def test_record_send_creates_row(db):
    await db.record_send("crab-a")
    async with db.conn.execute("SELECT last_send FROM sessions WHERE name = ?", ("crab-a",)) as cursor:
        row = await cursor.fetchone()
    assert row["last_send"]
