"""Persistent session state for crabctl.

Holds the auto-forward flags and, per session, the transcript it was matched
to so a killed or crashed session can be resumed later. The watcher and CLI
commands open the same database concurrently, hence WAL mode.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

from crabctl.core.models import ResumableSession, TranscriptLink

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def _now() -> str:
    return datetime.now(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class Db:
    """State database interface."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Open the database and create the schema if needed."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA busy_timeout = 5000")

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._db.executescript(schema_sql)
        await self._db.commit()
        logger.debug("Opened state database %s", self.db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not initialized - call initialize() first")
        return self._db

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "Db":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def set_auto_forward(self, name: str, enabled: bool) -> None:
        now = _now()
        await self.conn.execute(
            """
            INSERT INTO sessions (name, autoforward, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                autoforward = excluded.autoforward,
                updated_at = excluded.updated_at
            """,
            (name, int(enabled), now, now),
        )
        await self.conn.commit()
        logger.info("Auto-forward %s for %s", "enabled" if enabled else "disabled", name)

    async def get_auto_forward(self, name: str) -> bool:
        async with self.conn.execute("SELECT autoforward FROM sessions WHERE name = ?", (name,)) as cursor:
            row = await cursor.fetchone()
        return bool(row and row["autoforward"])

    async def load_all_auto_forward(self) -> set[str]:
        """Names of every session with auto-forward enabled."""
        async with self.conn.execute("SELECT name FROM sessions WHERE autoforward = 1") as cursor:
            rows = await cursor.fetchall()
        return {row["name"] for row in rows}

    async def save_session_transcript(self, name: str, session_id: str, work_dir: str, first_message: str) -> None:
        """Remember which transcript a live session writes, so it survives a crash."""
        now = _now()
        await self.conn.execute(
            """
            INSERT INTO sessions (name, session_file, work_dir, first_msg, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                session_file = excluded.session_file,
                work_dir = excluded.work_dir,
                first_msg = excluded.first_msg,
                killed = 0,
                killed_at = NULL,
                updated_at = excluded.updated_at
            """,
            (name, session_id, work_dir, first_message, now, now),
        )
        await self.conn.commit()

    async def get_transcript_link(self, name: str) -> Optional[TranscriptLink]:
        """Stored transcript for a name, with what is needed to tell if it is still current."""
        async with self.conn.execute(
            "SELECT session_file, work_dir, killed FROM sessions WHERE name = ? AND session_file != ''", (name,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return TranscriptLink(session_id=row["session_file"], work_dir=row["work_dir"], killed=bool(row["killed"]))

    async def mark_killed(self, name: str, session_id: str, work_dir: str, first_message: str) -> None:
        now = _now()
        await self.conn.execute(
            """
            INSERT INTO sessions (name, killed, session_file, work_dir, first_msg, killed_at, created_at, updated_at)
            VALUES (?, 1, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                killed = 1,
                session_file = excluded.session_file,
                work_dir = COALESCE(NULLIF(excluded.work_dir, ''), sessions.work_dir),
                first_msg = COALESCE(NULLIF(excluded.first_msg, ''), sessions.first_msg),
                killed_at = excluded.killed_at,
                updated_at = excluded.updated_at
            """,
            (name, session_id, work_dir, first_message, now, now, now),
        )
        await self.conn.commit()
        logger.info("Recorded %s as killed (transcript %s)", name, session_id or "unknown")

    async def mark_resumed(self, name: str) -> None:
        """Clear the killed flag once a session runs again."""
        await self.conn.execute(
            "UPDATE sessions SET killed = 0, killed_at = NULL, updated_at = ? WHERE name = ?",
            (_now(), name),
        )
        await self.conn.commit()

    async def record_send(self, name: str) -> None:
        now = _now()
        await self.conn.execute(
            """
            INSERT INTO sessions (name, last_send, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET last_send = excluded.last_send
            """,
            (name, now, now, now),
        )
        await self.conn.commit()

    async def list_killed(self, limit: int = 20) -> list[ResumableSession]:
        """Explicitly killed sessions, most recently killed first."""
        return await self._query_resumable(
            """
            SELECT name, session_file, work_dir, first_msg, killed, killed_at AS last_seen
            FROM sessions
            WHERE killed = 1
            ORDER BY killed_at DESC, name
            LIMIT ?
            """,
            limit,
        )

    async def list_resumable(self, limit: int = 20) -> list[ResumableSession]:
        """Every session with a known transcript, killed or lost, most recent first."""
        return await self._query_resumable(
            """
            SELECT name, session_file, work_dir, first_msg, killed,
                COALESCE(killed_at, updated_at) AS last_seen
            FROM sessions
            WHERE session_file != ''
            ORDER BY last_seen DESC, name
            LIMIT ?
            """,
            limit,
        )

    async def _query_resumable(self, sql: str, limit: int) -> list[ResumableSession]:
        async with self.conn.execute(sql, (limit,)) as cursor:
            rows = await cursor.fetchall()
        return [
            ResumableSession(
                name=row["name"],
                session_id=row["session_file"],
                work_dir=row["work_dir"],
                first_message=row["first_msg"],
                last_seen=_parse_timestamp(row["last_seen"]),
                killed=bool(row["killed"]),
            )
            for row in rows
        ]
