"""
SQLite-backed entity store for the session library.

Reads open a short-lived connection each; writes go through a scoped
StoreTransaction obtained from ``EntityStore.transaction()``. Every call
opens its own connection, so any thread can read or write without sharing
handles.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from wwdc_library.config import get_settings
from wwdc_library.store.models import (
    LEGACY_SESSION_ID_THRESHOLD,
    AppConfig,
    ScheduledSession,
    Session,
    Track,
    Transcript,
    TranscriptLine,
    UserState,
)

logger = logging.getLogger(__name__)

# Bump when the stored config must be invalidated on upgrade
SCHEMA_VERSION = 6

# Metadata key remembering the ``updated`` stamp of the last processed catalog
CATALOG_STAMP_KEY = "catalog_updated"

# Metadata flag set once the legacy category has been purged
LEGACY_CLEANUP_KEY = "legacy_sessions_removed"

SESSION_COLUMNS = (
    "unique_id", "id", "year", "date", "track", "focus", "title", "summary",
    "video_url", "hd_video_url", "slides_url", "shelf_image_url",
    "favorite", "downloaded", "progress", "current_position",
)

# Listing order: newest year first, then session number
SESSION_ORDER = "ORDER BY year DESC, id ASC"


class StoreError(RuntimeError):
    """Raised when something goes wrong while accessing the store."""


class TransactionCommitFailure(StoreError):
    """A transaction was rejected by the database and rolled back."""


class PreconditionViolation(AssertionError):
    """A write was attempted through a transaction that is no longer open.

    This is a programming error, not a recoverable condition.
    """


class StoreTransaction:
    """
    Write handle valid only inside ``EntityStore.transaction()``.

    All mutation methods raise PreconditionViolation once the owning
    ``with`` block has exited.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def _close(self) -> None:
        self._open = False

    def _connection(self) -> sqlite3.Connection:
        if not self._open:
            raise PreconditionViolation(
                "Store mutation attempted outside of a transaction"
            )
        return self._conn

    # Reads (see this transaction's own uncommitted writes)

    def get_config(self) -> Optional[AppConfig]:
        return _fetch_config(self._connection())

    def get_session(self, key: str) -> Optional[Session]:
        return _fetch_session(self._connection(), key)

    def get_track(self, name: str) -> Optional[Track]:
        return _fetch_track(self._connection(), name)

    def get_scheduled_session(self, key: str) -> Optional[ScheduledSession]:
        return _fetch_scheduled_session(self._connection(), key)

    def has_transcript(self, key: str) -> bool:
        row = self._connection().execute(
            "SELECT 1 FROM transcripts WHERE session_key = ? LIMIT 1", (key,)
        ).fetchone()
        return row is not None

    def get_metadata(self, key: str) -> Optional[str]:
        row = self._connection().execute(
            "SELECT value FROM metadata WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    # Writes

    def replace_config(self, config: AppConfig) -> None:
        """Delete the stored config and add ``config`` as the only one."""
        conn = self._connection()
        conn.execute("DELETE FROM app_config")
        conn.execute("""
            INSERT INTO app_config (
                videos_url, sessions_url, videos_updated_at,
                schedule_enabled, should_ignore_cache, is_wwdc_week
            ) VALUES (?, ?, ?, ?, ?, ?)
        """, (
            config.videos_url,
            config.sessions_url,
            config.videos_updated_at,
            int(config.schedule_enabled),
            int(config.should_ignore_cache),
            int(config.is_wwdc_week),
        ))

    def upsert_session(self, session: Session) -> None:
        """Insert or fully overwrite a session row. Transcripts are untouched."""
        placeholders = ", ".join("?" * len(SESSION_COLUMNS))
        updates = ", ".join(
            f"{col} = excluded.{col}" for col in SESSION_COLUMNS if col != "unique_id"
        )
        self._connection().execute(f"""
            INSERT INTO sessions ({", ".join(SESSION_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(unique_id) DO UPDATE SET {updates}
        """, _session_params(session))

    def update_user_state(self, key: str, state: UserState) -> bool:
        cursor = self._connection().execute("""
            UPDATE sessions
            SET favorite = ?, downloaded = ?, progress = ?, current_position = ?
            WHERE unique_id = ?
        """, (
            int(state.favorite),
            int(state.downloaded),
            state.progress,
            state.current_position,
            key,
        ))
        return cursor.rowcount > 0

    def delete_legacy_sessions(self) -> int:
        """Remove every session in the legacy category."""
        cursor = self._connection().execute(
            "DELETE FROM sessions WHERE id > ?", (LEGACY_SESSION_ID_THRESHOLD,)
        )
        return cursor.rowcount

    def upsert_track(self, track: Track) -> None:
        self._connection().execute("""
            INSERT INTO tracks (name, color, dark_color, title_color)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                color = excluded.color,
                dark_color = excluded.dark_color,
                title_color = excluded.title_color
        """, (track.name, track.color, track.dark_color, track.title_color))

    def upsert_scheduled_session(self, scheduled: ScheduledSession) -> None:
        self._connection().execute("""
            INSERT INTO scheduled_sessions (
                unique_id, id, year, title, summary, type,
                track_name, starts_at, ends_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(unique_id) DO UPDATE SET
                id = excluded.id,
                year = excluded.year,
                title = excluded.title,
                summary = excluded.summary,
                type = excluded.type,
                track_name = excluded.track_name,
                starts_at = excluded.starts_at,
                ends_at = excluded.ends_at
        """, (
            scheduled.unique_id,
            scheduled.id,
            scheduled.year,
            scheduled.title,
            scheduled.summary,
            scheduled.type,
            scheduled.track_name,
            _format_datetime(scheduled.starts_at),
            _format_datetime(scheduled.ends_at),
        ))

    def add_transcript(self, transcript: Transcript) -> None:
        """Attach a transcript to its session. Fails if one already exists."""
        conn = self._connection()
        conn.execute(
            "INSERT INTO transcripts (session_key, full_text) VALUES (?, ?)",
            (transcript.session_key, transcript.full_text),
        )
        conn.executemany("""
            INSERT INTO transcript_lines (session_key, position, timecode, text)
            VALUES (?, ?, ?, ?)
        """, [
            (transcript.session_key, position, line.timecode, line.text)
            for position, line in enumerate(transcript.lines)
        ])

    def set_metadata(self, key: str, value: str) -> None:
        self._connection().execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, value),
        )


class EntityStore:
    """
    SQLite-based store for configs, sessions, schedule and transcripts.

    Provides:
    - Keyed lookup and filtered/sorted enumeration
    - Scoped, all-or-nothing write transactions
    - User-state setters used by the UI layer
    """

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file (defaults to settings)
        """
        settings = get_settings()
        self.db_path = Path(db_path) if db_path else settings.database_path

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read connections."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """
        Open a write transaction.

        Commits when the block exits normally, rolls back otherwise. Database
        errors surface as TransactionCommitFailure.
        """
        conn = self._connect()
        txn = StoreTransaction(conn)
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield txn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise TransactionCommitFailure(str(e)) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            txn._close()
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema and apply version upgrades."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS app_config (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    videos_url TEXT NOT NULL,
                    sessions_url TEXT NOT NULL,
                    videos_updated_at TEXT NOT NULL,
                    schedule_enabled INTEGER NOT NULL,
                    should_ignore_cache INTEGER NOT NULL,
                    is_wwdc_week INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS sessions (
                    unique_id TEXT PRIMARY KEY,
                    id INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    date TEXT NOT NULL DEFAULT '',
                    track TEXT NOT NULL DEFAULT '',
                    focus TEXT NOT NULL DEFAULT '',
                    title TEXT NOT NULL DEFAULT '',
                    summary TEXT NOT NULL DEFAULT '',
                    video_url TEXT NOT NULL DEFAULT '',
                    hd_video_url TEXT NOT NULL DEFAULT '',
                    slides_url TEXT NOT NULL DEFAULT '',
                    shelf_image_url TEXT NOT NULL DEFAULT '',
                    favorite INTEGER NOT NULL DEFAULT 0,
                    downloaded INTEGER NOT NULL DEFAULT 0,
                    progress REAL NOT NULL DEFAULT 0,
                    current_position REAL NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_order
                ON sessions (year DESC, id ASC);

                CREATE INDEX IF NOT EXISTS idx_sessions_title
                ON sessions (title);

                CREATE TABLE IF NOT EXISTS tracks (
                    name TEXT PRIMARY KEY,
                    color TEXT NOT NULL DEFAULT '',
                    dark_color TEXT NOT NULL DEFAULT '',
                    title_color TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS scheduled_sessions (
                    unique_id TEXT PRIMARY KEY,
                    id INTEGER NOT NULL,
                    year INTEGER NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    summary TEXT NOT NULL DEFAULT '',
                    type TEXT NOT NULL DEFAULT '',
                    track_name TEXT REFERENCES tracks (name),
                    starts_at TEXT,
                    ends_at TEXT
                );

                CREATE TABLE IF NOT EXISTS transcripts (
                    session_key TEXT PRIMARY KEY
                        REFERENCES sessions (unique_id) ON DELETE CASCADE,
                    full_text TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS transcript_lines (
                    session_key TEXT NOT NULL
                        REFERENCES transcripts (session_key) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    timecode REAL NOT NULL,
                    text TEXT NOT NULL,
                    PRIMARY KEY (session_key, position)
                );
            """)

            row = conn.execute(
                "SELECT value FROM metadata WHERE key = ?", ("schema_version",)
            ).fetchone()
            stored_version = int(row["value"]) if row else None

            if stored_version is not None and stored_version < SCHEMA_VERSION:
                logger.info(
                    f"Migrating store from version {stored_version} to {SCHEMA_VERSION}"
                )
                # Config and catalog must be re-adopted after an upgrade
                conn.execute("DELETE FROM app_config")
                conn.execute(
                    "DELETE FROM metadata WHERE key = ?", (CATALOG_STAMP_KEY,)
                )

            if stored_version != SCHEMA_VERSION:
                conn.execute(
                    "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )

    # Lookups

    def get_config(self) -> Optional[AppConfig]:
        """Get the active configuration, if one has been adopted."""
        with self._get_connection() as conn:
            return _fetch_config(conn)

    def get_session(self, key: str, with_transcript: bool = True) -> Optional[Session]:
        """
        Get a session by its ``#year-id`` key.

        Args:
            key: Session unique id
            with_transcript: Attach the owned transcript, if any

        Returns:
            The session if found, None otherwise
        """
        with self._get_connection() as conn:
            session = _fetch_session(conn, key)
            if session is None or not with_transcript:
                return session
            transcript = _fetch_transcript(conn, key)
            if transcript is None:
                return session
            return _attach(session, transcript)

    def get_transcript(self, key: str) -> Optional[Transcript]:
        with self._get_connection() as conn:
            return _fetch_transcript(conn, key)

    def has_transcript(self, key: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM transcripts WHERE session_key = ? LIMIT 1", (key,)
            ).fetchone()
            return row is not None

    def get_track(self, name: str) -> Optional[Track]:
        with self._get_connection() as conn:
            return _fetch_track(conn, name)

    def list_tracks(self) -> list[Track]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM tracks ORDER BY name").fetchall()
            return [_row_to_track(row) for row in rows]

    def get_scheduled_session(self, key: str) -> Optional[ScheduledSession]:
        with self._get_connection() as conn:
            return _fetch_scheduled_session(conn, key)

    def get_schedule(self, session: Session) -> Optional[ScheduledSession]:
        """The schedule entry for a session shares the session's key."""
        return self.get_scheduled_session(session.unique_id)

    def list_scheduled_sessions(self) -> list[ScheduledSession]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM scheduled_sessions ORDER BY starts_at, id"
            ).fetchall()
            return [_row_to_scheduled_session(row) for row in rows]

    def list_sessions(
        self,
        year: Optional[int] = None,
        track: Optional[str] = None,
        favorites_only: bool = False,
        downloaded_only: bool = False,
        query: Optional[str] = None,
    ) -> list[Session]:
        """
        Enumerate sessions in listing order (year descending, id ascending).

        Transcripts are not attached; use get_session() for that.

        Args:
            year: Only sessions from this year
            track: Only sessions in this track
            favorites_only: Only sessions marked favorite
            downloaded_only: Only sessions marked downloaded
            query: Case-insensitive match on title, summary or transcript text

        Returns:
            List of matching sessions
        """
        conditions = []
        params: list = []

        if year is not None:
            conditions.append("year = ?")
            params.append(year)

        if track:
            conditions.append("track = ?")
            params.append(track)

        if favorites_only:
            conditions.append("favorite = 1")

        if downloaded_only:
            conditions.append("downloaded = 1")

        if query:
            pattern = f"%{query}%"
            conditions.append("""(
                title LIKE ? OR summary LIKE ? OR unique_id IN (
                    SELECT session_key FROM transcripts WHERE full_text LIKE ?
                )
            )""")
            params.extend([pattern, pattern, pattern])

        where = ("WHERE " + " AND ".join(conditions)) if conditions else ""

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM sessions {where} {SESSION_ORDER}", params
            ).fetchall()
            return [_row_to_session(row) for row in rows]

    def session_keys_missing_transcript(self, years: Iterable[int]) -> list[str]:
        """Keys of sessions in ``years`` that have no transcript yet."""
        years = list(years)
        if not years:
            return []

        placeholders = ",".join("?" * len(years))
        with self._get_connection() as conn:
            rows = conn.execute(f"""
                SELECT unique_id FROM sessions
                WHERE year IN ({placeholders})
                AND unique_id NOT IN (SELECT session_key FROM transcripts)
                {SESSION_ORDER}
            """, years).fetchall()
            return [row["unique_id"] for row in rows]

    def find_session_by_hd_url(self, url: str) -> Optional[Session]:
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT * FROM sessions WHERE hd_video_url = ? {SESSION_ORDER} LIMIT 1",
                (url,),
            ).fetchone()
            return _row_to_session(row) if row else None

    def find_session_by_local_filename(self, filename: str) -> Optional[Session]:
        """First session whose HD video URL contains ``filename``."""
        with self._get_connection() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM sessions WHERE instr(hd_video_url, ?) > 0
                {SESSION_ORDER} LIMIT 1
                """,
                (filename,),
            ).fetchone()
            return _row_to_session(row) if row else None

    def get_metadata(self, key: str) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM metadata WHERE key = ?", (key,)
            ).fetchone()
            return row["value"] if row else None

    def get_stats(self) -> dict:
        """
        Get statistics about the store.

        Returns:
            Dict with counts per entity kind and per year
        """
        with self._get_connection() as conn:
            counts = {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("sessions", "tracks", "scheduled_sessions", "transcripts")
            }

            favorites = conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE favorite = 1"
            ).fetchone()[0]

            downloaded = conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE downloaded = 1"
            ).fetchone()[0]

            years = conn.execute("""
                SELECT year, COUNT(*) AS count
                FROM sessions
                GROUP BY year
                ORDER BY year DESC
            """).fetchall()

            return {
                "total_sessions": counts["sessions"],
                "total_tracks": counts["tracks"],
                "total_scheduled_sessions": counts["scheduled_sessions"],
                "total_transcripts": counts["transcripts"],
                "favorites": favorites,
                "downloaded": downloaded,
                "by_year": {row["year"]: row["count"] for row in years},
            }

    # User state

    def _update_user_state(self, key: str, **changes) -> Optional[Session]:
        with self.transaction() as txn:
            session = txn.get_session(key)
            if session is None:
                logger.warning(f"Session not found: {key}")
                return None
            state = replace(session.user_state, **changes)
            txn.update_user_state(key, state)
            return session.with_user_state(state)

    def set_favorite(self, key: str, favorite: bool) -> Optional[Session]:
        return self._update_user_state(key, favorite=favorite)

    def set_downloaded(self, key: str, downloaded: bool) -> Optional[Session]:
        return self._update_user_state(key, downloaded=downloaded)

    def set_progress(
        self, key: str, progress: float, current_position: Optional[float] = None
    ) -> Optional[Session]:
        """Record playback progress; ``progress`` is clamped to 0.0-1.0."""
        changes = {"progress": min(max(progress, 0.0), 1.0)}
        if current_position is not None:
            changes["current_position"] = max(current_position, 0.0)
        return self._update_user_state(key, **changes)

    def update_downloaded_for_url(self, url: str, downloaded: bool) -> Optional[Session]:
        """Update the downloaded flag of the session with this HD video URL."""
        session = self.find_session_by_hd_url(url)
        if session is None:
            logger.warning(f"Session not found with url {url}")
            return None
        return self.set_downloaded(session.unique_id, downloaded)

    def update_downloaded_for_local_filename(
        self, filename: str, downloaded: bool
    ) -> Optional[Session]:
        """Update the downloaded flag of the session a local video file belongs to."""
        session = self.find_session_by_local_filename(filename)
        if session is None:
            logger.warning(f"Session not found with local filename {filename}")
            return None
        if session.hd_url is None:
            return None
        return self.update_downloaded_for_url(session.hd_url, downloaded)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None


def _session_params(session: Session) -> tuple:
    return (
        session.unique_id,
        session.id,
        session.year,
        session.date,
        session.track,
        session.focus,
        session.title,
        session.summary,
        session.video_url,
        session.hd_video_url,
        session.slides_url,
        session.shelf_image_url,
        int(session.favorite),
        int(session.downloaded),
        session.progress,
        session.current_position,
    )


def _attach(session: Session, transcript: Transcript) -> Session:
    return replace(session, transcript=transcript)


def _fetch_config(conn: sqlite3.Connection) -> Optional[AppConfig]:
    row = conn.execute(
        "SELECT * FROM app_config ORDER BY id DESC LIMIT 1"
    ).fetchone()
    if row is None:
        return None
    return AppConfig(
        videos_url=row["videos_url"],
        sessions_url=row["sessions_url"],
        videos_updated_at=row["videos_updated_at"],
        schedule_enabled=bool(row["schedule_enabled"]),
        should_ignore_cache=bool(row["should_ignore_cache"]),
        is_wwdc_week=bool(row["is_wwdc_week"]),
    )


def _fetch_session(conn: sqlite3.Connection, key: str) -> Optional[Session]:
    row = conn.execute(
        "SELECT * FROM sessions WHERE unique_id = ?", (key,)
    ).fetchone()
    return _row_to_session(row) if row else None


def _fetch_track(conn: sqlite3.Connection, name: str) -> Optional[Track]:
    row = conn.execute("SELECT * FROM tracks WHERE name = ?", (name,)).fetchone()
    return _row_to_track(row) if row else None


def _fetch_scheduled_session(
    conn: sqlite3.Connection, key: str
) -> Optional[ScheduledSession]:
    row = conn.execute(
        "SELECT * FROM scheduled_sessions WHERE unique_id = ?", (key,)
    ).fetchone()
    return _row_to_scheduled_session(row) if row else None


def _fetch_transcript(conn: sqlite3.Connection, key: str) -> Optional[Transcript]:
    row = conn.execute(
        "SELECT * FROM transcripts WHERE session_key = ?", (key,)
    ).fetchone()
    if row is None:
        return None

    lines = conn.execute("""
        SELECT * FROM transcript_lines
        WHERE session_key = ?
        ORDER BY position
    """, (key,)).fetchall()

    return Transcript(
        session_key=key,
        full_text=row["full_text"],
        lines=tuple(
            TranscriptLine(transcript_key=key, timecode=line["timecode"], text=line["text"])
            for line in lines
        ),
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        year=row["year"],
        date=row["date"],
        track=row["track"],
        focus=row["focus"],
        title=row["title"],
        summary=row["summary"],
        video_url=row["video_url"],
        hd_video_url=row["hd_video_url"],
        slides_url=row["slides_url"],
        shelf_image_url=row["shelf_image_url"],
        favorite=bool(row["favorite"]),
        downloaded=bool(row["downloaded"]),
        progress=row["progress"],
        current_position=row["current_position"],
    )


def _row_to_track(row: sqlite3.Row) -> Track:
    return Track(
        name=row["name"],
        color=row["color"],
        dark_color=row["dark_color"],
        title_color=row["title_color"],
    )


def _row_to_scheduled_session(row: sqlite3.Row) -> ScheduledSession:
    return ScheduledSession(
        id=row["id"],
        year=row["year"],
        title=row["title"],
        summary=row["summary"],
        type=row["type"],
        track_name=row["track_name"],
        starts_at=_parse_datetime(row["starts_at"]),
        ends_at=_parse_datetime(row["ends_at"]),
    )
