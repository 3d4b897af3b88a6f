import copy
import datetime
import json
import pathlib
import sqlite3
import threading
from contextlib import contextmanager


DATA_PATH = pathlib.Path("data")
DB_PATH = DATA_PATH / "sessions.db"


class InMemorySessionStore:
    """Process-local store. Snapshots are deep-copied in and out."""

    def __init__(self):
        self._sessions = {}
        self._lock = threading.Lock()

    @contextmanager
    def locked(self, room_code):
        # The service's per-room lock already covers a single process.
        yield

    def get(self, room_code):
        with self._lock:
            session = self._sessions.get(room_code)
            return copy.deepcopy(session) if session is not None else None

    def put(self, room_code, session):
        with self._lock:
            self._sessions[room_code] = copy.deepcopy(session)

    def delete(self, room_code):
        with self._lock:
            self._sessions.pop(room_code, None)

    def room_codes(self):
        with self._lock:
            return list(self._sessions)


class SqliteSessionStore:
    """
    One JSON row per room code.

    Several processes may share the file: `locked()` holds a write
    transaction (BEGIN IMMEDIATE) for the whole read-modify-write, and
    get/put/delete on the same thread reuse its connection.
    """

    def __init__(self, db_path=None):
        self.path = _resolve_db_path(db_path)
        self._local = threading.local()
        init_db(self.path)

    @contextmanager
    def locked(self, room_code):
        if getattr(self._local, "conn", None) is not None:
            yield
            return

        conn = _connect(self.path)
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._local.conn = conn
            try:
                yield
            finally:
                self._local.conn = None
                # Writes stand even when the caller raises, as with the in-memory store.
                conn.execute("COMMIT")
        finally:
            conn.close()

    def get(self, room_code):
        with self._conn() as conn:
            row = conn.execute(
                "SELECT payload_json FROM sessions WHERE room_code = ?",
                (room_code,),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["payload_json"])

    def put(self, room_code, session):
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO sessions (room_code, payload_json, expires_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(room_code) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (room_code, json.dumps(session), session["expires_at"], _now()),
            )

    def delete(self, room_code):
        with self._conn() as conn:
            conn.execute("DELETE FROM sessions WHERE room_code = ?", (room_code,))

    def room_codes(self):
        with self._conn() as conn:
            rows = conn.execute("SELECT room_code FROM sessions ORDER BY room_code").fetchall()
        return [row["room_code"] for row in rows]

    @contextmanager
    def _conn(self):
        held = getattr(self._local, "conn", None)
        if held is not None:
            yield held
            return
        with _get_conn(self.path) as conn:
            yield conn


def init_db(db_path=None):
    path = _resolve_db_path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with _get_conn(path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                room_code TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL,
                expires_at INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )


def _resolve_db_path(db_path):
    return pathlib.Path(db_path) if db_path else DB_PATH


def _connect(path):
    conn = sqlite3.connect(path, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def _get_conn(path):
    conn = _connect(path)
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def _now():
    return datetime.datetime.now(datetime.UTC).isoformat(timespec="seconds")
