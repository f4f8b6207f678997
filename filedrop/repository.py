import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MetadataRepository:
    def __init__(self, db_path: str, pool_size: int = 10, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._slots = threading.BoundedSemaphore(pool_size)

    @contextmanager
    def _connect(self):
        with self._slots:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            finally:
                conn.close()

    def init(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS authentication (
                    api_key TEXT PRIMARY KEY,
                    active INTEGER NOT NULL DEFAULT 1
                );
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS upload (
                    identifier TEXT PRIMARY KEY,
                    created_on TEXT NOT NULL,
                    api_key_used TEXT NOT NULL REFERENCES authentication(api_key),
                    last_accessed TEXT NOT NULL,
                    times_accessed INTEGER NOT NULL DEFAULT 0
                );
                """
            )

    def get_key_active(self, api_key: str) -> bool | None:
        with self._connect() as conn:
            row = conn.execute("SELECT active FROM authentication WHERE api_key = ?", (api_key,)).fetchone()
        return bool(row["active"]) if row else None

    def create_upload(self, *, identifier: str, api_key_used: str) -> None:
        now = utc_now_iso()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO upload(identifier, created_on, api_key_used, last_accessed, times_accessed)
                VALUES(?, ?, ?, ?, 0)
                """,
                (identifier, now, api_key_used, now),
            )

    def touch_upload(self, identifier: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE upload
                SET last_accessed = MAX(last_accessed, ?),
                    times_accessed = times_accessed + 1
                WHERE identifier = ?
                """,
                (utc_now_iso(), identifier),
            )
        return cursor.rowcount > 0
