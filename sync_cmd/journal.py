"""Sync journal: per-folder sync metadata persisted between runs."""

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from sync_cmd.logging_setup import get_logger

logger = get_logger()

SCHEMA_VERSION = 1
SELECTIVE_SYNC_BLACKLIST = 1
INVALID_ETAG = "_invalid_"


class JournalError(Exception):
    """Raised when writing to the journal fails."""

    pass


@dataclass
class JournalRecord:
    """Cached state of one local path from the previous pass."""

    path: str
    mtime: float
    size: int
    is_dir: bool = False
    etag: Optional[str] = None


class SyncJournal:
    """SQLite journal stored inside the synced directory.

    The database file is only created on the first write, so ``exists()``
    tells whether an earlier run left state behind.
    """

    def __init__(self, source_dir: str, name: str = ".sync_journal.db"):
        """Initialize the journal.

        Args:
            source_dir: Local directory being synced
            name: File name of the database inside ``source_dir``
        """
        self.db_path = str(Path(source_dir) / name)
        self._initialized = False

    def exists(self) -> bool:
        """Check whether a journal from an earlier run is present."""
        return Path(self.db_path).exists()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        if not self._initialized:
            self._init_db(conn)
            self._initialized = True
        return conn

    def _init_db(self, conn: sqlite3.Connection) -> None:
        """Create the schema if it is not there yet."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metadata (
                path TEXT PRIMARY KEY,
                mtime REAL,
                size INTEGER,
                is_dir INTEGER,
                etag TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS selectivesync (
                path TEXT,
                type INTEGER,
                PRIMARY KEY (path, type)
            )
            """
        )
        conn.execute("CREATE TABLE IF NOT EXISTS avoid_read (path TEXT PRIMARY KEY)")

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        if not row or not row[0]:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        conn.commit()
        logger.debug(f"Initialized sync journal at {self.db_path}")

    def _read(self, sql: str, params: tuple = ()) -> list:
        """Run a query, returning no rows when there is no journal yet."""
        if not self.exists():
            return []

        conn = None
        try:
            conn = self._connect()
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.warning(f"Error reading sync journal: {e}")
            return []
        finally:
            if conn:
                conn.close()

    def get_selective_sync_list(self, list_type: int = SELECTIVE_SYNC_BLACKLIST) -> List[str]:
        """Load the persisted selective sync list."""
        rows = self._read(
            "SELECT path FROM selectivesync WHERE type = ? ORDER BY path", (list_type,)
        )
        return [row[0] for row in rows]

    def set_selective_sync_list(
        self, paths: List[str], list_type: int = SELECTIVE_SYNC_BLACKLIST
    ) -> None:
        """Replace the persisted selective sync list."""
        conn = None
        try:
            conn = self._connect()
            conn.execute("DELETE FROM selectivesync WHERE type = ?", (list_type,))
            conn.executemany(
                "INSERT OR IGNORE INTO selectivesync (path, type) VALUES (?, ?)",
                [(path, list_type) for path in paths],
            )
            conn.commit()
            logger.info(f"Saved selective sync list with {len(paths)} entries")
        except sqlite3.Error as e:
            logger.error(f"Error saving selective sync list: {e}")
            raise JournalError(str(e)) from e
        finally:
            if conn:
                conn.close()

    def avoid_read_from_db_on_next_sync(self, path: str) -> None:
        """Distrust the cached state of ``path`` and its parents on the next pass.

        The etag of the folder and of every ancestor directory record is
        invalidated so discovery walks down to the folder again.
        """
        folder = path.strip("/")
        parts = folder.split("/")
        lineage = ["/".join(parts[: i + 1]) for i in range(len(parts))]
        placeholders = ", ".join("?" * len(lineage))
        conn = None
        try:
            conn = self._connect()
            conn.execute("INSERT OR IGNORE INTO avoid_read (path) VALUES (?)", (folder,))
            conn.execute(
                f"UPDATE metadata SET etag = ? WHERE is_dir = 1 AND path IN ({placeholders})",
                (INVALID_ETAG, *lineage),
            )
            conn.commit()
            logger.debug(f"Cached state of '{folder}' will not be trusted next sync")
        except sqlite3.Error as e:
            logger.error(f"Error invalidating journal entry {folder}: {e}")
            raise JournalError(str(e)) from e
        finally:
            if conn:
                conn.close()

    def is_read_from_db_allowed(self, path: str) -> bool:
        """Check whether cached state below ``path`` may be reused."""
        folder = path.strip("/")
        for (avoided,) in self._read("SELECT path FROM avoid_read"):
            if folder == avoided or folder.startswith(avoided + "/"):
                return False

        record = self.get_record(folder)
        return record is None or record.etag != INVALID_ETAG

    def clear_avoid_read_from_db(self) -> None:
        """Forget the distrusted folders after a completed pass."""
        if not self.exists():
            return

        conn = None
        try:
            conn = self._connect()
            conn.execute("DELETE FROM avoid_read")
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error clearing distrusted folders: {e}")
            raise JournalError(str(e)) from e
        finally:
            if conn:
                conn.close()

    def load_records(self) -> Dict[str, JournalRecord]:
        """Load all cached records keyed by relative path."""
        result = {}
        for path, mtime, size, is_dir, etag in self._read(
            "SELECT path, mtime, size, is_dir, etag FROM metadata"
        ):
            result[path] = JournalRecord(path, mtime, size, bool(is_dir), etag)

        logger.debug(f"Loaded {len(result)} records from sync journal")
        return result

    def get_record(self, path: str) -> Optional[JournalRecord]:
        """Get the cached record for a single path."""
        rows = self._read(
            "SELECT path, mtime, size, is_dir, etag FROM metadata WHERE path = ?", (path,)
        )
        if not rows:
            return None
        path, mtime, size, is_dir, etag = rows[0]
        return JournalRecord(path, mtime, size, bool(is_dir), etag)

    def save_records(self, records: Dict[str, JournalRecord]) -> None:
        """Replace all cached records."""
        conn = None
        try:
            conn = self._connect()
            conn.execute("DELETE FROM metadata")
            conn.executemany(
                """
                INSERT INTO metadata (path, mtime, size, is_dir, etag)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (r.path, r.mtime, r.size, int(r.is_dir), r.etag)
                    for r in records.values()
                ],
            )
            conn.commit()
            logger.info(f"Saved {len(records)} records to sync journal")
        except sqlite3.Error as e:
            logger.error(f"Error saving sync journal: {e}")
            raise JournalError(str(e)) from e
        finally:
            if conn:
                conn.close()
