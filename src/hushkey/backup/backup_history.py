"""Backup history database: one row per completed export.

SQLite + WAL mode via core.db. A single-row metadata table carries the
time of the most recent backup, used by the backup health report.
"""

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Union
from uuid import uuid4

from ..core.db import transaction
from ..vault.models import utc_now_iso

logger = logging.getLogger(__name__)

BACKUP_TYPES = ("csv", "zip", "hkb", "raw_csv", "raw_zip")


class BackupHistory:
    """SQLite persistence for backup history.

    Args:
        db_path: Path to SQLite database file. Defaults to data/backup_history.db.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else Path("data/backup_history.db")
        self._init_database()

    def _init_database(self):
        """Create tables if they do not exist."""
        types = ", ".join(f"'{t}'" for t in BACKUP_TYPES)
        with transaction(self.db_path) as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS backup_history (
                    backup_id       TEXT PRIMARY KEY,
                    backup_type     TEXT NOT NULL CHECK (backup_type IN ({types})),
                    created_at      TEXT NOT NULL,
                    item_count      INTEGER DEFAULT 0,
                    file_size_bytes INTEGER DEFAULT 0,
                    status          TEXT DEFAULT 'completed'
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS backup_metadata (
                    key   TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    # ── Writes ───────────────────────────────────────────────────────

    def record_backup(self, backup_type: str, item_count: int, file_size_bytes: int) -> dict:
        """Insert a completed backup and bump last_backup_at. Returns the row."""
        if backup_type not in BACKUP_TYPES:
            raise ValueError(f"Unknown backup type: {backup_type}")
        backup_id = str(uuid4())
        created_at = utc_now_iso()
        with transaction(self.db_path) as conn:
            conn.execute(
                """INSERT INTO backup_history
                   (backup_id, backup_type, created_at, item_count, file_size_bytes)
                   VALUES (?, ?, ?, ?, ?)""",
                (backup_id, backup_type, created_at, item_count, file_size_bytes),
            )
            conn.execute(
                """INSERT INTO backup_metadata (key, value) VALUES ('last_backup_at', ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                (created_at,),
            )
        logger.info("Recorded %s backup %s (%d items, %d bytes)",
                    backup_type, backup_id, item_count, file_size_bytes)
        return self.get_backup(backup_id)

    # ── Reads ────────────────────────────────────────────────────────

    def list_backups(self, limit: int = 50) -> List[dict]:
        """Return backups sorted newest-first."""
        with transaction(self.db_path, row_factory=True) as conn:
            rows = conn.execute(
                "SELECT * FROM backup_history ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_backup(self, backup_id: str) -> Optional[dict]:
        with transaction(self.db_path, row_factory=True) as conn:
            row = conn.execute(
                "SELECT * FROM backup_history WHERE backup_id = ?", (backup_id,)
            ).fetchone()
        return self._row_to_dict(row)

    def get_last_backup_at(self) -> Optional[str]:
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM backup_metadata WHERE key = 'last_backup_at'"
            ).fetchone()
        return row[0] if row else None

    def count(self) -> int:
        with transaction(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM backup_history").fetchone()[0]

    @staticmethod
    def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[dict]:
        return dict(row) if row else None
