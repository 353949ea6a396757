# HushKey: Core Module - SQLite Connection Helpers
#
# Every HushKey database (local vault store, backup history) opens its
# connections through this module instead of raw `sqlite3.connect()`:
#
#   - WAL journal mode (readers never block the single writer)
#   - busy_timeout to avoid SQLITE_BUSY under contention
#   - foreign_keys enforcement (items reference vaults)

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file. Parent directories are created.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction(
    db_path: Union[str, Path], *, row_factory: bool = False
) -> Iterator[sqlite3.Connection]:
    """Yield a connection that commits on success, rolls back on error,
    and is always closed afterwards."""
    conn = connect(db_path, row_factory=row_factory)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
