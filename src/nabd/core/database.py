"""SQLite database for prompts, generated images and likes."""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from nabd.core.errors import StorageError

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string.

    Timestamps are stored as text; the fixed-width ISO format sorts
    chronologically with plain string comparison.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class Database:
    """Own the SQLite file and hand out short-lived transactional connections.

    A new connection is opened per unit of work, mirroring how each HTTP
    request is handled independently.  Foreign keys are enabled on every
    connection so deleting a prompt cascades to its images and likes.
    """

    def __init__(self, db_path: Path):
        """Initialize the database and create the schema if needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized database at {self.db_path}")

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS prompts (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    prompt_text TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    generated_image_url TEXT,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    likes_count INTEGER NOT NULL DEFAULT 0 CHECK (likes_count >= 0),
                    created_at TEXT NOT NULL
                )
                """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS generated_images (
                    id TEXT PRIMARY KEY,
                    prompt_id TEXT NOT NULL REFERENCES prompts(id) ON DELETE CASCADE,
                    image_url TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS prompt_likes (
                    id TEXT PRIMARY KEY,
                    prompt_id TEXT NOT NULL REFERENCES prompts(id) ON DELETE CASCADE,
                    session_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (prompt_id, session_id)
                )
                """)

            # Indexes backing the three sort orders and the per-session lookup
            conn.execute("CREATE INDEX IF NOT EXISTS idx_prompts_created ON prompts(created_at DESC)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_prompts_usage ON prompts(usage_count DESC)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_prompts_likes ON prompts(likes_count DESC)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_images_prompt "
                "ON generated_images(prompt_id, created_at DESC)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_likes_session ON prompt_likes(session_id)")

    def connect(self) -> sqlite3.Connection:
        """Open a connection with row access by name and foreign keys on.

        ``isolation_level=None`` puts the connection in autocommit mode so
        :meth:`transaction` controls ``BEGIN``/``COMMIT`` explicitly.  A
        ``casefold()`` SQL function is registered for Unicode-aware,
        case-insensitive search (SQLite's ``LIKE`` only folds ASCII).
        """
        conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, str.casefold, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a block of statements as one atomic unit.

        Args:
            immediate: Take the write lock up front (``BEGIN IMMEDIATE``).
                Read-modify-write sequences use this so two requests cannot
                interleave between the check and the update.

        Yields:
            An open connection inside a transaction.  The transaction commits
            when the block exits normally and rolls back on any exception.

        Raises:
            StorageError: If SQLite reports an error.  The original error is
                logged and chained.
        """
        try:
            conn = self.connect()
        except sqlite3.Error as e:
            logger.error(f"Error opening database {self.db_path}: {e}")
            raise StorageError("Database unavailable") from e

        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                # SQLite may already have rolled back (e.g. SQLITE_FULL)
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            logger.error(f"Database error on {self.db_path}: {e}")
            raise StorageError("Database operation failed") from e
        finally:
            conn.close()
