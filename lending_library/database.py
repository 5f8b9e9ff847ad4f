import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from lending_library.config import settings

logger = logging.getLogger(__name__)

# Default database file. LIBRARY_DB_FILE overrides it through settings.
DATABASE_FILE = settings.database_file


def _casefold(value: Optional[str]) -> Optional[str]:
    # SQLite's own LIKE and lower() only fold ASCII
    return value.casefold() if isinstance(value, str) else value


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode; multi-statement writes go through
    ``transaction()`` which opens its own ``BEGIN IMMEDIATE`` block.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.database_busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Run a block inside one serializable write transaction.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so the reads
    a caller makes to validate a transition cannot go stale before its writes
    commit. Any exception rolls the whole block back.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the library tables and indexes if they do not exist."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets readers proceed while a borrow/return transaction holds the write lock
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT NOT NULL UNIQUE,
                category TEXT,
                total_copies INTEGER NOT NULL CHECK (total_copies >= 1),
                available_copies INTEGER NOT NULL,
                created_at TIMESTAMP NOT NULL,
                CHECK (available_copies >= 0 AND available_copies <= total_copies)
            );

            CREATE TABLE IF NOT EXISTS members (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                membership_number TEXT NOT NULL UNIQUE,
                join_date TIMESTAMP NOT NULL
            );

            CREATE TABLE IF NOT EXISTS borrowings (
                id TEXT PRIMARY KEY,
                book_id TEXT NOT NULL,
                member_id TEXT NOT NULL,
                borrow_date TIMESTAMP NOT NULL,
                return_date TIMESTAMP,
                returned INTEGER NOT NULL DEFAULT 0 CHECK (returned IN (0, 1)),
                FOREIGN KEY (book_id) REFERENCES books(id),
                FOREIGN KEY (member_id) REFERENCES members(id)
            );

            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                member_id TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                expires_at TIMESTAMP NOT NULL,
                FOREIGN KEY (member_id) REFERENCES members(id) ON DELETE CASCADE
            );

            -- At most one active loan per (member, book)
            CREATE UNIQUE INDEX IF NOT EXISTS idx_borrowings_active_loan
                ON borrowings(member_id, book_id) WHERE returned = 0;

            CREATE INDEX IF NOT EXISTS idx_books_title ON books(title);
            CREATE INDEX IF NOT EXISTS idx_books_author ON books(author);
            CREATE INDEX IF NOT EXISTS idx_books_category ON books(category);
            CREATE INDEX IF NOT EXISTS idx_borrowings_member_date
                ON borrowings(member_id, borrow_date DESC);
            CREATE INDEX IF NOT EXISTS idx_sessions_member ON sessions(member_id);
        """)
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
    logger.debug("Database ready at %s", db_file or DATABASE_FILE)
