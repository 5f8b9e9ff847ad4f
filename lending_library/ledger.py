"""Borrowing records and the borrow/return state machine.

A borrowing is ACTIVE from the moment it is created until its single return,
after which it is RETURNED for good. Each transition runs in one
``BEGIN IMMEDIATE`` transaction that also moves the book's available-copy
counter, so a loan record and its copy are always committed together.
"""

import logging
import math
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from lending_library.borrowing import Borrowing
from lending_library.catalog import Catalog
from lending_library.database import get_db_connection, transaction
from lending_library.errors import (
    AlreadyBorrowedError,
    AlreadyReturnedError,
    BookNotFoundError,
    BorrowingNotFoundError,
    InvariantViolation,
    MemberNotFoundError,
    NoCopiesAvailableError,
    UnauthenticatedError,
    UnauthorizedError,
)
from lending_library.utils.validators import new_id

logger = logging.getLogger(__name__)

# Fixed loan term; overdue days are counted past this.
LOAN_PERIOD_DAYS = 14

BORROWING_COLUMNS = "id, book_id, member_id, borrow_date, return_date, returned"


def days_overdue(borrowing: Borrowing, now: Optional[datetime] = None) -> int:
    """Whole days an active loan is past the loan period; 0 once returned."""
    if borrowing.returned:
        return 0
    now = now or datetime.now(timezone.utc)
    elapsed_days = (now - borrowing.borrowed_at).total_seconds() / 86400
    return max(0, math.ceil(elapsed_days) - LOAN_PERIOD_DAYS)


class Ledger:
    """Owns borrowing records and keeps the catalog's copy counts in step with them."""

    def __init__(self, catalog: Catalog, db_file: Optional[str] = None) -> None:
        self.catalog = catalog
        self.db_file = db_file

    # ------------------------- Transitions ------------------------- #
    def borrow(self, member_id: Optional[str], book_id: str) -> Borrowing:
        """Lend one copy of ``book_id`` to ``member_id``."""
        if not member_id:
            raise UnauthenticatedError()

        try:
            with transaction(self.db_file) as conn:
                book = conn.execute(
                    "SELECT available_copies FROM books WHERE id = ?", (book_id,)
                ).fetchone()
                if book is None:
                    raise BookNotFoundError()
                if conn.execute("SELECT 1 FROM members WHERE id = ?", (member_id,)).fetchone() is None:
                    raise MemberNotFoundError()
                if book["available_copies"] <= 0:
                    raise NoCopiesAvailableError()

                existing = conn.execute(
                    "SELECT 1 FROM borrowings WHERE member_id = ? AND book_id = ? AND returned = 0",
                    (member_id, book_id),
                ).fetchone()
                if existing:
                    raise AlreadyBorrowedError()

                borrowing = Borrowing(
                    id=new_id(),
                    book_id=book_id,
                    member_id=member_id,
                    borrow_date=datetime.now(timezone.utc).isoformat(),
                )
                conn.execute(
                    f"INSERT INTO borrowings ({BORROWING_COLUMNS}) VALUES (?, ?, ?, ?, NULL, 0)",
                    (borrowing.id, borrowing.book_id, borrowing.member_id, borrowing.borrow_date),
                )
                self.catalog.decrement_availability(conn, book_id)
        except sqlite3.IntegrityError as e:
            # Only reachable if a writer skipped the checks above
            logger.error("Borrow of book %s by member %s violated a constraint: %s", book_id, member_id, e)
            raise InvariantViolation(f"borrow of book {book_id} violated a storage constraint") from e

        logger.info("Member %s borrowed book %s (borrowing %s)", member_id, book_id, borrowing.id)
        return borrowing

    def return_book(self, member_id: Optional[str], borrowing_id: str) -> Borrowing:
        """Close the member's loan and put the copy back on the shelf."""
        if not member_id:
            raise UnauthenticatedError()

        with transaction(self.db_file) as conn:
            row = conn.execute(
                f"SELECT {BORROWING_COLUMNS} FROM borrowings WHERE id = ?", (borrowing_id,)
            ).fetchone()
            if row is None:
                raise BorrowingNotFoundError()
            borrowing = Borrowing.from_dict(dict(row))

            if borrowing.member_id != member_id:
                logger.warning("Member %s tried to return borrowing %s owned by %s",
                               member_id, borrowing_id, borrowing.member_id)
                raise UnauthorizedError()
            if borrowing.returned:
                raise AlreadyReturnedError()

            return_date = datetime.now(timezone.utc).isoformat()
            cursor = conn.execute(
                "UPDATE borrowings SET returned = 1, return_date = ? WHERE id = ? AND returned = 0",
                (return_date, borrowing_id),
            )
            if cursor.rowcount != 1:
                raise AlreadyReturnedError()
            self.catalog.increment_availability(conn, borrowing.book_id)

        borrowing.returned = True
        borrowing.return_date = return_date
        logger.info("Member %s returned book %s (borrowing %s)", member_id, borrowing.book_id, borrowing_id)
        return borrowing

    # ------------------------- Reads ------------------------- #
    def find_borrowing(self, borrowing_id: str) -> Borrowing:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                f"SELECT {BORROWING_COLUMNS} FROM borrowings WHERE id = ?", (borrowing_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise BorrowingNotFoundError()
        return Borrowing.from_dict(dict(row))

    def active_borrowings_for(self, member_id: str) -> List[Borrowing]:
        """The member's open loans, most recent first."""
        return self._query(
            f"""
            SELECT {BORROWING_COLUMNS} FROM borrowings
            WHERE member_id = ? AND returned = 0
            ORDER BY borrow_date DESC, rowid DESC
            """,
            (member_id,),
        )

    def all_borrowings_for(self, member_id: str) -> List[Borrowing]:
        """Every loan the member ever took, most recent first."""
        return self._query(
            f"""
            SELECT {BORROWING_COLUMNS} FROM borrowings
            WHERE member_id = ?
            ORDER BY borrow_date DESC, rowid DESC
            """,
            (member_id,),
        )

    def count_active(self) -> int:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute("SELECT COUNT(*) FROM borrowings WHERE returned = 0").fetchone()[0]
        finally:
            conn.close()

    def _query(self, sql: str, params: tuple) -> List[Borrowing]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(sql, params).fetchall()
            return [Borrowing.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()
