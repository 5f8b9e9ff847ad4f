import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from lending_library.book import Book, Category
from lending_library.database import get_db_connection, transaction
from lending_library.errors import (
    BookNotFoundError,
    DuplicateIsbnError,
    InvalidInputError,
    InvariantViolation,
    NoCopiesAvailableError,
)
from lending_library.utils.validators import ISBNValidator, TextValidator, new_id

logger = logging.getLogger(__name__)

BOOK_COLUMNS = "id, title, author, isbn, category, total_copies, available_copies, created_at"


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Catalog:
    """Book inventory and the available-copy counter of each title."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Core operations ------------------------- #
    def add_book(self, title: str, author: str, isbn: str, total_copies: int,
                 category: Optional[str] = None) -> Book:
        """Catalogue a new title with all of its copies available."""
        if TextValidator.is_blank(title) or TextValidator.is_blank(author) or TextValidator.is_blank(isbn):
            raise InvalidInputError("Required fields missing")
        if isinstance(total_copies, bool) or not isinstance(total_copies, int):
            raise InvalidInputError("Number of copies must be an integer")
        if total_copies < 1:
            raise InvalidInputError("Number of copies must be positive")
        try:
            parsed_category = Category.parse(category)
        except ValueError:
            raise InvalidInputError(f"Unknown category: {category}") from None

        norm_isbn = ISBNValidator.normalize_isbn(isbn)
        if not norm_isbn:
            raise InvalidInputError("ISBN cannot be empty")

        book = Book(
            id=new_id(),
            title=title,
            author=author,
            isbn=norm_isbn,
            total_copies=total_copies,
            category=parsed_category,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        try:
            with transaction(self.db_file) as conn:
                if conn.execute("SELECT 1 FROM books WHERE isbn = ?", (norm_isbn,)).fetchone():
                    raise DuplicateIsbnError(f"Book with ISBN {norm_isbn} already exists")
                conn.execute(
                    f"INSERT INTO books ({BOOK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (book.id, book.title, book.author, book.isbn,
                     book.category.value if book.category else None,
                     book.total_copies, book.available_copies, book.created_at),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateIsbnError(f"Book with ISBN {norm_isbn} already exists") from e
        logger.info("Added book %s (ISBN %s, %d copies)", book.id, book.isbn, book.total_copies)
        return book

    def find_book(self, book_id: str) -> Optional[Book]:
        """Return the book with this id, or None."""
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def find_by_id(self, book_id: str) -> Book:
        book = self.find_book(book_id)
        if book is None:
            raise BookNotFoundError()
        return book

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                f"SELECT {BOOK_COLUMNS} FROM books WHERE isbn = ?",
                (ISBNValidator.normalize_isbn(isbn),),
            ).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def list_books(self, limit: Optional[int] = None, offset: int = 0) -> List[Book]:
        """List every book ordered by title (fresh on every call)."""
        sql = f"SELECT {BOOK_COLUMNS} FROM books ORDER BY title, id"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = (limit, offset)
        return self._query(sql, params)

    def search(self, query: str) -> List[Book]:
        """Books whose title or author contains ``query``, ignoring case."""
        if TextValidator.is_blank(query):
            return self.list_books()
        pattern = f"%{_escape_like(query.strip().casefold())}%"
        return self._query(
            f"""
            SELECT {BOOK_COLUMNS} FROM books
            WHERE casefold(title) LIKE ? ESCAPE '\\' OR casefold(author) LIKE ? ESCAPE '\\'
            ORDER BY title, id
            """,
            (pattern, pattern),
        )

    def list_available(self) -> List[Book]:
        return self._query(
            f"SELECT {BOOK_COLUMNS} FROM books WHERE available_copies > 0 ORDER BY title, id"
        )

    def list_by_category(self, category: str) -> List[Book]:
        try:
            parsed = Category.parse(category)
        except ValueError:
            raise InvalidInputError(f"Unknown category: {category}") from None
        if parsed is None:
            raise InvalidInputError("Category is required")
        return self._query(
            f"SELECT {BOOK_COLUMNS} FROM books WHERE category = ? ORDER BY title, id",
            (parsed.value,),
        )

    def count_books(self) -> int:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
        finally:
            conn.close()

    def get_statistics(self) -> Dict[str, Any]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                """
                SELECT COUNT(*), COALESCE(SUM(total_copies), 0), COALESCE(SUM(available_copies), 0)
                FROM books
                """
            ).fetchone()
            return {
                "total_books": row[0],
                "total_copies": row[1],
                "available_copies": row[2],
            }
        finally:
            conn.close()

    # ---------------- Copy counter (ledger transactions only) ---------------- #
    def decrement_availability(self, conn: sqlite3.Connection, book_id: str) -> None:
        """Take one copy off the shelf inside the caller's transaction."""
        cursor = conn.execute(
            "UPDATE books SET available_copies = available_copies - 1 "
            "WHERE id = ? AND available_copies > 0",
            (book_id,),
        )
        if cursor.rowcount == 1:
            return
        if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
            raise BookNotFoundError()
        raise NoCopiesAvailableError()

    def increment_availability(self, conn: sqlite3.Connection, book_id: str) -> None:
        """Put one copy back inside the caller's transaction."""
        cursor = conn.execute(
            "UPDATE books SET available_copies = available_copies + 1 "
            "WHERE id = ? AND available_copies < total_copies",
            (book_id,),
        )
        if cursor.rowcount != 1:
            logger.error("Copy count for book %s would exceed its total copies", book_id)
            raise InvariantViolation(f"available copies of book {book_id} would exceed total copies")

    # ------------------------- Helpers ------------------------- #
    def _query(self, sql: str, params: tuple = ()) -> List[Book]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(sql, params).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()
