"""Error kinds raised by the catalog, ledger and member services.

Every expected outcome is a ``LibraryError`` subclass with a stable ``code``
that the transport layer returns to callers unchanged. ``InvariantViolation``
sits outside that hierarchy: it means the copy-count bookkeeping went wrong
and is reported as an internal error.
"""

from __future__ import annotations


class LibraryError(Exception):
    """Base class for caller-recoverable library errors."""

    code = "LIBRARY_ERROR"
    status_code = 400
    default_message = "Library error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# --- Malformed input ---
class InvalidInputError(LibraryError):
    code = "INVALID_INPUT"
    default_message = "Required fields missing"


class InvalidIdError(LibraryError):
    code = "INVALID_ID"
    default_message = "Invalid ID"


class InvalidEmailError(LibraryError):
    code = "INVALID_EMAIL"
    default_message = "Invalid email format"


class InvalidPasswordError(LibraryError):
    code = "INVALID_PASSWORD"
    default_message = "Password is too short"


# --- Identity ---
class UnauthenticatedError(LibraryError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Not authenticated"


class InvalidCredentialsError(LibraryError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid credentials"


class UnauthorizedError(LibraryError):
    code = "UNAUTHORIZED"
    status_code = 403
    default_message = "Not authorized to return this book"


# --- Missing entities ---
class NotFoundError(LibraryError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class BookNotFoundError(NotFoundError):
    code = "BOOK_NOT_FOUND"
    default_message = "Book not found"


class BorrowingNotFoundError(NotFoundError):
    code = "BORROWING_NOT_FOUND"
    default_message = "Borrowing record not found"


class MemberNotFoundError(NotFoundError):
    code = "MEMBER_NOT_FOUND"
    default_message = "Member not found"


# --- Uniqueness ---
class DuplicateIsbnError(LibraryError):
    code = "ISBN_EXISTS"
    status_code = 409
    default_message = "Book with this ISBN already exists"


class EmailExistsError(LibraryError):
    code = "EMAIL_EXISTS"
    status_code = 409
    default_message = "Email already registered"


# --- Lending state machine guards ---
class NoCopiesAvailableError(LibraryError):
    code = "NO_COPIES_AVAILABLE"
    status_code = 409
    default_message = "No copies available"


class AlreadyBorrowedError(LibraryError):
    code = "ALREADY_BORROWED"
    status_code = 409
    default_message = "Member has already borrowed this book"


class AlreadyReturnedError(LibraryError):
    code = "ALREADY_RETURNED"
    status_code = 409
    default_message = "Book already returned"


class InvariantViolation(RuntimeError):
    """Copy counts disagree with the borrowing records."""
