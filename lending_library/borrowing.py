from __future__ import annotations

from datetime import datetime
from enum import Enum


class LoanState(str, Enum):
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"


class Borrowing:
    """One loan of a book to a member.

    A borrowing starts ACTIVE and moves to RETURNED exactly once; the ledger
    is the only writer of either state.
    """

    def __init__(self, id: str, book_id: str, member_id: str, borrow_date: str,
                 return_date: str | None = None, returned: bool = False) -> None:
        self.id = id
        self.book_id = book_id
        self.member_id = member_id
        self.borrow_date = borrow_date
        self.return_date = return_date
        self.returned = bool(returned)

    @property
    def state(self) -> LoanState:
        return LoanState.RETURNED if self.returned else LoanState.ACTIVE

    @property
    def borrowed_at(self) -> datetime:
        return datetime.fromisoformat(self.borrow_date)

    def __repr__(self) -> str:  # pragma: no cover
        return f"Borrowing(id={self.id!r}, book={self.book_id!r}, member={self.member_id!r}, state={self.state.value})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "member_id": self.member_id,
            "borrow_date": self.borrow_date,
            "return_date": self.return_date,
            "returned": self.returned,
        }

    @staticmethod
    def from_dict(data: dict) -> "Borrowing":
        return Borrowing(
            id=data["id"],
            book_id=data["book_id"],
            member_id=data["member_id"],
            borrow_date=data["borrow_date"],
            return_date=data.get("return_date"),
            returned=data.get("returned", False),
        )
