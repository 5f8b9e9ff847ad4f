from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    FICTION = "FICTION"
    NON_FICTION = "NON_FICTION"
    SCIENCE = "SCIENCE"
    TECHNOLOGY = "TECHNOLOGY"
    HISTORY = "HISTORY"

    @classmethod
    def parse(cls, raw: str | None) -> "Category | None":
        """Map user input such as ``"non-fiction"`` to a category, or None for blank input."""
        if raw is None or not str(raw).strip():
            return None
        key = str(raw).strip().upper().replace("-", "_").replace(" ", "_")
        return cls(key)


class Book:
    """Represents a catalogued title and its copy counts."""

    def __init__(self, id: str, title: str, author: str, isbn: str, total_copies: int,
                 available_copies: int | None = None, category: Category | str | None = None,
                 created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip()
        self.total_copies = int(total_copies)
        self.available_copies = self.total_copies if available_copies is None else int(available_copies)
        self.category = Category(category) if category else None
        self.created_at = created_at

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def __repr__(self) -> str:  # pragma: no cover
        return f"Book(id={self.id!r}, isbn={self.isbn!r}, available={self.available_copies}/{self.total_copies})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category.value if self.category else None,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            total_copies=data["total_copies"],
            available_copies=data.get("available_copies"),
            category=data.get("category"),
            created_at=data.get("created_at"),
        )
