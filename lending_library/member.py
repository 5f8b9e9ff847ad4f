from __future__ import annotations


class Member:
    """A registered library member. The password hash never leaves this object via ``to_dict``."""

    def __init__(self, id: str, name: str, email: str, membership_number: str,
                 join_date: str, password_hash: str | None = None) -> None:
        self.id = id
        self.name = name
        self.email = email
        self.membership_number = membership_number
        self.join_date = join_date
        self.password_hash = password_hash

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} <{self.email}> ({self.membership_number})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "membership_number": self.membership_number,
            "join_date": self.join_date,
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            membership_number=data["membership_number"],
            join_date=data["join_date"],
            password_hash=data.get("password_hash"),
        )
