import re
import uuid
from typing import Optional

from lending_library.errors import InvalidIdError

_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def new_id() -> str:
    """Return a fresh opaque identifier (32 lower-case hex characters)."""
    return uuid.uuid4().hex


class IdValidator:
    """Format checks for opaque identifiers, applied before any lookup."""

    @staticmethod
    def is_valid_id(raw: Optional[str]) -> bool:
        return bool(raw) and bool(_ID_RE.match(raw))

    @staticmethod
    def require_valid_id(raw: Optional[str], what: str) -> str:
        """Return ``raw`` unchanged or raise ``InvalidIdError`` naming the kind of id."""
        if not IdValidator.is_valid_id(raw):
            raise InvalidIdError(f"Invalid {what} ID")
        return raw


class ISBNValidator:
    """ISBN normalization. Catalog ISBNs are compared in normalized form."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9A-Za-z]", "", raw)
        return s.upper()


class EmailValidator:

    @staticmethod
    def normalize_email(raw: Optional[str]) -> str:
        return (raw or "").strip().lower()

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        # same rule the registration form has always used: something@something
        if not email:
            return False
        local, sep, domain = email.strip().partition("@")
        return bool(sep and local and domain)


class TextValidator:

    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not str(text).strip()
