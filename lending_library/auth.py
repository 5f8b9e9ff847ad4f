"""Member registration, login and bearer-token management.

Passwords are hashed with PBKDF2-SHA256 and a random per-member salt.
Authentication tokens are opaque random strings kept in the ``sessions``
table; a request presents one as ``Authorization: Bearer <token>`` and the
token resolves to the member id the lending ledger acts for.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from lending_library.config import settings
from lending_library.database import get_db_connection, transaction
from lending_library.errors import (
    EmailExistsError,
    InvalidCredentialsError,
    InvalidEmailError,
    InvalidInputError,
    InvalidPasswordError,
    MemberNotFoundError,
)
from lending_library.member import Member
from lending_library.utils.validators import EmailValidator, TextValidator, new_id

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 260_000
MEMBER_COLUMNS = "id, name, email, password_hash, membership_number, join_date"


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def _generate_membership_number() -> str:
    return f"MEM{secrets.randbelow(10**6):06d}"


class MemberService:
    """Members and their sessions."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Registration & login ------------------------- #
    def register_member(self, name: str, email: str, password: str) -> Tuple[Member, str]:
        """Create a member and open a session for them. Returns (member, token)."""
        if TextValidator.is_blank(name) or TextValidator.is_blank(email) or not password:
            raise InvalidInputError("All fields are required")
        if not EmailValidator.is_valid_email(email):
            raise InvalidEmailError()
        if len(password) < settings.password_min_length:
            raise InvalidPasswordError(
                f"Password must be at least {settings.password_min_length} characters"
            )

        email = EmailValidator.normalize_email(email)
        member = Member(
            id=new_id(),
            name=name.strip(),
            email=email,
            membership_number="",
            join_date=datetime.now(timezone.utc).isoformat(),
            password_hash=hash_password(password),
        )
        with transaction(self.db_file) as conn:
            if conn.execute("SELECT 1 FROM members WHERE email = ?", (email,)).fetchone():
                raise EmailExistsError()
            # Membership numbers are random; retry the rare collision
            while True:
                member.membership_number = _generate_membership_number()
                try:
                    conn.execute(
                        f"INSERT INTO members ({MEMBER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                        (member.id, member.name, member.email, member.password_hash,
                         member.membership_number, member.join_date),
                    )
                    break
                except sqlite3.IntegrityError:
                    taken = conn.execute(
                        "SELECT 1 FROM members WHERE membership_number = ?", (member.membership_number,)
                    ).fetchone()
                    if not taken:
                        raise
            token = self._open_session(conn, member.id)

        logger.info("Registered member %s (%s)", member.id, member.membership_number)
        return member, token

    def login(self, email: str, password: str) -> Tuple[Member, str]:
        """Check credentials and open a new session. Returns (member, token)."""
        if TextValidator.is_blank(email) or not password:
            raise InvalidInputError("Email and password are required")
        member = self._find_by_email(EmailValidator.normalize_email(email))
        if member is None or not verify_password(password, member.password_hash or ""):
            raise InvalidCredentialsError()
        with transaction(self.db_file) as conn:
            token = self._open_session(conn, member.id)
        return member, token

    def logout(self, token: str) -> bool:
        """Invalidate a token. Returns True if the token existed and was removed."""
        with transaction(self.db_file) as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
            return cursor.rowcount > 0

    def resolve_token(self, token: Optional[str]) -> Optional[str]:
        """Return the member id behind a bearer token, or None if unknown or expired."""
        if not token:
            return None
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                "SELECT member_id, expires_at FROM sessions WHERE token = ?", (token,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        if datetime.fromisoformat(row["expires_at"]) <= datetime.now(timezone.utc):
            logger.debug("Rejected expired session for member %s", row["member_id"])
            return None
        return row["member_id"]

    # ------------------------- Lookups ------------------------- #
    def get_member(self, member_id: str) -> Member:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(f"SELECT {MEMBER_COLUMNS} FROM members WHERE id = ?", (member_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise MemberNotFoundError()
        return Member.from_dict(dict(row))

    def get_member_by_email(self, email: str) -> Member:
        if not EmailValidator.is_valid_email(email):
            raise InvalidEmailError()
        member = self._find_by_email(EmailValidator.normalize_email(email))
        if member is None:
            raise MemberNotFoundError()
        return member

    def list_members(self) -> List[Member]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(f"SELECT {MEMBER_COLUMNS} FROM members ORDER BY join_date, id").fetchall()
            return [Member.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def count_members(self) -> int:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute("SELECT COUNT(*) FROM members").fetchone()[0]
        finally:
            conn.close()

    # ------------------------- Helpers ------------------------- #
    def _find_by_email(self, email: str) -> Optional[Member]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(f"SELECT {MEMBER_COLUMNS} FROM members WHERE email = ?", (email,)).fetchone()
            return Member.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    @staticmethod
    def _open_session(conn, member_id: str) -> str:
        now = datetime.now(timezone.utc)
        token = secrets.token_hex(32)
        conn.execute(
            "INSERT INTO sessions (token, member_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (token, member_id, now.isoformat(),
             (now + timedelta(minutes=settings.session_ttl_minutes)).isoformat()),
        )
        return token
