"""SQLite-backed store for local dashboard accounts."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

DEFAULT_ROLE = "USER"


class UserStore:
    """Local user accounts keyed by a unique, lower-cased email."""

    def __init__(self, database_path: str | Path) -> None:
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'USER',
                    name TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            # Accounts left behind by earlier sign-up bugs.
            conn.execute("DELETE FROM users WHERE email = '' OR email IS NULL")
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.database_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    def normalise_email(email: str | None) -> str:
        return (email or "").strip().lower()

    def fetch_user(self, email: str | None) -> dict[str, Any] | None:
        normalized = self.normalise_email(email)
        if not normalized:
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, email, password_hash, role, name, created_at "
                "FROM users WHERE email = ?",
                (normalized,),
            ).fetchone()
        return dict(row) if row is not None else None

    def create_user(
        self,
        email: str,
        password_hash: str,
        *,
        role: str | None = None,
        name: str | None = None,
    ) -> tuple[dict[str, Any] | None, str | None]:
        """Insert a new account.

        Returns:
            tuple: (record, error). ``error`` is ``"exists"`` when the email
            is already registered, or the database error text.
        """

        normalized = self.normalise_email(email)
        if not normalized:
            raise ValueError("email is required")

        created_at = datetime.now(tz=timezone.utc).isoformat()
        record_role = (role or DEFAULT_ROLE).strip().upper() or DEFAULT_ROLE

        with self._lock, self._connect() as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO users (email, password_hash, role, name, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (normalized, password_hash, record_role, name, created_at),
                )
                conn.commit()
            except sqlite3.IntegrityError:
                return None, "exists"
            except sqlite3.Error as exc:
                return None, str(exc)
            user_id = cur.lastrowid

        return {
            "id": user_id,
            "email": normalized,
            "role": record_role,
            "name": name,
            "created_at": created_at,
        }, None


__all__ = ["DEFAULT_ROLE", "UserStore"]
