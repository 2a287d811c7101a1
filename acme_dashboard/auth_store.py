"""SQLite persistence for sessions, linked accounts and email verification tokens.

The auth store lives in its own database file so the identity tables can be
pointed at a different location than the dashboard data.
"""
from __future__ import annotations

import base64
import hashlib
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from cryptography.fernet import Fernet, InvalidToken

from .models import Account, AuthSession


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


class AuthStore:
    """Adapter tables backing database sessions and provider accounts."""

    def __init__(self, path: Path, *, secret: Optional[str] = None) -> None:
        _ensure_directory(path)
        self._path = path
        self._cipher = self._build_token_cipher(secret)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    session_token TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    expires TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    provider_account_id TEXT NOT NULL,
                    access_token TEXT,
                    refresh_token TEXT,
                    id_token TEXT,
                    expires_at INTEGER,
                    scope TEXT,
                    token_type TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (provider, provider_account_id)
                );

                CREATE TABLE IF NOT EXISTS verification_tokens (
                    identifier TEXT NOT NULL,
                    token TEXT NOT NULL,
                    expires TEXT NOT NULL,
                    PRIMARY KEY (identifier, token)
                );

                CREATE INDEX IF NOT EXISTS idx_sessions_user_id ON sessions(user_id);
                CREATE INDEX IF NOT EXISTS idx_accounts_user_id ON accounts(user_id);
                """
            )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def create_session(self, session_token: str, user_id: str, expires: datetime) -> AuthSession:
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO sessions (session_token, user_id, expires) VALUES (?, ?, ?)",
                (session_token, user_id, _serialize_datetime(expires)),
            )
        return AuthSession(session_token=session_token, user_id=user_id, expires=expires)

    def get_session(self, session_token: str) -> Optional[AuthSession]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_token = ?",
                (session_token,),
            ).fetchone()
        if row is None:
            return None
        return AuthSession(
            session_token=str(row["session_token"]),
            user_id=str(row["user_id"]),
            expires=_parse_datetime(str(row["expires"])),
        )

    def update_session_expiry(self, session_token: str, expires: datetime) -> None:
        with self._connection() as conn:
            conn.execute(
                "UPDATE sessions SET expires = ? WHERE session_token = ?",
                (_serialize_datetime(expires), session_token),
            )

    def delete_session(self, session_token: str) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM sessions WHERE session_token = ?", (session_token,))

    def purge_expired_sessions(self, now: Optional[datetime] = None) -> int:
        cutoff = _serialize_datetime(now or _current_timestamp())
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE expires <= ?", (cutoff,))
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def link_account(
        self,
        user_id: str,
        *,
        provider: str,
        provider_account_id: str,
        type: str = "oauth",
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        id_token: Optional[str] = None,
        expires_at: Optional[int] = None,
        scope: Optional[str] = None,
        token_type: Optional[str] = None,
    ) -> Account:
        created_at = _current_timestamp()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO accounts (
                    user_id, type, provider, provider_account_id, access_token, refresh_token,
                    id_token, expires_at, scope, token_type, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    type,
                    provider,
                    provider_account_id,
                    self._encrypt_token(access_token),
                    self._encrypt_token(refresh_token),
                    self._encrypt_token(id_token),
                    expires_at,
                    scope,
                    token_type,
                    _serialize_datetime(created_at),
                ),
            )
        return Account(
            user_id=user_id,
            provider=provider,
            provider_account_id=provider_account_id,
            type=type,
            created_at=created_at,
        )

    def get_account(self, provider: str, provider_account_id: str) -> Optional[Account]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE provider = ? AND provider_account_id = ?",
                (provider, provider_account_id),
            ).fetchone()
        if row is None:
            return None
        return Account(
            user_id=str(row["user_id"]),
            provider=str(row["provider"]),
            provider_account_id=str(row["provider_account_id"]),
            type=str(row["type"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def get_access_token(self, provider: str, provider_account_id: str) -> Optional[str]:
        """Return the decrypted access token stored for an account, if any."""

        with self._connection() as conn:
            row = conn.execute(
                "SELECT access_token FROM accounts WHERE provider = ? AND provider_account_id = ?",
                (provider, provider_account_id),
            ).fetchone()
        if row is None or not row["access_token"]:
            return None
        return self._decrypt_token(str(row["access_token"]))

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------
    def create_verification_token(self, identifier: str, token_hash: str, expires: datetime) -> None:
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO verification_tokens (identifier, token, expires) VALUES (?, ?, ?)",
                (identifier, token_hash, _serialize_datetime(expires)),
            )

    def use_verification_token(self, identifier: str, token_hash: str) -> Optional[datetime]:
        """Delete a verification token and return its expiry if it existed."""

        with self._connection() as conn:
            row = conn.execute(
                "SELECT expires FROM verification_tokens WHERE identifier = ? AND token = ?",
                (identifier, token_hash),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "DELETE FROM verification_tokens WHERE identifier = ? AND token = ?",
                (identifier, token_hash),
            )
        return _parse_datetime(str(row["expires"]))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _build_token_cipher(self, secret: Optional[str]) -> Optional[Fernet]:
        if not secret:
            return None
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest)
        return Fernet(key)

    def _encrypt_token(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if self._cipher is None:
            raise RuntimeError("Provider tokens cannot be stored without AUTH_SECRET configured")
        return self._cipher.encrypt(value.encode("utf-8")).decode("utf-8")

    def _decrypt_token(self, encrypted: str) -> str:
        if self._cipher is None:
            raise RuntimeError("Provider tokens cannot be read without AUTH_SECRET configured")
        try:
            plaintext = self._cipher.decrypt(encrypted.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError("Stored provider token could not be decrypted") from exc
        return plaintext.decode("utf-8")


__all__ = ["AuthStore"]
