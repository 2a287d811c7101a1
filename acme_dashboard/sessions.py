"""Database-backed session handling for the dashboard."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from .auth_store import AuthStore
from .config import DEFAULT_SESSION_MAX_AGE


class SessionManager:
    """Generate, validate, and revoke dashboard sessions stored in the auth store."""

    def __init__(self, store: AuthStore, *, ttl: timedelta = DEFAULT_SESSION_MAX_AGE) -> None:
        self._store = store
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def create(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        self._store.create_session(token, user_id, self._now() + self._ttl)
        return token

    def resolve(self, token: str) -> Optional[str]:
        """Return the user id for ``token`` and slide its expiry, or ``None``."""

        record = self._store.get_session(token)
        if record is None:
            return None
        now = self._now()
        if record.expires <= now:
            self._store.delete_session(token)
            return None
        # Only write back once a day of the window has been used.
        if record.expires - now < self._ttl - timedelta(days=1):
            self._store.update_session_expiry(token, now + self._ttl)
        return record.user_id

    def destroy(self, token: str) -> None:
        self._store.delete_session(token)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["SessionManager"]
