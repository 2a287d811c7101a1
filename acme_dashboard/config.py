"""Configuration management for the Acme dashboard."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml


_PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_SESSION_MAX_AGE = timedelta(days=30)


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def resolve_database_url(value: Optional[str], default_name: str) -> Path:
    """Resolve a ``sqlite:///`` URL or plain path to an on-disk location."""

    if value:
        raw = value.strip()
        for prefix in ("sqlite:///", "sqlite://"):
            if raw.startswith(prefix):
                raw = raw[len(prefix):]
                break
        if raw:
            return Path(raw).expanduser().resolve(strict=False)
    return (_PROJECT_ROOT / "data" / default_name).resolve(strict=False)


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the dashboard and its identity providers."""

    database_path: Path
    auth_database_path: Path
    secret: Optional[str] = None
    public_url: str = "http://localhost:8000"
    secure_cookies: bool = False
    session_max_age: timedelta = DEFAULT_SESSION_MAX_AGE
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    resend_api_key: Optional[str] = None
    resend_from: str = "Acme <no-reply@acme-dashboard.com>"

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def email_enabled(self) -> bool:
        return bool(self.resend_api_key)

    @staticmethod
    def from_dict(data: Mapping[str, object], base: "Settings | None" = None) -> "Settings":
        """Create :class:`Settings` from a parsed configuration mapping."""

        settings = base or Settings(
            database_path=resolve_database_url(None, "dashboard.sqlite3"),
            auth_database_path=resolve_database_url(None, "auth.sqlite3"),
        )
        updates: Dict[str, object] = {}

        if data.get("database"):
            updates["database_path"] = resolve_database_url(str(data["database"]), "dashboard.sqlite3")
        if data.get("auth_database"):
            updates["auth_database_path"] = resolve_database_url(str(data["auth_database"]), "auth.sqlite3")
        if data.get("secret"):
            updates["secret"] = str(data["secret"])
        if data.get("public_url"):
            updates["public_url"] = str(data["public_url"]).rstrip("/")
        if "secure_cookies" in data:
            updates["secure_cookies"] = bool(data["secure_cookies"])
        if data.get("session_max_age_days") is not None:
            try:
                days = int(data["session_max_age_days"])  # type: ignore[arg-type]
            except (TypeError, ValueError) as exc:
                raise ValueError("session_max_age_days must be an integer") from exc
            if days <= 0:
                raise ValueError("session_max_age_days must be positive")
            updates["session_max_age"] = timedelta(days=days)

        google = data.get("google") or {}
        if not isinstance(google, Mapping):
            raise ValueError("The 'google' configuration section must be a mapping")
        if google.get("client_id"):
            updates["google_client_id"] = str(google["client_id"])
        if google.get("client_secret"):
            updates["google_client_secret"] = str(google["client_secret"])

        resend = data.get("resend") or {}
        if not isinstance(resend, Mapping):
            raise ValueError("The 'resend' configuration section must be a mapping")
        if resend.get("api_key"):
            updates["resend_api_key"] = str(resend["api_key"])
        if resend.get("from"):
            updates["resend_from"] = str(resend["from"])

        return replace(settings, **updates)


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Load raw settings from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return raw


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    config_path: Optional[Path] = None,
) -> Settings:
    """Build settings from an optional YAML file overlaid with the environment."""

    env = os.environ if environ is None else environ

    if config_path is None and env.get("DASHBOARD_CONFIG"):
        config_path = Path(env["DASHBOARD_CONFIG"]).expanduser()

    settings = Settings.from_dict(load_config_file(config_path) if config_path else {})

    database_url = env.get("DASHBOARD_DB_PATH") or env.get("POSTGRES_URL")
    auth_database_url = env.get("DASHBOARD_AUTH_DB_PATH") or env.get("EMAILMAGICLINK_DATABASE_URL")

    overrides: Dict[str, object] = {
        "google": {
            "client_id": env.get("GOOGLE_CLIENT_ID"),
            "client_secret": env.get("GOOGLE_CLIENT_SECRET"),
        },
        "resend": {
            "api_key": env.get("AUTH_RESEND_KEY"),
            "from": env.get("AUTH_RESEND_FROM"),
        },
        "database": database_url,
        "auth_database": auth_database_url,
        "secret": env.get("AUTH_SECRET"),
        "public_url": env.get("AUTH_URL"),
        "session_max_age_days": env.get("AUTH_SESSION_MAX_AGE_DAYS"),
    }
    if env.get("AUTH_SECURE_COOKIES") is not None:
        overrides["secure_cookies"] = _env_flag(env.get("AUTH_SECURE_COOKIES"))

    return Settings.from_dict(overrides, base=settings)


__all__ = ["Settings", "load_config_file", "load_settings", "resolve_database_url"]
