from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from acme_dashboard.auth_store import AuthStore
from acme_dashboard.config import Settings
from acme_dashboard.database import Database


CUSTOMER = {
    "id": "c1",
    "name": "Evil Rabbit",
    "email": "evil@rabbit.com",
    "image_url": "/static/customers/evil-rabbit.svg",
}


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_path=tmp_path / "dashboard.sqlite3",
        auth_database_path=tmp_path / "auth.sqlite3",
        secret="tests-secret-key",
        public_url="http://testserver",
    )


@pytest.fixture()
def database(settings: Settings) -> Database:
    db = Database(settings.database_path)
    db.initialize()
    db.seed(users=[], customers=[CUSTOMER], invoices=[], revenue=[])
    return db


@pytest.fixture()
def auth_store(settings: Settings) -> AuthStore:
    store = AuthStore(settings.auth_database_path, secret=settings.secret)
    store.initialize()
    return store
