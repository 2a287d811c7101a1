"""SQLite-backed persistence for users, customers, invoices and revenue."""
from __future__ import annotations

import math
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from passlib.context import CryptContext

from .models import (
    CardData,
    Customer,
    CustomerSummary,
    InvoiceForm,
    InvoiceRow,
    Revenue,
    User,
)


ITEMS_PER_PAGE = 6
LATEST_INVOICES_LIMIT = 5

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def generate_id() -> str:
    return str(uuid.uuid4())


def hash_password(password: str) -> str:
    """Return a salted bcrypt hash for ``password``."""

    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


class Database:
    """Thin wrapper around SQLite for the dashboard tables.

    Every write is a single parameterized statement. Storage failures surface
    as :class:`sqlite3.Error` so callers can decide how to report them.
    """

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
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
        """Create the required tables if they do not already exist."""

        with self._connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password TEXT,
                    email_verified TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS customers (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    image_url TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS invoices (
                    id TEXT PRIMARY KEY,
                    customer_id TEXT NOT NULL REFERENCES customers(id),
                    amount INTEGER NOT NULL CHECK (amount >= 0),
                    status TEXT NOT NULL CHECK (status IN ('pending', 'paid')),
                    date TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS revenue (
                    month TEXT NOT NULL UNIQUE,
                    revenue INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_invoices_customer_id ON invoices(customer_id);
                CREATE INDEX IF NOT EXISTS idx_invoices_date ON invoices(date);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def insert_user(
        self,
        name: str,
        email: str,
        password_hash: Optional[str],
        *,
        email_verified: Optional[datetime] = None,
    ) -> User:
        """Insert a user row; raises :class:`sqlite3.IntegrityError` on duplicates."""

        user_id = generate_id()
        created_at = _current_timestamp()
        normalized_email = email.strip().lower()

        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO users (id, name, email, password, email_verified, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    name,
                    normalized_email,
                    password_hash,
                    _serialize_datetime(email_verified) if email_verified else None,
                    _serialize_datetime(created_at),
                ),
            )

        return User(
            id=user_id,
            name=name,
            email=normalized_email,
            password=password_hash,
            email_verified=email_verified,
            created_at=created_at,
        )

    def create_user(self, name: str, email: str, password: str) -> User:
        """Hash ``password`` and create a user, mapping duplicates to ``ValueError``."""

        try:
            return self.insert_user(name, email, hash_password(password))
        except sqlite3.IntegrityError as exc:
            raise ValueError("A user with that email already exists") from exc

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def mark_email_verified(self, user_id: str, verified_at: Optional[datetime] = None) -> None:
        stamp = verified_at or _current_timestamp()
        with self._connection() as conn:
            conn.execute(
                "UPDATE users SET email_verified = ? WHERE id = ?",
                (_serialize_datetime(stamp), user_id),
            )

    def list_users(self) -> List[User]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at").fetchall()
        return [self._row_to_user(row) for row in rows]

    # ------------------------------------------------------------------
    # Invoice mutations
    # ------------------------------------------------------------------
    def create_invoice(self, customer_id: str, amount: int, status: str, date: str) -> str:
        invoice_id = generate_id()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO invoices (id, customer_id, amount, status, date)
                VALUES (?, ?, ?, ?, ?)
                """,
                (invoice_id, customer_id, amount, status, date),
            )
        return invoice_id

    def update_invoice(self, invoice_id: str, customer_id: str, amount: int, status: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE invoices
                   SET customer_id = ?, amount = ?, status = ?
                 WHERE id = ?
                """,
                (customer_id, amount, status, invoice_id),
            )
            return cursor.rowcount > 0

    def delete_invoice(self, invoice_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM invoices WHERE id = ?", (invoice_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Dashboard queries
    # ------------------------------------------------------------------
    def fetch_revenue(self) -> List[Revenue]:
        with self._connection() as conn:
            rows = conn.execute("SELECT month, revenue FROM revenue ORDER BY rowid").fetchall()
        return [Revenue(month=str(row["month"]), revenue=int(row["revenue"])) for row in rows]

    def fetch_latest_invoices(self, limit: int = LATEST_INVOICES_LIMIT) -> List[InvoiceRow]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT invoices.id, invoices.customer_id, invoices.amount, invoices.status,
                       invoices.date, customers.name, customers.email, customers.image_url
                  FROM invoices
                  JOIN customers ON invoices.customer_id = customers.id
                 ORDER BY invoices.date DESC
                 LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._row_to_invoice_row(row) for row in rows]

    def fetch_card_data(self) -> CardData:
        with self._connection() as conn:
            invoice_count = conn.execute("SELECT COUNT(*) FROM invoices").fetchone()[0]
            customer_count = conn.execute("SELECT COUNT(*) FROM customers").fetchone()[0]
            totals = conn.execute(
                """
                SELECT COALESCE(SUM(CASE WHEN status = 'paid' THEN amount ELSE 0 END), 0) AS paid,
                       COALESCE(SUM(CASE WHEN status = 'pending' THEN amount ELSE 0 END), 0) AS pending
                  FROM invoices
                """
            ).fetchone()
        return CardData(
            number_of_customers=int(customer_count),
            number_of_invoices=int(invoice_count),
            total_paid_invoices=int(totals["paid"]),
            total_pending_invoices=int(totals["pending"]),
        )

    def fetch_filtered_invoices(self, query: str, current_page: int = 1) -> List[InvoiceRow]:
        offset = (max(current_page, 1) - 1) * ITEMS_PER_PAGE
        pattern = f"%{query}%"
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT invoices.id, invoices.customer_id, invoices.amount, invoices.status,
                       invoices.date, customers.name, customers.email, customers.image_url
                  FROM invoices
                  JOIN customers ON invoices.customer_id = customers.id
                 WHERE customers.name LIKE ?
                    OR customers.email LIKE ?
                    OR CAST(invoices.amount AS TEXT) LIKE ?
                    OR invoices.date LIKE ?
                    OR invoices.status LIKE ?
                 ORDER BY invoices.date DESC
                 LIMIT ? OFFSET ?
                """,
                (pattern, pattern, pattern, pattern, pattern, ITEMS_PER_PAGE, offset),
            ).fetchall()
        return [self._row_to_invoice_row(row) for row in rows]

    def fetch_invoices_pages(self, query: str) -> int:
        pattern = f"%{query}%"
        with self._connection() as conn:
            count = conn.execute(
                """
                SELECT COUNT(*)
                  FROM invoices
                  JOIN customers ON invoices.customer_id = customers.id
                 WHERE customers.name LIKE ?
                    OR customers.email LIKE ?
                    OR CAST(invoices.amount AS TEXT) LIKE ?
                    OR invoices.date LIKE ?
                    OR invoices.status LIKE ?
                """,
                (pattern, pattern, pattern, pattern, pattern),
            ).fetchone()[0]
        return math.ceil(int(count) / ITEMS_PER_PAGE)

    def fetch_invoice_by_id(self, invoice_id: str) -> Optional[InvoiceForm]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id, customer_id, amount, status FROM invoices WHERE id = ?",
                (invoice_id,),
            ).fetchone()
        if row is None:
            return None
        return InvoiceForm(
            id=str(row["id"]),
            customer_id=str(row["customer_id"]),
            amount=int(row["amount"]) / 100,
            status=str(row["status"]),
        )

    def fetch_customers(self) -> List[Customer]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM customers ORDER BY name ASC").fetchall()
        return [
            Customer(
                id=str(row["id"]),
                name=str(row["name"]),
                email=str(row["email"]),
                image_url=str(row["image_url"]),
            )
            for row in rows
        ]

    def fetch_filtered_customers(self, query: str) -> List[CustomerSummary]:
        pattern = f"%{query}%"
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT customers.id, customers.name, customers.email, customers.image_url,
                       COUNT(invoices.id) AS total_invoices,
                       COALESCE(SUM(CASE WHEN invoices.status = 'pending' THEN invoices.amount ELSE 0 END), 0) AS total_pending,
                       COALESCE(SUM(CASE WHEN invoices.status = 'paid' THEN invoices.amount ELSE 0 END), 0) AS total_paid
                  FROM customers
                  LEFT JOIN invoices ON customers.id = invoices.customer_id
                 WHERE customers.name LIKE ? OR customers.email LIKE ?
                 GROUP BY customers.id, customers.name, customers.email, customers.image_url
                 ORDER BY customers.name ASC
                """,
                (pattern, pattern),
            ).fetchall()
        return [
            CustomerSummary(
                id=str(row["id"]),
                name=str(row["name"]),
                email=str(row["email"]),
                image_url=str(row["image_url"]),
                total_invoices=int(row["total_invoices"]),
                total_pending=int(row["total_pending"]),
                total_paid=int(row["total_paid"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------
    def seed(
        self,
        *,
        users: Sequence[dict],
        customers: Sequence[dict],
        invoices: Sequence[dict],
        revenue: Sequence[dict],
    ) -> None:
        """Load placeholder rows, skipping any that already exist."""

        created_at = _serialize_datetime(_current_timestamp())
        with self._connection() as conn:
            conn.executemany(
                """
                INSERT OR IGNORE INTO users (id, name, email, password, email_verified, created_at)
                VALUES (?, ?, ?, ?, NULL, ?)
                """,
                [
                    (
                        user["id"],
                        user["name"],
                        user["email"].strip().lower(),
                        hash_password(user["password"]),
                        created_at,
                    )
                    for user in users
                ],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO customers (id, name, email, image_url) VALUES (?, ?, ?, ?)",
                [(c["id"], c["name"], c["email"], c["image_url"]) for c in customers],
            )
            conn.executemany(
                """
                INSERT OR IGNORE INTO invoices (id, customer_id, amount, status, date)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        invoice.get("id") or generate_id(),
                        invoice["customer_id"],
                        invoice["amount"],
                        invoice["status"],
                        invoice["date"],
                    )
                    for invoice in invoices
                ],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO revenue (month, revenue) VALUES (?, ?)",
                [(entry["month"], entry["revenue"]) for entry in revenue],
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            password=row["password"],
            email_verified=_parse_datetime(row["email_verified"]),
            created_at=_parse_datetime(str(row["created_at"])) or _current_timestamp(),
        )

    def _row_to_invoice_row(self, row: sqlite3.Row) -> InvoiceRow:
        return InvoiceRow(
            id=str(row["id"]),
            customer_id=str(row["customer_id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            image_url=str(row["image_url"]),
            amount=int(row["amount"]),
            status=str(row["status"]),
            date=str(row["date"]),
        )


__all__ = [
    "Database",
    "ITEMS_PER_PAGE",
    "generate_id",
    "hash_password",
    "verify_password",
]
