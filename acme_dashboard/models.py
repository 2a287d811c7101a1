"""Domain models for the invoice dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the dashboard database."""

    id: str
    name: str
    email: str
    password: Optional[str]
    email_verified: Optional[datetime]
    created_at: datetime


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    email: str
    image_url: str


@dataclass(frozen=True)
class InvoiceForm:
    """Invoice values prepared for the edit form (amount in dollars)."""

    id: str
    customer_id: str
    amount: float
    status: str


@dataclass(frozen=True)
class InvoiceRow:
    """An invoice joined with its customer for table views."""

    id: str
    customer_id: str
    name: str
    email: str
    image_url: str
    amount: int
    status: str
    date: str


@dataclass(frozen=True)
class Revenue:
    month: str
    revenue: int


@dataclass(frozen=True)
class CardData:
    number_of_customers: int
    number_of_invoices: int
    total_paid_invoices: int
    total_pending_invoices: int


@dataclass(frozen=True)
class CustomerSummary:
    id: str
    name: str
    email: str
    image_url: str
    total_invoices: int
    total_pending: int
    total_paid: int


@dataclass(frozen=True)
class Account:
    """An identity-provider account linked to a user."""

    user_id: str
    provider: str
    provider_account_id: str
    type: str
    created_at: datetime


@dataclass(frozen=True)
class AuthSession:
    """A database-backed browser session."""

    session_token: str
    user_id: str
    expires: datetime


__all__ = [
    "Account",
    "AuthSession",
    "CardData",
    "Customer",
    "CustomerSummary",
    "InvoiceForm",
    "InvoiceRow",
    "Revenue",
    "User",
]
