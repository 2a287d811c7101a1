from __future__ import annotations

import sqlite3

import pytest

from acme_dashboard import placeholder_data
from acme_dashboard.database import ITEMS_PER_PAGE, Database


def test_create_user_normalises_email_and_rejects_duplicates(database: Database) -> None:
    user = database.create_user("Test User", " User@Acme-Dashboard.com ", "Sup3r$ecret")

    assert user.email == "user@acme-dashboard.com"
    assert database.get_user_by_email("USER@acme-dashboard.com") == database.get_user(user.id)

    with pytest.raises(ValueError):
        database.create_user("Other", "user@acme-dashboard.com", "Sup3r$ecret")


def test_insert_user_surfaces_integrity_errors(database: Database) -> None:
    database.insert_user("First", "dup@acme-dashboard.com", None)

    with pytest.raises(sqlite3.IntegrityError):
        database.insert_user("Second", "dup@acme-dashboard.com", None)


def test_invoice_requires_known_customer_and_valid_status(database: Database) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        database.create_invoice("missing", 100, "pending", "2024-01-01")
    with pytest.raises(sqlite3.IntegrityError):
        database.create_invoice("c1", 100, "overdue", "2024-01-01")


def test_update_and_delete_report_whether_a_row_matched(database: Database) -> None:
    invoice_id = database.create_invoice("c1", 100, "pending", "2024-01-01")

    assert database.update_invoice(invoice_id, "c1", 250, "paid") is True
    assert database.update_invoice("nope", "c1", 250, "paid") is False

    invoice = database.fetch_invoice_by_id(invoice_id)
    assert invoice is not None
    assert invoice.amount == 2.5
    assert invoice.status == "paid"

    assert database.delete_invoice(invoice_id) is True
    assert database.delete_invoice(invoice_id) is False


def test_card_data_and_latest_invoices(database: Database) -> None:
    database.create_invoice("c1", 1000, "paid", "2024-01-01")
    database.create_invoice("c1", 500, "pending", "2024-01-03")
    database.create_invoice("c1", 250, "pending", "2024-01-02")

    cards = database.fetch_card_data()
    assert cards.number_of_customers == 1
    assert cards.number_of_invoices == 3
    assert cards.total_paid_invoices == 1000
    assert cards.total_pending_invoices == 750

    latest = database.fetch_latest_invoices()
    assert [invoice.date for invoice in latest] == ["2024-01-03", "2024-01-02", "2024-01-01"]
    assert latest[0].name == "Evil Rabbit"


def test_filtered_invoices_match_customer_amount_and_status(database: Database) -> None:
    database.create_invoice("c1", 1234, "paid", "2024-01-01")
    database.create_invoice("c1", 999, "pending", "2024-01-02")

    assert len(database.fetch_filtered_invoices("rabbit")) == 2
    assert len(database.fetch_filtered_invoices("1234")) == 1
    assert [row.status for row in database.fetch_filtered_invoices("pend")] == ["pending"]
    assert database.fetch_filtered_invoices("zzz") == []


def test_invoice_pages(database: Database) -> None:
    assert database.fetch_invoices_pages("") == 0
    for day in range(1, ITEMS_PER_PAGE + 2):
        database.create_invoice("c1", 100, "paid", f"2024-01-{day:02d}")

    assert database.fetch_invoices_pages("") == 2
    assert len(database.fetch_filtered_invoices("", 2)) == 1


def test_seed_is_idempotent(tmp_path) -> None:
    database = Database(tmp_path / "seed.sqlite3")
    database.initialize()

    for _ in range(2):
        database.seed(
            users=placeholder_data.USERS,
            customers=placeholder_data.CUSTOMERS,
            invoices=placeholder_data.INVOICES,
            revenue=placeholder_data.REVENUE,
        )

    cards = database.fetch_card_data()
    assert cards.number_of_customers == len(placeholder_data.CUSTOMERS)
    assert cards.number_of_invoices == len(placeholder_data.INVOICES)
    assert [entry.month for entry in database.fetch_revenue()][:3] == ["Jan", "Feb", "Mar"]
    assert len(database.list_users()) == 1

    summaries = {summary.name: summary for summary in database.fetch_filtered_customers("")}
    assert summaries["Evil Rabbit"].total_invoices == 2
    assert summaries["Evil Rabbit"].total_pending == 15795 + 666
