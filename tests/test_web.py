from __future__ import annotations

import json
from dataclasses import replace
from datetime import date
from typing import List
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient

from acme_dashboard.auth_store import AuthStore
from acme_dashboard.config import Settings
from acme_dashboard.database import Database
from acme_dashboard.web import create_app


EMAIL = "user@acme-dashboard.com"
PASSWORD = "Sup3r$ecret"


def _app(settings: Settings, database: Database, auth_store: AuthStore, **kwargs):
    return create_app(
        settings=settings,
        database=database,
        auth_store=auth_store,
        today=lambda: date(2024, 5, 1),
        **kwargs,
    )


def _login(client: TestClient) -> None:
    response = client.post(
        "/login",
        data={"email": EMAIL, "password": PASSWORD},
        follow_redirects=False,
    )
    assert response.status_code == 303


def test_create_app_requires_secret(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    with pytest.raises(RuntimeError):
        create_app(settings=replace(settings, secret=None), database=database, auth_store=auth_store)


def test_healthcheck_and_home_are_public(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    with TestClient(_app(settings, database, auth_store)) as client:
        assert client.get("/healthz").json() == {"status": "ok"}
        home = client.get("/")
        assert home.status_code == 200
        assert "Welcome to Acme." in home.text


def test_login_redirects_to_dashboard_when_credentials_valid(
    settings: Settings,
    database: Database,
    auth_store: AuthStore,
) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)

    with TestClient(_app(settings, database, auth_store)) as client:
        response = client.post(
            "/login",
            data={"email": EMAIL, "password": PASSWORD},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/dashboard"

        follow = client.get("/dashboard", follow_redirects=False)
        assert follow.status_code == 200
        assert "Total Customers" in follow.text
        assert "Test User" in follow.text


def test_invalid_login_shows_error_and_keeps_email(
    settings: Settings,
    database: Database,
    auth_store: AuthStore,
) -> None:
    with TestClient(_app(settings, database, auth_store)) as client:
        response = client.post(
            "/login",
            data={"email": "ghost@acme-dashboard.com", "password": PASSWORD},
            follow_redirects=False,
        )
        assert response.status_code == 303
        assert response.headers["location"] == "/login"

        page = client.get("/login")
        assert "Invalid credentials" in page.text
        assert 'value="ghost@acme-dashboard.com"' in page.text


def test_anonymous_dashboard_request_redirects_to_login(
    settings: Settings,
    database: Database,
    auth_store: AuthStore,
) -> None:
    with TestClient(_app(settings, database, auth_store)) as client:
        response = client.get("/dashboard/invoices", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/login?redirectTo=%2Fdashboard%2Finvoices"

        login = client.get(response.headers["location"])
        assert 'name="redirectTo" value="/dashboard/invoices"' in login.text


def test_login_returns_to_requested_page(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)

    with TestClient(_app(settings, database, auth_store)) as client:
        response = client.post(
            "/login",
            data={"email": EMAIL, "password": PASSWORD, "redirectTo": "/dashboard/customers"},
            follow_redirects=False,
        )

        assert response.headers["location"] == "/dashboard/customers"


def test_logged_in_user_visiting_login_goes_to_dashboard(
    settings: Settings,
    database: Database,
    auth_store: AuthStore,
) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)

    with TestClient(_app(settings, database, auth_store)) as client:
        _login(client)
        response = client.get("/login", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/dashboard"


def test_logout_ends_session(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)

    with TestClient(_app(settings, database, auth_store)) as client:
        _login(client)
        logout = client.post("/logout", follow_redirects=False)
        assert logout.status_code == 303
        assert logout.headers["location"] == "/login"

        response = client.get("/dashboard", follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"].startswith("/login")


def test_register_then_sign_in(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    with TestClient(_app(settings, database, auth_store)) as client:
        response = client.post(
            "/register",
            data={
                "username": "newuser",
                "email": EMAIL,
                "password": PASSWORD,
                "confirmPassword": PASSWORD,
            },
            follow_redirects=False,
        )
        assert response.status_code == 303
        assert response.headers["location"] == "/login"
        assert "Account created. Sign in to continue." in client.get("/login").text

        _login(client)
        assert client.get("/dashboard", follow_redirects=False).status_code == 200


def test_register_shows_every_field_error(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    with TestClient(_app(settings, database, auth_store)) as client:
        response = client.post(
            "/register",
            data={
                "username": "ab",
                "email": "not-an-email",
                "password": "weak",
                "confirmPassword": "weak",
            },
        )

    assert response.status_code == 400
    assert "Username must be at least 3 characters long" in response.text
    assert "Invalid email address" in response.text
    assert "Password must contain at least one uppercase letter" in response.text
    assert 'value="ab"' in response.text
    assert database.list_users() == []


def test_create_invoice_flow_revalidates_listing(
    settings: Settings,
    database: Database,
    auth_store: AuthStore,
) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)

    with TestClient(_app(settings, database, auth_store)) as client:
        _login(client)
        empty = client.get("/dashboard/invoices")
        assert "No invoices found." in empty.text

        form = client.get("/dashboard/invoices/create")
        assert form.status_code == 200
        assert "Evil Rabbit" in form.text

        response = client.post(
            "/dashboard/invoices/create",
            data={"customerId": "c1", "amount": "25.50", "status": "pending"},
            follow_redirects=False,
        )
        assert response.status_code == 303
        assert response.headers["location"] == "/dashboard/invoices"

        listing = client.get("/dashboard/invoices")
        assert "Invoice created." in listing.text
        assert "$25.50" in listing.text
        assert "May 1, 2024" in listing.text

        overview = client.get("/dashboard")
        assert "$25.50" in overview.text


def test_create_invoice_with_invalid_fields_rerenders_form(
    settings: Settings,
    database: Database,
    auth_store: AuthStore,
) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)

    with TestClient(_app(settings, database, auth_store)) as client:
        _login(client)
        response = client.post(
            "/dashboard/invoices/create",
            data={"customerId": "c1", "amount": "0"},
        )

    assert response.status_code == 400
    assert "Missing Fields. Failed to Create Invoice." in response.text
    assert "Please enter an amount greater than $0." in response.text
    assert "Please select an invoice status." in response.text
    assert "Please select a customer." not in response.text


def test_edit_and_delete_invoice(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)
    invoice_id = database.create_invoice("c1", 1000, "pending", "2024-01-01")

    with TestClient(_app(settings, database, auth_store)) as client:
        _login(client)

        form = client.get(f"/dashboard/invoices/{invoice_id}/edit")
        assert form.status_code == 200
        assert 'value="10.00"' in form.text

        updated = client.post(
            f"/dashboard/invoices/{invoice_id}/edit",
            data={"customerId": "c1", "amount": "42", "status": "paid"},
            follow_redirects=False,
        )
        assert updated.status_code == 303
        listing = client.get("/dashboard/invoices")
        assert "$42.00" in listing.text
        assert "Invoice updated." in listing.text

        deleted = client.post(f"/dashboard/invoices/{invoice_id}/delete", follow_redirects=False)
        assert deleted.status_code == 303
        assert deleted.headers["location"] == "/dashboard/invoices"
        listing = client.get("/dashboard/invoices")
        assert "Invoice deleted." in listing.text
        assert "$42.00" not in listing.text


def test_edit_unknown_invoice_is_not_found(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)

    with TestClient(_app(settings, database, auth_store)) as client:
        _login(client)
        response = client.get("/dashboard/invoices/unknown/edit")

    assert response.status_code == 404
    assert "Could not find the requested invoice." in response.text


def test_invoice_search_and_pagination(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)
    for day in range(1, 9):
        database.create_invoice("c1", day * 100, "paid", f"2024-02-{day:02d}")

    with TestClient(_app(settings, database, auth_store)) as client:
        _login(client)
        first = client.get("/dashboard/invoices")
        assert first.text.count("row-actions") == 6
        assert "/dashboard/invoices?query=&amp;page=2" in first.text

        second = client.get("/dashboard/invoices", params={"page": 2})
        assert second.text.count("row-actions") == 2

        search = client.get("/dashboard/invoices", params={"query": "2024-02-03"})
        assert search.text.count("row-actions") == 1


def test_customers_page_lists_totals(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    database.create_user("Test User", EMAIL, PASSWORD)
    database.create_invoice("c1", 1500, "pending", "2024-01-01")
    database.create_invoice("c1", 2500, "paid", "2024-01-02")

    with TestClient(_app(settings, database, auth_store)) as client:
        _login(client)
        response = client.get("/dashboard/customers", params={"query": "rabbit"})
        missing = client.get("/dashboard/customers", params={"query": "nobody"})

    assert response.status_code == 200
    assert "Evil Rabbit" in response.text
    assert "$15.00" in response.text
    assert "$25.00" in response.text
    assert "No customers found." in missing.text


def test_email_sign_in_flow(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    sent: List[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "email-1"})

    app = _app(
        replace(settings, resend_api_key="re_test_key"),
        database,
        auth_store,
        transport=httpx.MockTransport(handler),
    )

    with TestClient(app) as client:
        response = client.post("/login/email", data={"email": EMAIL}, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "/auth/verify-request"
        assert "Check your email" in client.get("/auth/verify-request").text

        link = next(line for line in sent[0]["text"].splitlines() if line.startswith("http"))
        callback = client.get(link, follow_redirects=False)
        assert callback.status_code == 303
        assert callback.headers["location"] == "/dashboard"
        assert client.get("/dashboard", follow_redirects=False).status_code == 200

    user = database.get_user_by_email(EMAIL)
    assert user is not None
    assert user.email_verified is not None


def test_invalid_email_link_returns_to_login(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    with TestClient(_app(settings, database, auth_store)) as client:
        response = client.get(
            "/auth/callback/resend",
            params={"token": "forged", "email": EMAIL},
            follow_redirects=False,
        )
        assert response.headers["location"] == "/login"
        assert "The sign-in link is invalid or has expired." in client.get("/login").text


def test_google_sign_in_flow(settings: Settings, database: Database, auth_store: AuthStore) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={"access_token": "google-access-token", "expires_in": 3600})
        return httpx.Response(
            200,
            json={"sub": "google-123", "email": "g@acme-dashboard.com", "name": "G User", "email_verified": True},
        )

    app = _app(
        replace(settings, google_client_id="client-id", google_client_secret="client-secret"),
        database,
        auth_store,
        transport=httpx.MockTransport(handler),
    )

    with TestClient(app) as client:
        start = client.get("/auth/signin/google", follow_redirects=False)
        assert start.status_code == 303
        location = urlsplit(start.headers["location"])
        assert location.netloc == "accounts.google.com"
        state = parse_qs(location.query)["state"][0]

        callback = client.get(
            "/auth/callback/google",
            params={"code": "auth-code", "state": state},
            follow_redirects=False,
        )
        assert callback.status_code == 303
        assert callback.headers["location"] == "/dashboard"
        assert "G User" in client.get("/dashboard").text


def test_google_callback_with_wrong_state_is_rejected(
    settings: Settings,
    database: Database,
    auth_store: AuthStore,
) -> None:
    app = _app(
        replace(settings, google_client_id="client-id", google_client_secret="client-secret"),
        database,
        auth_store,
    )

    with TestClient(app) as client:
        client.get("/auth/signin/google", follow_redirects=False)
        callback = client.get(
            "/auth/callback/google",
            params={"code": "auth-code", "state": "tampered"},
            follow_redirects=False,
        )
        assert callback.headers["location"] == "/login"
        assert "Google sign-in failed. Please try again." in client.get("/login").text


def test_google_sign_in_unavailable_without_configuration(
    settings: Settings,
    database: Database,
    auth_store: AuthStore,
) -> None:
    with TestClient(_app(settings, database, auth_store)) as client:
        response = client.get("/auth/signin/google", follow_redirects=False)
        assert response.headers["location"] == "/login"
        assert "Google sign-in is not available." in client.get("/login").text
