"""Browser-facing routes for the Acme invoice dashboard."""
from __future__ import annotations

import logging
import secrets
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from .actions import AuthenticateState, DashboardActions, FormState, INVOICES_PATH, Outcome
from .auth import (
    SIGN_IN_PAGE,
    Auth,
    AuthDecision,
    AuthError,
    ConfigurationError,
    OAuthAccountNotLinked,
    OAuthCallbackError,
    VerificationError,
    authorized,
    is_exempt,
)
from .auth_store import AuthStore
from .cache import ViewCache
from .config import Settings, load_settings
from .database import Database
from .formatting import format_currency, format_date, generate_pagination, generate_y_axis
from .models import User


BASE_DIR = Path(__file__).resolve().parent
TEMPLATE_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

SESSION_COOKIE_NAME = "acme_session"

logger = logging.getLogger("acme.dashboard.web")


def _template_environment() -> Jinja2Templates:
    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.filters["currency"] = format_currency
    templates.env.filters["localdate"] = format_date
    templates.env.globals["now"] = lambda: datetime.now(timezone.utc)
    return templates


def create_app(
    *,
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    auth_store: Optional[AuthStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    today: Optional[Callable[[], date]] = None,
    initialize_database: bool = True,
) -> FastAPI:
    """Create the dashboard web application."""

    if settings is None:
        settings = load_settings()
    if not settings.secret:
        raise RuntimeError("AUTH_SECRET must be configured to use the dashboard")

    if database is None:
        database = Database(settings.database_path)
    if auth_store is None:
        auth_store = AuthStore(settings.auth_database_path, secret=settings.secret)
    if initialize_database:
        database.initialize()
        auth_store.initialize()
        purged = auth_store.purge_expired_sessions()
        if purged:
            logger.info("Removed %d expired sessions", purged)

    cache = ViewCache()
    auth = Auth(database, auth_store, settings, transport=transport)
    actions = DashboardActions(database, cache, auth, today=today)

    app = FastAPI(
        title="Acme Dashboard",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.auth = auth
    app.state.cache = cache
    app.state.actions = actions

    if not settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    templates = _template_environment()
    templates.env.globals["google_enabled"] = settings.google_enabled
    templates.env.globals["email_enabled"] = settings.email_enabled

    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    @app.middleware("http")
    async def authorize_request(request: Request, call_next):
        user = auth.resolve_session(request.session.get("session_token"))
        if user is None and "session_token" in request.session:
            request.session.pop("session_token", None)
        request.state.user = user

        path = request.url.path
        if not is_exempt(path):
            decision = authorized(user is not None, path)
            if decision is AuthDecision.DENY:
                target = f"{SIGN_IN_PAGE}?{urlencode({'redirectTo': path})}"
                return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)
            if decision is AuthDecision.REDIRECT_TO_DASHBOARD:
                return RedirectResponse("/dashboard", status_code=status.HTTP_303_SEE_OTHER)

        return await call_next(request)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret,
        session_cookie=SESSION_COOKIE_NAME,
        https_only=settings.secure_cookies,
        same_site="lax",
        max_age=auth.sessions.cookie_max_age,
    )

    def _flash(request: Request, message: str, *, category: str = "info") -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        messages.append({"message": message, "category": category})
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    def _current_user(request: Request) -> Optional[User]:
        return getattr(request.state, "user", None)

    def _start_session(request: Request, session_token: str) -> None:
        request.session.clear()
        request.session["session_token"] = session_token

    def _redirect(target: str) -> RedirectResponse:
        return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)

    def _login_failed(request: Request, message: str) -> RedirectResponse:
        request.session["login_error"] = message
        return _redirect(SIGN_IN_PAGE)

    def _page(
        request: Request,
        template: str,
        context: Dict[str, Any],
        *,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        base = {
            "user": _current_user(request),
            "messages": _consume_flash(request),
            "path": request.url.path,
        }
        base.update(context)
        return templates.TemplateResponse(request, template, base, status_code=status_code)

    # ------------------------------------------------------------------
    # Public pages
    # ------------------------------------------------------------------
    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse, name="home")
    async def home(request: Request):
        return _page(request, "home.html", {})

    @app.get("/login", response_class=HTMLResponse, name="show_login")
    async def login_form(request: Request):
        error = request.session.pop("login_error", None)
        email = request.session.pop("login_email", "")
        return _page(
            request,
            "login.html",
            {
                "error": error,
                "email": email,
                "redirect_to": request.query_params.get("redirectTo", ""),
            },
        )

    @app.post("/login", name="process_login")
    async def process_login(request: Request):
        form = await request.form()
        state: AuthenticateState = await actions.authenticate(None, form)
        if state.session_token:
            _start_session(request, state.session_token)
            return _redirect(state.redirect_to or "/dashboard")

        request.session["login_email"] = state.email or ""
        return _login_failed(request, state.message or "Invalid credentials")

    @app.post("/login/email", name="email_sign_in")
    async def email_sign_in(request: Request):
        form = await request.form()
        state = await actions.email_sign_in(form)
        if state.outcome is Outcome.SUCCESS and state.redirect_to:
            return _redirect(state.redirect_to)
        message = state.message
        if message is None:
            message = next(iter(state.field_errors("email")), "Invalid email")
        return _login_failed(request, message)

    @app.api_route("/logout", methods=["GET", "POST"], name="logout")
    async def logout(request: Request):
        auth.sign_out(request.session.get("session_token"))
        request.session.clear()
        return _redirect(SIGN_IN_PAGE)

    @app.get("/register", response_class=HTMLResponse, name="show_register")
    async def register_form(request: Request):
        return _page(request, "register.html", {"state": FormState(), "values": {}})

    @app.post("/register", name="process_register")
    async def process_register(request: Request):
        form = await request.form()
        state = actions.add_user(FormState(), form)
        if state.outcome is Outcome.SUCCESS and state.redirect_to:
            _flash(request, "Account created. Sign in to continue.", category="success")
            return _redirect(state.redirect_to)
        return _page(
            request,
            "register.html",
            {
                "state": state,
                "values": {"username": form.get("username", ""), "email": form.get("email", "")},
            },
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    # ------------------------------------------------------------------
    # Identity provider callbacks
    # ------------------------------------------------------------------
    @app.get("/auth/verify-request", response_class=HTMLResponse, name="verify_request")
    async def verify_request(request: Request):
        return _page(request, "verify_request.html", {})

    @app.get("/auth/callback/resend", name="email_callback")
    async def email_callback(request: Request, token: str = "", email: str = ""):
        try:
            session_token = auth.verify_magic_link(email, token)
        except VerificationError:
            return _login_failed(request, "The sign-in link is invalid or has expired.")
        _start_session(request, session_token)
        return _redirect("/dashboard")

    @app.get("/auth/signin/google", name="google_sign_in")
    async def google_sign_in(request: Request):
        state = secrets.token_urlsafe(16)
        try:
            url = auth.google_authorization_url(state)
        except ConfigurationError:
            return _login_failed(request, "Google sign-in is not available.")
        request.session["oauth_state"] = state
        return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)

    @app.get("/auth/callback/google", name="google_callback")
    async def google_callback(
        request: Request,
        code: str = "",
        state: str = "",
        error: str = "",
    ):
        expected_state = request.session.pop("oauth_state", None)
        try:
            if error:
                raise OAuthCallbackError(f"Google returned an error: {error}")
            if not code or not expected_state or not secrets.compare_digest(state, expected_state):
                raise OAuthCallbackError("OAuth state mismatch")
            session_token = await auth.complete_google_sign_in(code)
        except OAuthAccountNotLinked:
            return _login_failed(
                request,
                "To confirm your identity, sign in with the same account you used originally.",
            )
        except AuthError as exc:
            logger.warning("Google sign-in failed (%s): %s", exc.type, exc)
            return _login_failed(request, "Google sign-in failed. Please try again.")

        _start_session(request, session_token)
        return _redirect("/dashboard")

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    def _load_overview() -> Dict[str, Any]:
        revenue = database.fetch_revenue()
        y_axis, top_label = generate_y_axis(revenue)
        return {
            "cards": database.fetch_card_data(),
            "revenue": revenue,
            "y_axis": y_axis,
            "top_label": top_label,
            "latest_invoices": database.fetch_latest_invoices(),
        }

    @app.get("/dashboard", response_class=HTMLResponse, name="dashboard")
    async def dashboard(request: Request):
        overview = cache.get_or_load("/dashboard", "overview", _load_overview)
        return _page(request, "dashboard/overview.html", overview)

    @app.get("/dashboard/invoices", response_class=HTMLResponse, name="invoices")
    async def invoices(request: Request, query: str = "", page: int = 1):
        current_page = max(page, 1)

        def _load() -> Dict[str, Any]:
            return {
                "invoices": database.fetch_filtered_invoices(query, current_page),
                "total_pages": database.fetch_invoices_pages(query),
            }

        listing = cache.get_or_load(INVOICES_PATH, (query, current_page), _load)
        pagination = [
            {
                "label": item,
                "href": None
                if item == "..."
                else f"{INVOICES_PATH}?{urlencode({'query': query, 'page': item})}",
                "active": item == current_page,
            }
            for item in generate_pagination(current_page, listing["total_pages"])
        ]
        return _page(
            request,
            "dashboard/invoices.html",
            {
                "invoices": listing["invoices"],
                "total_pages": listing["total_pages"],
                "current_page": current_page,
                "query": query,
                "pagination": pagination,
            },
        )

    def _invoice_form_page(
        request: Request,
        *,
        action: str,
        title: str,
        state: FormState,
        values: Dict[str, Any],
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return _page(
            request,
            "dashboard/invoice_form.html",
            {
                "title": title,
                "action": action,
                "customers": database.fetch_customers(),
                "state": state,
                "values": values,
            },
            status_code=status_code,
        )

    @app.get("/dashboard/invoices/create", response_class=HTMLResponse, name="create_invoice_form")
    async def create_invoice_form(request: Request):
        return _invoice_form_page(
            request,
            action="/dashboard/invoices/create",
            title="Create Invoice",
            state=FormState(),
            values={},
        )

    @app.post("/dashboard/invoices/create", name="create_invoice")
    async def create_invoice(request: Request):
        form = await request.form()
        state = actions.create_invoice(FormState(), form)
        if state.outcome is Outcome.SUCCESS and state.redirect_to:
            _flash(request, "Invoice created.", category="success")
            return _redirect(state.redirect_to)
        return _invoice_form_page(
            request,
            action="/dashboard/invoices/create",
            title="Create Invoice",
            state=state,
            values=dict(form),
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.get("/dashboard/invoices/{invoice_id}/edit", response_class=HTMLResponse, name="edit_invoice_form")
    async def edit_invoice_form(request: Request, invoice_id: str):
        invoice = database.fetch_invoice_by_id(invoice_id)
        if invoice is None:
            return _page(
                request,
                "not_found.html",
                {"detail": "Could not find the requested invoice."},
                status_code=status.HTTP_404_NOT_FOUND,
            )
        return _invoice_form_page(
            request,
            action=f"/dashboard/invoices/{invoice_id}/edit",
            title="Edit Invoice",
            state=FormState(),
            values={
                "customerId": invoice.customer_id,
                "amount": f"{invoice.amount:.2f}",
                "status": invoice.status,
            },
        )

    @app.post("/dashboard/invoices/{invoice_id}/edit", name="update_invoice")
    async def update_invoice(request: Request, invoice_id: str):
        form = await request.form()
        state = actions.update_invoice(invoice_id, FormState(), form)
        if state.outcome is Outcome.SUCCESS and state.redirect_to:
            _flash(request, "Invoice updated.", category="success")
            return _redirect(state.redirect_to)
        return _invoice_form_page(
            request,
            action=f"/dashboard/invoices/{invoice_id}/edit",
            title="Edit Invoice",
            state=state,
            values=dict(form),
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.post("/dashboard/invoices/{invoice_id}/delete", name="delete_invoice")
    async def delete_invoice(request: Request, invoice_id: str):
        error = actions.delete_invoice(invoice_id)
        if error is not None:
            _flash(request, error, category="error")
        else:
            _flash(request, "Invoice deleted.", category="success")
        return _redirect(INVOICES_PATH)

    @app.get("/dashboard/customers", response_class=HTMLResponse, name="customers")
    async def customers(request: Request, query: str = ""):
        return _page(
            request,
            "dashboard/customers.html",
            {"customers": database.fetch_filtered_customers(query), "query": query},
        )

    return app


__all__ = ["create_app"]
