"""Server-side form handlers for invoices, registration and sign-in.

Every handler takes the previous form state plus the submitted values and
returns the next state instead of raising. A state with ``redirect_to`` set
means the mutation succeeded and its side effects have run.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

from .auth import Auth, AuthError, CredentialsSignin, ConfigurationError, EmailSignInError
from .cache import ViewCache
from .database import Database, hash_password
from .validation import EmailSchema, InvoiceSchema, RegistrationSchema, validate_form

logger = logging.getLogger("acme.dashboard.actions")

OVERVIEW_PATH = "/dashboard"
INVOICES_PATH = "/dashboard/invoices"
LOGIN_PATH = "/login"
VERIFY_REQUEST_PATH = "/auth/verify-request"


class Outcome(enum.Enum):
    SUCCESS = "success"
    INVALID = "invalid"
    FAILED = "failed"


@dataclass(frozen=True)
class FormState:
    """Result of a form submission handed back to the page that rendered the form."""

    outcome: Optional[Outcome] = None
    errors: Dict[str, List[str]] = field(default_factory=dict)
    message: Optional[str] = None
    redirect_to: Optional[str] = None

    @classmethod
    def invalid(cls, errors: Dict[str, List[str]], message: Optional[str] = None) -> "FormState":
        return cls(outcome=Outcome.INVALID, errors=errors, message=message)

    @classmethod
    def failed(cls, message: str) -> "FormState":
        return cls(outcome=Outcome.FAILED, message=message)

    @classmethod
    def success(cls, redirect_to: str) -> "FormState":
        return cls(outcome=Outcome.SUCCESS, redirect_to=redirect_to)

    def field_errors(self, name: str) -> List[str]:
        return self.errors.get(name, [])


@dataclass(frozen=True)
class AuthenticateState:
    message: Optional[str] = None
    email: Optional[str] = None
    session_token: Optional[str] = None
    redirect_to: Optional[str] = None


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _safe_redirect(target: object, default: str) -> str:
    if isinstance(target, str) and target.startswith("/") and not target.startswith("//"):
        return target
    return default


def _invoice_fields(form: Mapping[str, object]) -> Dict[str, object]:
    return {
        "customerId": form.get("customerId"),
        "amount": form.get("amount"),
        "status": form.get("status"),
    }


class DashboardActions:
    """Mutation handlers bound to the dashboard's storage, cache and auth."""

    def __init__(
        self,
        database: Database,
        cache: ViewCache,
        auth: Auth,
        *,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._database = database
        self._cache = cache
        self._auth = auth
        self._today = today or _utc_today

    def _revalidate_invoices(self) -> None:
        self._cache.revalidate(INVOICES_PATH)
        self._cache.revalidate(OVERVIEW_PATH)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------
    def create_invoice(self, previous_state: FormState, form: Mapping[str, object]) -> FormState:
        result = validate_form(InvoiceSchema, _invoice_fields(form))
        if not result.ok or result.value is None:
            return FormState.invalid(result.errors, "Missing Fields. Failed to Create Invoice.")

        invoice = result.value
        amount_in_cents = invoice.amount_in_cents
        issued_on = self._today().isoformat()

        try:
            invoice_id = self._database.create_invoice(
                invoice.customer_id,
                amount_in_cents,
                invoice.status,
                issued_on,
            )
        except sqlite3.Error as exc:
            logger.warning("Failed to create invoice: %s", exc)
            return FormState.failed(f"Failed to Create Invoice. Database error: {exc}")

        logger.info("Created invoice %s for customer %s", invoice_id, invoice.customer_id)
        self._revalidate_invoices()
        return FormState.success(INVOICES_PATH)

    def update_invoice(
        self,
        invoice_id: str,
        previous_state: FormState,
        form: Mapping[str, object],
    ) -> FormState:
        result = validate_form(InvoiceSchema, _invoice_fields(form))
        if not result.ok or result.value is None:
            return FormState.invalid(result.errors, "Missing Fields. Failed to Update Invoice.")

        invoice = result.value

        try:
            self._database.update_invoice(
                invoice_id,
                invoice.customer_id,
                invoice.amount_in_cents,
                invoice.status,
            )
        except sqlite3.Error as exc:
            logger.warning("Failed to update invoice %s: %s", invoice_id, exc)
            return FormState.failed(f"Failed to Update Invoice. Database error: {exc}")

        logger.info("Updated invoice %s", invoice_id)
        self._revalidate_invoices()
        return FormState.success(INVOICES_PATH)

    def delete_invoice(self, invoice_id: str) -> Optional[str]:
        """Delete an invoice; returns an error message on failure, else ``None``."""

        try:
            self._database.delete_invoice(invoice_id)
        except sqlite3.Error as exc:
            logger.warning("Failed to delete invoice %s: %s", invoice_id, exc)
            return f"Failed to Delete Invoice. Database error: {exc}"

        logger.info("Deleted invoice %s", invoice_id)
        self._revalidate_invoices()
        return None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def authenticate(
        self,
        previous_state: Optional[AuthenticateState],
        form: Mapping[str, object],
    ) -> AuthenticateState:
        try:
            session_token = await self._auth.sign_in("credentials", form)
        except AuthError as exc:
            parsed = validate_form(EmailSchema, {"email": form.get("email")})
            if not parsed.ok or parsed.value is None:
                return AuthenticateState(message="Invalid email")
            user_email = parsed.value.email

            if isinstance(exc, CredentialsSignin):
                return AuthenticateState(message="Invalid credentials", email=user_email)
            logger.warning("Credential sign-in failed (%s): %s", exc.type, exc)
            return AuthenticateState(
                message="Valid credentials, but failed to authenticate",
                email=user_email,
            )

        return AuthenticateState(
            session_token=session_token,
            redirect_to=_safe_redirect(form.get("redirectTo"), OVERVIEW_PATH),
        )

    async def email_sign_in(self, form: Mapping[str, object]) -> FormState:
        parsed = validate_form(EmailSchema, {"email": form.get("email")})
        if not parsed.ok:
            return FormState.invalid(parsed.errors)

        try:
            await self._auth.sign_in("resend", form)
        except (EmailSignInError, ConfigurationError) as exc:
            logger.warning("Email sign-in failed (%s): %s", exc.type, exc)
            return FormState.failed("Failed to send the sign-in link. Please try again later.")

        return FormState.success(VERIFY_REQUEST_PATH)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def add_user(self, previous_state: FormState, form: Mapping[str, object]) -> FormState:
        result = validate_form(
            RegistrationSchema,
            {
                "username": form.get("username"),
                "email": form.get("email"),
                "password": form.get("password"),
                "confirmPassword": form.get("confirmPassword"),
            },
        )
        if not result.ok or result.value is None:
            return FormState.invalid(result.errors)

        registration = result.value
        hashed_password = hash_password(registration.password)

        try:
            user = self._database.insert_user(
                registration.username,
                registration.email,
                hashed_password,
            )
        except sqlite3.Error as exc:
            logger.warning("Failed to insert new user: %s", exc)
            return FormState.failed(f"Failed to insert new user. Database error: {exc}")

        logger.info("Registered user %s", user.id)
        return FormState.success(LOGIN_PATH)


__all__ = [
    "AuthenticateState",
    "DashboardActions",
    "FormState",
    "INVOICES_PATH",
    "Outcome",
]
