"""Identity providers, session sign-in and the route authorization predicate."""

from __future__ import annotations

import enum
import hashlib
import logging
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Mapping, Optional

import httpx

from .auth_store import AuthStore
from .config import Settings
from .database import Database, verify_password
from .models import User
from .sessions import SessionManager
from .validation import EmailSchema, SignInSchema, validate_form

logger = logging.getLogger("acme.dashboard.auth")

PROTECTED_PREFIX = "/dashboard"
SIGN_IN_PAGE = "/login"
EXEMPT_PREFIXES = ("/static", "/auth/", "/healthz", "/logout")

VERIFICATION_TOKEN_TTL = timedelta(hours=24)
HTTP_TIMEOUT = 10.0


class AuthError(Exception):
    """Base class for failures reported by the identity layer."""

    type = "AuthError"


class CredentialsSignin(AuthError):
    type = "CredentialsSignin"


class CallbackRouteError(AuthError):
    type = "CallbackRouteError"


class OAuthCallbackError(AuthError):
    type = "OAuthCallbackError"


class OAuthAccountNotLinked(AuthError):
    type = "OAuthAccountNotLinked"


class EmailSignInError(AuthError):
    type = "EmailSignInError"


class VerificationError(AuthError):
    type = "Verification"


class ConfigurationError(AuthError):
    type = "Configuration"


class AuthDecision(enum.Enum):
    ALLOW = "allow"
    DENY = "deny"
    REDIRECT_TO_DASHBOARD = "redirect"


def is_protected(path: str) -> bool:
    return path == PROTECTED_PREFIX or path.startswith(PROTECTED_PREFIX + "/")


def is_exempt(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in EXEMPT_PREFIXES)


def authorized(is_logged_in: bool, path: str) -> AuthDecision:
    """Decide whether a request for ``path`` may proceed.

    Anonymous visitors are kept out of the dashboard; signed-in users who land
    on any other entry page are sent to the dashboard.
    """

    if is_protected(path):
        return AuthDecision.ALLOW if is_logged_in else AuthDecision.DENY
    if is_logged_in:
        return AuthDecision.REDIRECT_TO_DASHBOARD
    return AuthDecision.ALLOW


def _hash_verification_token(token: str, secret: str) -> str:
    return hashlib.sha256(f"{token}{secret}".encode("utf-8")).hexdigest()


def _display_name(email: str) -> str:
    return email.split("@", 1)[0] or email


@dataclass(frozen=True)
class GoogleProfile:
    sub: str
    email: str
    name: str
    email_verified: bool
    picture: Optional[str] = None


class CredentialsProvider:
    """Email/password sign-in checked against the stored bcrypt hash."""

    id = "credentials"

    def __init__(self, lookup: Callable[[str], Optional[User]]) -> None:
        self._lookup = lookup

    def authorize(self, credentials: Mapping[str, object]) -> Optional[User]:
        result = validate_form(
            SignInSchema,
            {"email": credentials.get("email"), "password": credentials.get("password")},
        )
        if result.ok and result.value is not None:
            user = self._lookup(result.value.email)
            if user is not None and verify_password(result.value.password, user.password):
                return user

        logger.info("Invalid credentials")
        return None


class GoogleProvider:
    """OAuth 2 authorization-code flow against Google's endpoints."""

    id = "google"

    AUTHORIZATION_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
    SCOPE = "openid email profile"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._transport = transport

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        url = httpx.URL(
            self.AUTHORIZATION_URL,
            params={
                "client_id": self._client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": self.SCOPE,
                "state": state,
            },
        )
        return str(url)

    async def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, object]:
        async with httpx.AsyncClient(transport=self._transport, timeout=HTTP_TIMEOUT) as client:
            try:
                response = await client.post(
                    self.TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                        "redirect_uri": redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as exc:
                raise OAuthCallbackError(f"Failed to contact Google: {exc}") from exc

        if response.status_code != 200:
            raise OAuthCallbackError(
                f"Google rejected the authorization code ({response.status_code})"
            )
        try:
            tokens = response.json()
        except ValueError as exc:
            raise OAuthCallbackError("Google returned an unexpected token response") from exc
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise OAuthCallbackError("Google token response did not include an access token")
        return tokens

    async def fetch_profile(self, access_token: str) -> GoogleProfile:
        async with httpx.AsyncClient(transport=self._transport, timeout=HTTP_TIMEOUT) as client:
            try:
                response = await client.get(
                    self.USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            except httpx.HTTPError as exc:
                raise OAuthCallbackError(f"Failed to contact Google: {exc}") from exc

        if response.status_code != 200:
            raise OAuthCallbackError(f"Google userinfo request failed ({response.status_code})")
        try:
            payload = response.json()
        except ValueError as exc:
            raise OAuthCallbackError("Google returned an unexpected profile response") from exc

        sub = payload.get("sub")
        email = payload.get("email")
        if not sub or not email:
            raise OAuthCallbackError("Google profile is missing the account id or email")
        return GoogleProfile(
            sub=str(sub),
            email=str(email).lower(),
            name=str(payload.get("name") or _display_name(str(email))),
            email_verified=bool(payload.get("email_verified")),
            picture=payload.get("picture"),
        )


class ResendProvider:
    """Delivers sign-in links through the Resend email API."""

    id = "resend"

    API_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._transport = transport

    async def send_verification_request(self, identifier: str, url: str) -> None:
        message = {
            "from": self._sender,
            "to": identifier,
            "subject": "Sign in to Acme",
            "html": (
                "<p>Click the link below to sign in to the Acme dashboard.</p>"
                f'<p><a href="{url}">Sign in</a></p>'
                "<p>If you did not request this email you can safely ignore it.</p>"
            ),
            "text": f"Sign in to Acme\n{url}\n",
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=HTTP_TIMEOUT) as client:
            try:
                response = await client.post(
                    self.API_URL,
                    json=message,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
            except httpx.HTTPError as exc:
                raise EmailSignInError(f"Failed to contact Resend: {exc}") from exc

        if response.is_error:
            raise EmailSignInError(
                f"Resend error ({response.status_code}): {response.text.strip()}"
            )


class Auth:
    """Sign users in through the configured providers and manage their sessions."""

    def __init__(
        self,
        database: Database,
        store: AuthStore,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._database = database
        self._store = store
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.sessions = SessionManager(store, ttl=settings.session_max_age)
        self.credentials = CredentialsProvider(self.get_user)
        self.google: Optional[GoogleProvider] = None
        self.resend: Optional[ResendProvider] = None
        if settings.google_enabled:
            self.google = GoogleProvider(
                settings.google_client_id or "",
                settings.google_client_secret or "",
                transport=transport,
            )
        if settings.email_enabled:
            self.resend = ResendProvider(
                settings.resend_api_key or "",
                settings.resend_from,
                transport=transport,
            )

    @property
    def settings(self) -> Settings:
        return self._settings

    # ------------------------------------------------------------------
    # Lookup callbacks
    # ------------------------------------------------------------------
    def get_user(self, email: str) -> Optional[User]:
        """Return the user for ``email``; lookup failures count as not found."""

        try:
            return self._database.get_user_by_email(email)
        except sqlite3.Error:
            logger.exception("Failed to fetch user")
            return None

    def resolve_session(self, session_token: Optional[str]) -> Optional[User]:
        if not session_token:
            return None
        user_id = self.sessions.resolve(session_token)
        if user_id is None:
            return None
        return self._database.get_user(user_id)

    # ------------------------------------------------------------------
    # Sign in / out
    # ------------------------------------------------------------------
    async def sign_in(self, provider_id: str, form: Mapping[str, object]) -> Optional[str]:
        """Start a sign-in with ``provider_id``.

        Credentials sign-in returns the new session token. Email sign-in sends
        the link and returns ``None``; the session starts when the link is used.
        """

        if provider_id == CredentialsProvider.id:
            return self._sign_in_with_credentials(form)
        if provider_id == ResendProvider.id:
            email = form.get("email")
            await self.send_magic_link(str(email) if email is not None else "")
            return None
        raise ConfigurationError(f"Unsupported sign-in provider '{provider_id}'")

    def _sign_in_with_credentials(self, form: Mapping[str, object]) -> str:
        user = self.credentials.authorize(form)
        if user is None:
            raise CredentialsSignin("Invalid credentials")
        try:
            token = self.sessions.create(user.id)
        except sqlite3.Error as exc:
            raise CallbackRouteError(f"Failed to create session: {exc}") from exc
        logger.info("User %s signed in with credentials", user.id)
        return token

    def sign_out(self, session_token: Optional[str]) -> None:
        if session_token:
            self.sessions.destroy(session_token)

    # ------------------------------------------------------------------
    # Email links
    # ------------------------------------------------------------------
    def _require_secret(self) -> str:
        if not self._settings.secret:
            raise ConfigurationError("AUTH_SECRET must be configured")
        return self._settings.secret

    async def send_magic_link(self, email: str) -> None:
        if self.resend is None:
            raise ConfigurationError("Email sign-in is not configured")

        result = validate_form(EmailSchema, {"email": email})
        if not result.ok or result.value is None:
            raise EmailSignInError("Invalid email")
        identifier = result.value.email.lower()

        token = secrets.token_urlsafe(32)
        expires = self._clock() + VERIFICATION_TOKEN_TTL
        self._store.create_verification_token(
            identifier,
            _hash_verification_token(token, self._require_secret()),
            expires,
        )

        url = httpx.URL(
            f"{self._settings.public_url}/auth/callback/resend",
            params={"token": token, "email": identifier},
        )
        await self.resend.send_verification_request(identifier, str(url))
        logger.info("Sent sign-in link to %s", identifier)

    def verify_magic_link(self, email: str, token: str) -> str:
        if not email or not token:
            raise VerificationError("Missing verification token")

        identifier = email.strip().lower()
        expires = self._store.use_verification_token(
            identifier,
            _hash_verification_token(token, self._require_secret()),
        )
        if expires is None or expires <= self._clock():
            raise VerificationError("The sign-in link is no longer valid")

        user = self.get_user(identifier)
        if user is None:
            user = self._database.insert_user(
                _display_name(identifier),
                identifier,
                None,
                email_verified=self._clock(),
            )
        elif user.email_verified is None:
            self._database.mark_email_verified(user.id, self._clock())

        logger.info("User %s signed in with an email link", user.id)
        return self.sessions.create(user.id)

    # ------------------------------------------------------------------
    # Google
    # ------------------------------------------------------------------
    def _require_google(self) -> GoogleProvider:
        if self.google is None:
            raise ConfigurationError("Google sign-in is not configured")
        return self.google

    def google_redirect_uri(self) -> str:
        return f"{self._settings.public_url}/auth/callback/google"

    def google_authorization_url(self, state: str) -> str:
        return self._require_google().authorization_url(self.google_redirect_uri(), state)

    async def complete_google_sign_in(self, code: str) -> str:
        provider = self._require_google()
        tokens = await provider.exchange_code(code, self.google_redirect_uri())
        profile = await provider.fetch_profile(str(tokens["access_token"]))

        account = self._store.get_account(provider.id, profile.sub)
        if account is not None:
            user = self._database.get_user(account.user_id)
            if user is None:
                raise OAuthCallbackError("Linked account refers to a missing user")
        else:
            if self.get_user(profile.email) is not None:
                raise OAuthAccountNotLinked(
                    "Another account already uses this email address"
                )
            user = self._database.insert_user(
                profile.name,
                profile.email,
                None,
                email_verified=self._clock() if profile.email_verified else None,
            )
            expires_in = tokens.get("expires_in")
            self._store.link_account(
                user.id,
                provider=provider.id,
                provider_account_id=profile.sub,
                access_token=str(tokens["access_token"]),
                refresh_token=tokens.get("refresh_token"),  # type: ignore[arg-type]
                id_token=tokens.get("id_token"),  # type: ignore[arg-type]
                expires_at=int(self._clock().timestamp()) + int(expires_in) if expires_in else None,  # type: ignore[arg-type]
                scope=tokens.get("scope"),  # type: ignore[arg-type]
                token_type=tokens.get("token_type"),  # type: ignore[arg-type]
            )

        logger.info("User %s signed in with Google", user.id)
        return self.sessions.create(user.id)


__all__ = [
    "Auth",
    "AuthDecision",
    "AuthError",
    "CallbackRouteError",
    "ConfigurationError",
    "CredentialsProvider",
    "CredentialsSignin",
    "EmailSignInError",
    "GoogleProfile",
    "GoogleProvider",
    "OAuthAccountNotLinked",
    "OAuthCallbackError",
    "ResendProvider",
    "VerificationError",
    "authorized",
    "is_exempt",
    "is_protected",
]
