"""Form schemas and the field-error flattening used by every form handler.

Schemas are pydantic models. Validation never stops at the first failing
field: :func:`validate_form` returns either the parsed model or a mapping of
field name to every message collected for it. Field names in that mapping are
the form input names (``customerId``, ``confirmPassword``), not the Python
attribute names.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar, Dict, Generic, List, Literal, Mapping, Optional, Pattern, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 8

# Keeps the stored cent value well inside SQLite's 64-bit INTEGER.
MAX_INVOICE_AMOUNT = Decimal("1000000000")

PASSWORD_RULES: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
    (re.compile(r"[^a-zA-Z0-9]"), "Password must contain at least one special character"),
)

_CENT = Decimal("0.01")

PASSWORD_MISMATCH = "Passwords do not match"


def password_violations(value: str) -> List[str]:
    """Return every password rule ``value`` breaks, in declaration order."""

    violations: List[str] = []
    if len(value) < PASSWORD_MIN_LENGTH:
        violations.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    for pattern, message in PASSWORD_RULES:
        if not pattern.search(value):
            violations.append(message)
    return violations


def _rule_error(violations: List[str]) -> PydanticCustomError:
    return PydanticCustomError(
        "password_rules",
        "Password does not meet the complexity requirements",
        {"violations": violations},
    )


class FormSchema(BaseModel):
    """Base class for submitted forms.

    ``field_messages`` replaces pydantic's built-in messages for a field with
    one user-facing sentence.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    field_messages: ClassVar[Dict[str, str]] = {}

    @classmethod
    def related_field_errors(cls, data: Mapping[str, object]) -> Dict[str, List[str]]:
        """Errors that compare raw fields, reported even when a field failed."""

        return {}


class InvoiceSchema(FormSchema):
    customer_id: str = Field(alias="customerId", min_length=1)
    amount: Decimal
    status: Literal["pending", "paid"]

    field_messages: ClassVar[Dict[str, str]] = {
        "customerId": "Please select a customer.",
        "amount": "Please enter an amount greater than $0.",
        "status": "Please select an invoice status.",
    }

    @field_validator("customer_id", mode="before")
    @classmethod
    def _missing_customer(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: object) -> object:
        # Browsers submit an empty number input as "", which counts as zero.
        if value is None:
            return Decimal(0)
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or Decimal(0)
        return value

    @field_validator("amount")
    @classmethod
    def _bounded_amount(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise PydanticCustomError("greater_than", "Please enter an amount greater than $0.")
        if value > MAX_INVOICE_AMOUNT:
            raise PydanticCustomError(
                "less_than_equal",
                "Amount is too large",
                {"violations": [f"Please enter an amount no greater than ${MAX_INVOICE_AMOUNT:,}."]},
            )
        value = value.quantize(_CENT, rounding=ROUND_HALF_UP)
        if value <= 0:
            raise PydanticCustomError("greater_than", "Please enter an amount greater than $0.")
        return value

    @property
    def amount_in_cents(self) -> int:
        # ``amount`` is already rounded to the cent by validation.
        return int(self.amount.scaleb(2))


class RegistrationSchema(FormSchema):
    username: str
    email: EmailStr
    password: str
    confirm_password: str = Field(alias="confirmPassword")

    field_messages: ClassVar[Dict[str, str]] = {
        "email": "Invalid email address",
    }

    @field_validator("username", "email", "password", "confirm_password", mode="before")
    @classmethod
    def _missing_as_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("username")
    @classmethod
    def _username_length(cls, value: str) -> str:
        if len(value) < USERNAME_MIN_LENGTH:
            raise PydanticCustomError(
                "string_too_short",
                "Username must be at least {min_length} characters long",
                {"min_length": USERNAME_MIN_LENGTH},
            )
        if len(value) > USERNAME_MAX_LENGTH:
            raise PydanticCustomError(
                "string_too_long",
                "Username cannot exceed {max_length} characters",
                {"max_length": USERNAME_MAX_LENGTH},
            )
        return value

    @field_validator("password")
    @classmethod
    def _password_rules(cls, value: str) -> str:
        violations = password_violations(value)
        if violations:
            raise _rule_error(violations)
        return value

    @field_validator("confirm_password")
    @classmethod
    def _confirmation_matches(cls, value: str, info: ValidationInfo) -> str:
        violations = password_violations(value)
        if violations:
            raise _rule_error(violations)
        password = info.data.get("password")
        if password is not None and password != value:
            raise PydanticCustomError("password_mismatch", PASSWORD_MISMATCH)
        return value

    @classmethod
    def related_field_errors(cls, data: Mapping[str, object]) -> Dict[str, List[str]]:
        # Field validators only see a password that passed its own rules.
        if (data.get("password") or "") != (data.get("confirmPassword") or ""):
            return {"confirmPassword": [PASSWORD_MISMATCH]}
        return {}


class SignInSchema(FormSchema):
    email: EmailStr
    password: str = Field(min_length=1)

    field_messages: ClassVar[Dict[str, str]] = {
        "email": "Invalid email",
        "password": "Password is required",
    }


class EmailSchema(FormSchema):
    email: EmailStr

    field_messages: ClassVar[Dict[str, str]] = {"email": "Invalid email"}


S = TypeVar("S", bound=FormSchema)


@dataclass(frozen=True)
class ValidationResult(Generic[S]):
    """Either the parsed schema (``value``) or the collected field errors."""

    value: Optional[S] = None
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors


def flatten_errors(schema: Type[FormSchema], exc: ValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        location = error.get("loc") or ()
        name = str(location[0]) if location else "__root__"
        context = error.get("ctx") or {}
        violations = context.get("violations")
        if violations:
            messages = [str(message) for message in violations]
        elif name in schema.field_messages:
            messages = [schema.field_messages[name]]
        else:
            messages = [str(error.get("msg", "Invalid value"))]
        bucket = errors.setdefault(name, [])
        for message in messages:
            if message not in bucket:
                bucket.append(message)
    return errors


def validate_form(schema: Type[S], data: Mapping[str, object]) -> ValidationResult[S]:
    """Validate raw form values against ``schema`` without raising."""

    try:
        parsed = schema.model_validate(dict(data))
    except ValidationError as exc:
        errors = flatten_errors(schema, exc)
        for name, messages in schema.related_field_errors(data).items():
            bucket = errors.setdefault(name, [])
            bucket.extend(message for message in messages if message not in bucket)
        return ValidationResult(errors=errors)
    return ValidationResult(value=parsed)


__all__ = [
    "EmailSchema",
    "FormSchema",
    "InvoiceSchema",
    "MAX_INVOICE_AMOUNT",
    "PASSWORD_RULES",
    "RegistrationSchema",
    "SignInSchema",
    "ValidationResult",
    "flatten_errors",
    "password_violations",
    "validate_form",
]
