from __future__ import annotations

from decimal import Decimal

from acme_dashboard.validation import (
    EmailSchema,
    InvoiceSchema,
    RegistrationSchema,
    SignInSchema,
    password_violations,
    validate_form,
)


STRONG_PASSWORD = "Str0ng!pass"


def _registration(**overrides: object) -> dict:
    data = {
        "username": "newuser",
        "email": "new@acme-dashboard.com",
        "password": STRONG_PASSWORD,
        "confirmPassword": STRONG_PASSWORD,
    }
    data.update(overrides)
    return data


def test_invoice_schema_parses_amount_and_converts_to_cents() -> None:
    result = validate_form(InvoiceSchema, {"customerId": "c1", "amount": "25.50", "status": "pending"})

    assert result.ok
    assert result.value is not None
    assert result.value.customer_id == "c1"
    assert result.value.amount == Decimal("25.50")
    assert result.value.amount_in_cents == 2550


def test_invoice_amount_rounds_half_up_to_cents() -> None:
    result = validate_form(InvoiceSchema, {"customerId": "c1", "amount": "12.345", "status": "paid"})

    assert result.value is not None
    assert result.value.amount_in_cents == 1235


def test_invoice_schema_reports_every_invalid_field() -> None:
    result = validate_form(InvoiceSchema, {"customerId": "", "amount": "0", "status": "unknown"})

    assert not result.ok
    assert result.value is None
    assert result.errors == {
        "customerId": ["Please select a customer."],
        "amount": ["Please enter an amount greater than $0."],
        "status": ["Please select an invoice status."],
    }


def test_invoice_schema_treats_missing_fields_as_invalid() -> None:
    result = validate_form(InvoiceSchema, {"customerId": None, "amount": None, "status": None})

    assert set(result.errors) == {"customerId", "amount", "status"}


def test_invoice_amount_must_be_numeric_and_positive() -> None:
    for amount in ("abc", "-3", "", "NaN"):
        result = validate_form(InvoiceSchema, {"customerId": "c1", "amount": amount, "status": "paid"})
        assert result.errors == {"amount": ["Please enter an amount greater than $0."]}, amount


def test_password_violations_lists_each_broken_rule() -> None:
    assert password_violations("abc") == [
        "Password must be at least 8 characters long",
        "Password must contain at least one uppercase letter",
        "Password must contain at least one number",
        "Password must contain at least one special character",
    ]
    assert password_violations(STRONG_PASSWORD) == []


def test_registration_accepts_valid_submission() -> None:
    result = validate_form(RegistrationSchema, _registration())

    assert result.ok
    assert result.value is not None
    assert result.value.username == "newuser"
    assert result.value.confirm_password == STRONG_PASSWORD


def test_registration_collects_password_rule_messages() -> None:
    result = validate_form(RegistrationSchema, _registration(password="abcdefgh", confirmPassword="abcdefgh"))

    expected = [
        "Password must contain at least one uppercase letter",
        "Password must contain at least one number",
        "Password must contain at least one special character",
    ]
    assert result.errors["password"] == expected
    assert result.errors["confirmPassword"] == expected


def test_registration_reports_mismatch_on_confirmation_field() -> None:
    result = validate_form(RegistrationSchema, _registration(confirmPassword="Str0ng!pasS"))

    assert result.errors == {"confirmPassword": ["Passwords do not match"]}


def test_registration_username_length_and_email() -> None:
    short = validate_form(RegistrationSchema, _registration(username="ab", email="not-an-email"))
    assert short.errors["username"] == ["Username must be at least 3 characters long"]
    assert short.errors["email"] == ["Invalid email address"]

    long = validate_form(RegistrationSchema, _registration(username="x" * 21))
    assert long.errors == {"username": ["Username cannot exceed 20 characters"]}


def test_registration_missing_fields_are_reported_not_raised() -> None:
    result = validate_form(RegistrationSchema, {})

    assert set(result.errors) == {"username", "email", "password", "confirmPassword"}


def test_sign_in_and_email_schemas() -> None:
    missing = validate_form(SignInSchema, {"email": "bad", "password": ""})
    assert missing.errors == {"email": ["Invalid email"], "password": ["Password is required"]}

    assert validate_form(EmailSchema, {"email": "user@acme-dashboard.com"}).ok
    assert validate_form(EmailSchema, {"email": None}).errors == {"email": ["Invalid email"]}


def test_amount_rounding_to_zero_is_rejected() -> None:
    result = validate_form(InvoiceSchema, {"customerId": "c1", "amount": "0.004", "status": "paid"})

    assert result.errors == {"amount": ["Please enter an amount greater than $0."]}


def test_amount_upper_bound() -> None:
    result = validate_form(InvoiceSchema, {"customerId": "c1", "amount": "1e100", "status": "paid"})

    assert result.errors == {"amount": ["Please enter an amount no greater than $1,000,000,000."]}


def test_mismatch_is_reported_even_when_password_breaks_rules() -> None:
    result = validate_form(RegistrationSchema, _registration(password="short", confirmPassword="Different1!"))

    assert result.errors["password"] == [
        "Password must be at least 8 characters long",
        "Password must contain at least one uppercase letter",
        "Password must contain at least one number",
        "Password must contain at least one special character",
    ]
    assert result.errors["confirmPassword"] == ["Passwords do not match"]


def test_mismatch_follows_confirmation_rule_messages() -> None:
    result = validate_form(RegistrationSchema, _registration(confirmPassword="weak"))

    assert result.errors["confirmPassword"] == [
        "Password must be at least 8 characters long",
        "Password must contain at least one uppercase letter",
        "Password must contain at least one number",
        "Password must contain at least one special character",
        "Passwords do not match",
    ]
