"""User-facing validation of TOTP config fields, with hints for fixing them."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from totpkit.auth.secret_manager import SecretManager
from totpkit.config import (
    MAX_ACCOUNT_NAME_LENGTH,
    MAX_SERVICE_NAME_LENGTH,
    SUPPORTED_DIGITS,
    SUPPORTED_PERIODS,
    HashAlgorithm,
    UnsupportedAlgorithmError,
)
from totpkit.models import ErrorType, ValidationResult

FIELD_ORDER = ("service_name", "account_name", "secret", "algorithm", "digits", "period")


def _ok() -> ValidationResult:
    return ValidationResult(is_valid=True)


def _fail(error_type: ErrorType, message: str, *suggestions: str) -> ValidationResult:
    return ValidationResult(
        is_valid=False, error_type=error_type, error_message=message, suggestions=list(suggestions)
    )


def _check_service_name(value: Any, _: SecretManager) -> ValidationResult:
    if not isinstance(value, str) or not value.strip():
        return _fail(ErrorType.INVALID_SERVICE_NAME, "Service name is required", "Use the site or app name, e.g. GitHub")
    if len(value) > MAX_SERVICE_NAME_LENGTH:
        return _fail(
            ErrorType.INVALID_SERVICE_NAME,
            f"Service name must be at most {MAX_SERVICE_NAME_LENGTH} characters",
            "Shorten the service name",
        )
    return _ok()


def _check_account_name(value: Any, _: SecretManager) -> ValidationResult:
    if not isinstance(value, str) or not value.strip():
        return _fail(ErrorType.INVALID_ACCOUNT_NAME, "Account name is required", "Use your username or email address")
    if len(value) > MAX_ACCOUNT_NAME_LENGTH:
        return _fail(
            ErrorType.INVALID_ACCOUNT_NAME,
            f"Account name must be at most {MAX_ACCOUNT_NAME_LENGTH} characters",
            "Shorten the account name",
        )
    return _ok()


def _check_secret(value: Any, manager: SecretManager) -> ValidationResult:
    if manager.validate_secret(value):
        return _ok()
    lo, hi = manager.settings.min_secret_length, manager.settings.max_secret_length
    suggestions = [
        "Secrets use only the letters A-Z and the digits 2-7",
        f"Secrets are {lo} to {hi} characters long, spaces are ignored",
    ]
    if isinstance(value, str) and any(c in value for c in "018"):
        suggestions.append("0, 1 and 8 never appear in a secret: check for O, I or B")
    return _fail(ErrorType.INVALID_SECRET, "Secret is not valid Base32", *suggestions)


def _check_algorithm(value: Any, _: SecretManager) -> ValidationResult:
    try:
        HashAlgorithm.coerce(value)
    except UnsupportedAlgorithmError:
        return _fail(
            ErrorType.INVALID_ALGORITHM,
            f"Unsupported algorithm: {value}",
            "Choose one of " + ", ".join(a.value for a in HashAlgorithm),
        )
    return _ok()


def _check_digits(value: Any, _: SecretManager) -> ValidationResult:
    if value not in SUPPORTED_DIGITS or isinstance(value, bool):
        return _fail(ErrorType.INVALID_DIGITS, "Code length must be 6 or 8 digits", "Most services use 6 digits")
    return _ok()


def _check_period(value: Any, _: SecretManager) -> ValidationResult:
    if value not in SUPPORTED_PERIODS or isinstance(value, bool):
        return _fail(
            ErrorType.INVALID_PERIOD,
            "Period must be 15, 30 or 60 seconds",
            "Most services use a 30 second period",
        )
    return _ok()


_CHECKS = {
    "service_name": _check_service_name,
    "account_name": _check_account_name,
    "secret": _check_secret,
    "algorithm": _check_algorithm,
    "digits": _check_digits,
    "period": _check_period,
}


def validate_field(field: str, value: Any, manager: SecretManager | None = None) -> ValidationResult:
    """Validate a single config field by name."""
    try:
        check = _CHECKS[field]
    except KeyError:
        raise ValueError(f"Unknown field: {field}") from None
    return check(value, manager or SecretManager())


def validate_config(data: Mapping[str, Any], manager: SecretManager | None = None) -> ValidationResult:
    """Validate a raw config mapping, reporting the first failing field.

    Missing ``algorithm``, ``digits`` and ``period`` fall back to their
    defaults; missing names and secret are errors.
    """
    manager = manager or SecretManager()
    defaults = {"algorithm": HashAlgorithm.SHA1, "digits": 6, "period": 30}
    for field in FIELD_ORDER:
        value = data.get(field, defaults.get(field))
        result = _CHECKS[field](value, manager)
        if not result.is_valid:
            return result
    return _ok()
