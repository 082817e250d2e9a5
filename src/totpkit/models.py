"""Pydantic models for the data flowing between the secret, engine and timer layers."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from totpkit.config import (
    DEFAULT_ALGORITHM,
    DEFAULT_DIGITS,
    DEFAULT_PERIOD,
    SUPPORTED_DIGITS,
    SUPPORTED_PERIODS,
    HashAlgorithm,
)


# === Enums ===


class ErrorType(StrEnum):
    INVALID_SERVICE_NAME = "INVALID_SERVICE_NAME"
    INVALID_ACCOUNT_NAME = "INVALID_ACCOUNT_NAME"
    INVALID_SECRET = "INVALID_SECRET"
    INVALID_ALGORITHM = "INVALID_ALGORITHM"
    INVALID_DIGITS = "INVALID_DIGITS"
    INVALID_PERIOD = "INVALID_PERIOD"
    TIME_SYNC_ERROR = "TIME_SYNC_ERROR"
    CALCULATION_ERROR = "CALCULATION_ERROR"


class DriftSeverity(StrEnum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


# === Data models ===


class TOTPConfig(BaseModel):
    """Everything needed to derive codes and build an otpauth:// URI."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    account_name: str
    secret: str
    algorithm: HashAlgorithm = DEFAULT_ALGORITHM
    digits: int = DEFAULT_DIGITS
    period: int = DEFAULT_PERIOD
    issuer: str | None = None

    @field_validator("algorithm", mode="before")
    @classmethod
    def _coerce_algorithm(cls, v: object) -> HashAlgorithm:
        return HashAlgorithm.coerce(v)  # type: ignore[arg-type]

    @field_validator("digits")
    @classmethod
    def _check_digits(cls, v: int) -> int:
        if v not in SUPPORTED_DIGITS:
            raise ValueError(f"digits must be one of {SUPPORTED_DIGITS}")
        return v

    @field_validator("period")
    @classmethod
    def _check_period(cls, v: int) -> int:
        if v not in SUPPORTED_PERIODS:
            raise ValueError(f"period must be one of {SUPPORTED_PERIODS}")
        return v

    @property
    def label_issuer(self) -> str:
        return self.issuer or self.service_name


class ValidationResult(BaseModel):
    """Outcome of a user-facing validation, with hints for fixing the input."""

    is_valid: bool
    error_type: ErrorType | None = None
    error_message: str | None = None
    suggestions: list[str] = Field(default_factory=list)


class ChecksumResult(BaseModel):
    is_valid: bool
    clean_secret: str | None = None


class TimeSyncStatus(BaseModel):
    """Local clock offset against a reference time (positive: local clock is behind)."""

    is_synced: bool
    offset_ms: int
    severity: DriftSeverity
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
