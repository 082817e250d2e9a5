"""Central configuration loaded from environment variables and an optional .env file."""

from __future__ import annotations

from enum import StrEnum

from cryptography.hazmat.primitives import hashes
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
BASE32_PADDING = "="
BITS_PER_CHAR = 5

SUPPORTED_DIGITS = (6, 8)
SUPPORTED_PERIODS = (15, 30, 60)

DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30

MAX_SERVICE_NAME_LENGTH = 50
MAX_ACCOUNT_NAME_LENGTH = 100

OTPAUTH_SCHEME = "otpauth"
OTPAUTH_TYPE = "totp"


class UnsupportedAlgorithmError(ValueError):
    """Raised for a hash algorithm name outside SHA1/SHA256/SHA512."""

    def __init__(self, name: object) -> None:
        super().__init__(f"Unsupported algorithm: {name}")
        self.name = name


class HashAlgorithm(StrEnum):
    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"

    @classmethod
    def coerce(cls, value: HashAlgorithm | str) -> HashAlgorithm:
        """Resolve a member or a case-insensitive name (``sha-256`` works too)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace("-", "")
            if key in cls.__members__:
                return cls[key]
        raise UnsupportedAlgorithmError(value)

    def hash_primitive(self) -> hashes.HashAlgorithm:
        return _HASHES[self]()


_HASHES: dict[HashAlgorithm, type[hashes.HashAlgorithm]] = {
    HashAlgorithm.SHA1: hashes.SHA1,
    HashAlgorithm.SHA256: hashes.SHA256,
    HashAlgorithm.SHA512: hashes.SHA512,
}

DEFAULT_ALGORITHM = HashAlgorithm.SHA1


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOTPKIT_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Secrets
    secret_length: int = Field(default=20, ge=1)
    min_secret_length: int = 16
    max_secret_length: int = 128

    # Verification
    default_window: int = Field(default=1, ge=0)

    # Timers
    countdown_interval_ms: int = Field(default=100, gt=0)
    frame_interval_ms: int = Field(default=16, gt=0)
    high_precision_throttle_ms: int = Field(default=50, ge=0)
    near_expiry_threshold_s: int = 5
    retry_backoff_ms: int = Field(default=1000, gt=0)

    # Clock drift
    drift_warning_ms: int = 30_000
    drift_error_ms: int = 60_000

    # Logging
    log_level: str = "INFO"


settings = Settings()
