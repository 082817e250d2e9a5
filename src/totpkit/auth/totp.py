"""TOTP (Time-based One-Time Password) code derivation and otpauth:// URIs.

Implements RFC 6238 on top of the RFC 4226 dynamic truncation, with HMAC
from ``cryptography``. Codes match the RFC 6238 Appendix B vectors and what
third-party authenticator apps compute for the same secret.
"""

from __future__ import annotations

import logging
import math
import struct
import time
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote, urlencode

import pyotp
from cryptography.hazmat.primitives import constant_time, hmac

from totpkit.auth.secret_manager import InvalidBase32Error, SecretManager
from totpkit.config import (
    DEFAULT_ALGORITHM,
    DEFAULT_DIGITS,
    DEFAULT_PERIOD,
    OTPAUTH_SCHEME,
    OTPAUTH_TYPE,
    SUPPORTED_DIGITS,
    SUPPORTED_PERIODS,
    HashAlgorithm,
    Settings,
)
from totpkit.config import settings as default_settings
from totpkit.models import TOTPConfig

logger = logging.getLogger(__name__)

_COUNTER_MASK = (1 << 64) - 1


class InvalidSecretError(ValueError):
    """The secret decoded to zero bytes and cannot key an HMAC."""


def _check_period(period: int) -> int:
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    return period


def _whole_seconds(timestamp: float) -> int:
    if isinstance(timestamp, float) and not math.isfinite(timestamp):
        raise ValueError(f"timestamp must be finite, got {timestamp}")
    return math.floor(timestamp)


def time_step(timestamp: float, period: int) -> int:
    """Number of whole periods since the epoch, flooring toward -inf."""
    return _whole_seconds(timestamp) // _check_period(period)


def time_remaining(timestamp: float, period: int) -> int:
    """Seconds left in the window containing ``timestamp``, in ``(0, period]``."""
    return period - (_whole_seconds(timestamp) % _check_period(period))


def dynamic_truncate(digest: bytes, digits: int) -> str:
    """RFC 4226 section 5.3 truncation of an HMAC digest to a decimal code."""
    offset = digest[-1] & 0x0F
    value = (
        ((digest[offset] & 0x7F) << 24)
        | (digest[offset + 1] << 16)
        | (digest[offset + 2] << 8)
        | digest[offset + 3]
    )
    return str(value % 10**digits).zfill(digits)


class TOTPEngine:
    """Derives and verifies codes for base-32 secrets.

    Holds no per-secret state; an instance can be shared between callers.
    ``clock`` returns Unix seconds and exists so tests can pin "now".
    """

    def __init__(
        self,
        secret_manager: SecretManager | None = None,
        clock: Callable[[], float] = time.time,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.secret_manager = secret_manager or SecretManager(self.settings)
        self.clock = clock

    def now(self) -> int:
        return math.floor(self.clock())

    def generate_secret(self, length: int | None = None) -> str:
        return self.secret_manager.generate_secret(length)

    def generate_code(
        self,
        secret: str,
        timestamp: float | None = None,
        config: TOTPConfig | Mapping[str, Any] | None = None,
    ) -> str:
        """Get the code for ``secret`` at ``timestamp`` (default: now).

        Negative timestamps floor toward -inf and the counter is packed modulo
        2**64, so every finite timestamp yields a code.
        """
        period, digits, algorithm = _resolve_params(config)
        if timestamp is None:
            timestamp = self.now()
        counter = time_step(timestamp, period) & _COUNTER_MASK

        key = self.secret_manager.decode_base32(secret)
        if not key:
            raise InvalidSecretError("Secret decodes to an empty key")

        mac = hmac.HMAC(key, algorithm.hash_primitive())
        mac.update(struct.pack(">Q", counter))
        return dynamic_truncate(mac.finalize(), digits)

    def verify_code(
        self,
        secret: str,
        code: str,
        window: int | None = None,
        config: TOTPConfig | Mapping[str, Any] | None = None,
        timestamp: float | None = None,
    ) -> bool:
        """Check ``code`` against the current window and ``window`` neighbours each side.

        Returns False instead of raising for malformed secrets, codes, windows
        or timestamps. A bad ``config`` (unknown algorithm, unsupported digits
        or period) is a programming error and still raises.
        """
        if not isinstance(secret, str) or not isinstance(code, str) or not code:
            return False
        period, _, _ = _resolve_params(config)
        try:
            window = self.settings.default_window if window is None else int(window)
            now = self.now() if timestamp is None else timestamp
            supplied = code.encode()
            matched = False
            for i in range(-window, window + 1):
                expected = self.generate_code(secret, now + i * period, config)
                # every window is compared, match or not
                matched |= constant_time.bytes_eq(expected.encode(), supplied)
            return matched
        except (InvalidBase32Error, InvalidSecretError):
            logger.debug("Verification rejected malformed secret")
            return False
        except (ValueError, TypeError):
            logger.debug("Verification rejected window %r or timestamp %r", window, timestamp, exc_info=True)
            return False

    def generate_otpauth_uri(self, config: TOTPConfig) -> str:
        """Get the otpauth:// URI for QR code enrollment.

        ``algorithm``, ``digits`` and ``period`` appear only when they differ
        from SHA1/6/30, which is what most authenticator apps expect.
        """
        label = quote(f"{config.label_issuer}:{config.account_name}", safe="")
        params: dict[str, str] = {
            "secret": config.secret,
            "issuer": config.label_issuer,
        }
        if config.algorithm != DEFAULT_ALGORITHM:
            params["algorithm"] = config.algorithm.value
        if config.digits != DEFAULT_DIGITS:
            params["digits"] = str(config.digits)
        if config.period != DEFAULT_PERIOD:
            params["period"] = str(config.period)
        query = urlencode(params, quote_via=quote)
        return f"{OTPAUTH_SCHEME}://{OTPAUTH_TYPE}/{label}?{query}"

    def parse_otpauth_uri(self, uri: str) -> TOTPConfig:
        """Turn an otpauth://totp/ URI (e.g. from an app export) back into a config."""
        try:
            otp = pyotp.parse_uri(uri)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Not a usable otpauth URI: {e}") from e
        if not isinstance(otp, pyotp.TOTP):
            raise ValueError("Only otpauth://totp/ URIs are supported")
        if not otp.secret or not self.secret_manager.validate_secret(otp.secret):
            raise ValueError("URI carries a missing or malformed secret")

        issuer = otp.issuer or None
        return TOTPConfig(
            service_name=issuer or otp.name,
            account_name=otp.name,
            secret=otp.secret.upper(),
            algorithm=otp.digest().name,
            digits=otp.digits,
            period=int(otp.interval),
            issuer=issuer,
        )

    def get_current_time_step(self, period: int = DEFAULT_PERIOD, timestamp: float | None = None) -> int:
        return time_step(self.now() if timestamp is None else timestamp, period)

    def get_time_remaining(self, period: int = DEFAULT_PERIOD, timestamp: float | None = None) -> int:
        return time_remaining(self.now() if timestamp is None else timestamp, period)


def _resolve_params(config: TOTPConfig | Mapping[str, Any] | None) -> tuple[int, int, HashAlgorithm]:
    if config is None:
        return DEFAULT_PERIOD, DEFAULT_DIGITS, DEFAULT_ALGORITHM
    if isinstance(config, TOTPConfig):
        return config.period, config.digits, config.algorithm
    period = config.get("period")
    digits = config.get("digits")
    period = DEFAULT_PERIOD if period is None else period
    digits = DEFAULT_DIGITS if digits is None else digits
    if isinstance(period, bool) or period not in SUPPORTED_PERIODS:
        raise ValueError(f"period must be one of {SUPPORTED_PERIODS}, got {period!r}")
    if isinstance(digits, bool) or digits not in SUPPORTED_DIGITS:
        raise ValueError(f"digits must be one of {SUPPORTED_DIGITS}, got {digits!r}")
    algorithm = HashAlgorithm.coerce(config.get("algorithm") or DEFAULT_ALGORITHM)
    return int(period), int(digits), algorithm
