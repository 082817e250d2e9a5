"""totpkit: RFC 6238 TOTP secrets, codes, otpauth:// URIs and refresh timers."""

from totpkit.auth.secret_manager import InvalidBase32Error, SecretManager
from totpkit.auth.totp import InvalidSecretError, TOTPEngine
from totpkit.config import HashAlgorithm, UnsupportedAlgorithmError
from totpkit.models import TOTPConfig
from totpkit.timing.timer import HighPrecisionTimerService, TimerService

__version__ = "0.1.0"

__all__ = [
    "HashAlgorithm",
    "HighPrecisionTimerService",
    "InvalidBase32Error",
    "InvalidSecretError",
    "SecretManager",
    "TOTPConfig",
    "TOTPEngine",
    "TimerService",
    "UnsupportedAlgorithmError",
]
