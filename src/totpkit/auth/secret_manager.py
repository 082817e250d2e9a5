"""Secret generation, base-32 codec, validation and in-memory wiping.

Secrets are handed around as unpadded base-32 text (``A-Z2-7``), the form
authenticator apps accept. Raw bytes only exist inside this module and the
TOTP engine, and callers holding a mutable buffer should pass it to
``clear_sensitive_data`` once they are done with it.
"""

from __future__ import annotations

import logging
import re
import secrets
import warnings

from totpkit.config import BASE32_ALPHABET, BITS_PER_CHAR, Settings
from totpkit.config import settings as default_settings
from totpkit.models import ChecksumResult

logger = logging.getLogger(__name__)

_STRIP_RE = re.compile(r"[=\s]")
_WHITESPACE_RE = re.compile(r"\s")
_ALPHABET_INDEX = {c: i for i, c in enumerate(BASE32_ALPHABET)}


class InvalidBase32Error(ValueError):
    """A character outside the base-32 alphabet was found while decoding."""

    def __init__(self, char: str) -> None:
        super().__init__(f"Invalid Base32 character: {char!r}")
        self.char = char


class SecretWipeWarning(UserWarning):
    """Issued when asked to wipe an immutable object that cannot be cleared."""


def _xor_checksum(data: bytes | bytearray) -> int:
    checksum = 0
    for b in data:
        checksum ^= b
    return checksum


class SecretManager:
    """Creates, encodes and checks TOTP secrets."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings

    # --- Generation ---

    def generate_secure_secret(self, length: int | None = None) -> bytearray:
        """Return ``length`` bytes from the OS CSPRNG as a wipeable buffer."""
        if length is None:
            length = self.settings.secret_length
        if length <= 0:
            raise ValueError("Secret length must be positive")
        return bytearray(secrets.token_bytes(length))

    def generate_secret(self, length: int | None = None) -> str:
        """Generate a secret and return its base-32 text (32 chars for 20 bytes)."""
        raw = self.generate_secure_secret(length)
        try:
            return self.encode_base32(raw)
        finally:
            self.clear_sensitive_data(raw)

    # --- Base-32 codec ---

    def encode_base32(self, data: bytes | bytearray | memoryview) -> str:
        out: list[str] = []
        value = 0
        bits = 0
        for byte in bytes(data):
            value = ((value << 8) | byte) & 0xFFFF
            bits += 8
            while bits >= BITS_PER_CHAR:
                out.append(BASE32_ALPHABET[(value >> (bits - BITS_PER_CHAR)) & 31])
                bits -= BITS_PER_CHAR
        if bits > 0:
            out.append(BASE32_ALPHABET[(value << (BITS_PER_CHAR - bits)) & 31])
        return "".join(out)

    def decode_base32(self, text: str) -> bytes:
        """Decode base-32, ignoring ``=`` padding, whitespace and case.

        Raises ``InvalidBase32Error`` on the first character outside the
        alphabet. Trailing bits that do not fill a whole byte are dropped.
        """
        clean = _STRIP_RE.sub("", text).upper()
        out = bytearray()
        value = 0
        bits = 0
        for char in clean:
            index = _ALPHABET_INDEX.get(char)
            if index is None:
                raise InvalidBase32Error(char)
            value = ((value << BITS_PER_CHAR) | index) & 0xFFFF
            bits += BITS_PER_CHAR
            if bits >= 8:
                out.append((value >> (bits - 8)) & 0xFF)
                bits -= 8
        return bytes(out)

    # --- Validation ---

    def validate_secret(self, secret: object) -> bool:
        """Check length bounds and alphabet. Never raises."""
        if not secret or not isinstance(secret, str):
            return False
        clean = _STRIP_RE.sub("", secret)
        if not self.settings.min_secret_length <= len(clean) <= self.settings.max_secret_length:
            return False
        try:
            decoded = self.decode_base32(clean)
        except InvalidBase32Error:
            return False
        return len(decoded) > 0

    # --- Checksum-augmented secrets ---

    def generate_secret_with_checksum(self, length: int | None = None) -> str:
        """Generate a secret with one trailing XOR byte appended before encoding.

        The checksum only catches transcription mistakes. It is not keyed and
        anyone can recompute it, so it says nothing about tampering.
        """
        raw = self.generate_secure_secret(length)
        buf = bytearray(raw)
        buf.append(_xor_checksum(raw))
        try:
            return self.encode_base32(buf)
        finally:
            self.clear_sensitive_data(raw)
            self.clear_sensitive_data(buf)

    def validate_secret_with_checksum(self, secret: str) -> ChecksumResult:
        if not isinstance(secret, str):
            return ChecksumResult(is_valid=False)
        try:
            decoded = bytearray(self.decode_base32(secret))
        except InvalidBase32Error:
            return ChecksumResult(is_valid=False)
        if len(decoded) < 2:
            return ChecksumResult(is_valid=False)

        body = decoded[:-1]
        try:
            if _xor_checksum(body) != decoded[-1]:
                return ChecksumResult(is_valid=False)
            return ChecksumResult(is_valid=True, clean_secret=self.encode_base32(body))
        finally:
            self.clear_sensitive_data(decoded)
            self.clear_sensitive_data(body)

    # --- Display helpers ---

    def format_secret_for_display(self, secret: str, group_size: int = 4) -> str:
        if group_size <= 0:
            raise ValueError("group_size must be positive")
        clean = _STRIP_RE.sub("", secret)
        return " ".join(clean[i : i + group_size] for i in range(0, len(clean), group_size))

    def clean_formatted_secret(self, formatted: str) -> str:
        return _WHITESPACE_RE.sub("", formatted)

    # --- Memory hygiene ---

    def clear_sensitive_data(self, data: bytearray | memoryview | bytes | str) -> None:
        """Overwrite a mutable buffer with random bytes, then zero it in place.

        ``bytes`` and ``str`` are immutable and may be interned or copied by
        the interpreter, so they cannot be wiped. For those a
        ``SecretWipeWarning`` is issued; drop every reference instead.
        """
        if isinstance(data, memoryview):
            if data.readonly:
                self._warn_immutable(type(data).__name__)
                return
            flat = data.cast("B")
            flat[:] = secrets.token_bytes(flat.nbytes)
            flat[:] = bytes(flat.nbytes)
        elif isinstance(data, bytearray):
            n = len(data)
            data[:] = secrets.token_bytes(n)
            data[:] = bytes(n)
        elif isinstance(data, (bytes, str)):
            self._warn_immutable(type(data).__name__)
        else:
            raise TypeError(f"Cannot wipe object of type {type(data).__name__}")

    @staticmethod
    def _warn_immutable(kind: str) -> None:
        logger.warning("%s data cannot be securely cleared from memory; avoid keeping references", kind)
        warnings.warn(
            f"{kind} is immutable and cannot be securely wiped",
            SecretWipeWarning,
            stacklevel=3,
        )
