"""Tests for TOTP code derivation, verification and otpauth:// URIs."""

from __future__ import annotations

import hashlib
import hmac
import struct
from urllib.parse import parse_qs, urlsplit

import pyotp
import pytest

from conftest import BOUNDARY, RFC_SECRET
from totpkit.auth.secret_manager import InvalidBase32Error
from totpkit.auth.totp import InvalidSecretError, TOTPEngine, dynamic_truncate, time_remaining
from totpkit.config import HashAlgorithm, UnsupportedAlgorithmError
from totpkit.models import TOTPConfig

SHA256_SEED = b"12345678901234567890123456789012"
SHA512_SEED = b"1234567890123456789012345678901234567890123456789012345678901234"


# === RFC 6238 Appendix B ===


@pytest.mark.parametrize(
    ("timestamp", "expected"),
    [
        (59, "287082"),
        (1111111109, "081804"),
        (1111111111, "050471"),
        (1234567890, "005924"),
        (2000000000, "279037"),
    ],
)
def test_rfc6238_six_digit_vectors(engine, timestamp, expected):
    assert engine.generate_code(RFC_SECRET, timestamp) == expected


@pytest.mark.parametrize(
    ("timestamp", "sha1", "sha256", "sha512"),
    [
        (59, "94287082", "46119246", "90693936"),
        (1111111109, "07081804", "68084774", "25091201"),
        (1111111111, "14050471", "67062674", "99943326"),
        (1234567890, "89005924", "91819424", "93441116"),
        (2000000000, "69279037", "90698825", "38618901"),
        (20000000000, "65353130", "77737706", "47863826"),
    ],
)
def test_rfc6238_eight_digit_vectors(engine, manager, timestamp, sha1, sha256, sha512):
    secrets = {
        "SHA1": (RFC_SECRET, sha1),
        "SHA256": (manager.encode_base32(SHA256_SEED), sha256),
        "SHA512": (manager.encode_base32(SHA512_SEED), sha512),
    }
    for algorithm, (secret, expected) in secrets.items():
        code = engine.generate_code(secret, timestamp, {"digits": 8, "algorithm": algorithm})
        assert code == expected, algorithm


def test_rfc4226_truncation_example():
    # RFC 4226 section 5.4
    digest = bytes.fromhex("1f8698690e02ca16618550ef7f19da8e945b555a")
    assert dynamic_truncate(digest, 6) == "872921"


def test_config_model_accepted(engine, manager):
    cfg = TOTPConfig(
        service_name="s",
        account_name="a",
        secret=manager.encode_base32(SHA512_SEED),
        algorithm=HashAlgorithm.SHA512,
        digits=8,
    )
    assert engine.generate_code(cfg.secret, 59, cfg) == "90693936"


# === Interop ===


@pytest.mark.parametrize("timestamp", [0, 29, 30, 1700000000, 4102444800])
def test_matches_pyotp(engine, manager, timestamp):
    secret = manager.generate_secret()
    assert engine.generate_code(secret, timestamp) == pyotp.TOTP(secret).at(timestamp)
    assert engine.generate_code(secret, timestamp, {"digits": 8, "algorithm": "SHA256", "period": 60}) == pyotp.TOTP(
        secret, digits=8, digest=hashlib.sha256, interval=60
    ).at(timestamp)


def test_lowercase_and_spaced_secret(engine):
    assert engine.generate_code("gezd gnbv gy3t qojq gezd gnbv gy3t qojq", 59) == "287082"


# === Time handling ===


def test_defaults_to_clock(engine, clock):
    clock.now = 1111111109.7
    assert engine.generate_code(RFC_SECRET) == "081804"


def test_zero_is_a_timestamp_not_now(engine, clock):
    clock.now = 1111111109
    assert engine.generate_code(RFC_SECRET, 0) == pyotp.TOTP(RFC_SECRET).at(0)
    assert engine.generate_code(RFC_SECRET, 0) != engine.generate_code(RFC_SECRET)


def test_same_code_throughout_window(engine, manager):
    secret = manager.generate_secret()
    for t in (BOUNDARY, BOUNDARY + 7, BOUNDARY + 29):
        start = int(t)
        end_of_window = start + 30 - 1 - (start % 30)
        assert engine.generate_code(secret, start) == engine.generate_code(secret, end_of_window)


def test_next_window_changes_code(engine):
    codes = {engine.generate_code(RFC_SECRET, 1111111109 + i * 30) for i in range(10)}
    assert len(codes) >= 9


def test_negative_timestamp_wraps_counter(engine, manager):
    # floor(-1 / 30) == -1, packed as two's complement
    key = manager.decode_base32(RFC_SECRET)
    digest = hmac.new(key, struct.pack(">Q", 2**64 - 1), hashlib.sha1).digest()
    assert engine.generate_code(RFC_SECRET, -1) == dynamic_truncate(digest, 6)
    assert engine.generate_code(RFC_SECRET, -30) == engine.generate_code(RFC_SECRET, -1)
    assert engine.generate_code(RFC_SECRET, -31) != engine.generate_code(RFC_SECRET, -1)


def test_huge_timestamp_does_not_raise(engine):
    assert len(engine.generate_code(RFC_SECRET, 10**30)) == 6


def test_non_finite_timestamp(engine):
    with pytest.raises(ValueError):
        engine.generate_code(RFC_SECRET, float("inf"))


def test_time_step_and_remaining(engine):
    assert engine.get_current_time_step(30, 59) == 1
    assert engine.get_current_time_step(30, -1) == -1
    assert engine.get_time_remaining(30, 59) == 1
    assert engine.get_time_remaining(30, 60) == 30
    assert engine.get_time_remaining(30, 0) == 30
    assert engine.get_time_remaining(30, -1) == 1
    assert engine.get_time_remaining(15, 14.9) == 1


def test_time_remaining_counts_down(engine):
    previous = None
    for t in range(int(BOUNDARY), int(BOUNDARY) + 90):
        remaining = engine.get_time_remaining(30, t)
        assert 0 < remaining <= 30
        if previous is not None:
            assert remaining == previous - 1 or (previous == 1 and remaining == 30)
        previous = remaining


def test_time_helpers_use_clock(engine, clock):
    clock.now = BOUNDARY + 12.5
    assert engine.get_time_remaining(30) == 18
    assert engine.get_current_time_step(30) == int(BOUNDARY) // 30


@pytest.mark.parametrize("period", [0, -30])
def test_bad_period(period):
    with pytest.raises(ValueError):
        time_remaining(100, period)


# === Errors ===


def test_invalid_secret_character(engine):
    with pytest.raises(InvalidBase32Error) as exc:
        engine.generate_code("JBSWY3DPEHPK3PX0", 59)
    assert exc.value.char == "0"


def test_empty_secret(engine):
    with pytest.raises(InvalidSecretError):
        engine.generate_code("", 59)


def test_unsupported_algorithm(engine):
    with pytest.raises(UnsupportedAlgorithmError):
        engine.generate_code(RFC_SECRET, 59, {"algorithm": "MD5"})


@pytest.mark.parametrize(
    "config",
    [
        {"digits": -1},
        {"digits": 7},
        {"digits": True},
        {"period": 17},
        {"period": 0},
        {"period": "30"},
    ],
)
def test_mapping_config_is_checked(engine, config):
    with pytest.raises(ValueError):
        engine.generate_code(RFC_SECRET, 59, config)
    with pytest.raises(ValueError):
        engine.verify_code(RFC_SECRET, "287082", config=config, timestamp=59)


def test_mapping_config_partial_override(engine):
    assert engine.generate_code(RFC_SECRET, 59, {"digits": 8}) == "94287082"
    assert engine.generate_code(RFC_SECRET, 59, {"digits": None, "period": None}) == "287082"


# === Verification ===


def test_verify_window(engine, clock, manager):
    secret = manager.generate_secret()
    t = int(BOUNDARY) + 10
    code = engine.generate_code(secret, t)

    for now in (t, t + 30, t - 30):
        clock.now = now
        assert engine.verify_code(secret, code, window=1)

    clock.now = t + 3 * 30
    assert not engine.verify_code(secret, code, window=1)


def test_verify_window_zero(engine, manager):
    secret = manager.generate_secret()
    t = int(BOUNDARY)
    code = engine.generate_code(secret, t)
    assert engine.verify_code(secret, code, window=0, timestamp=t + 29)
    assert not engine.verify_code(secret, code, window=0, timestamp=t + 30)


def test_verify_uses_settings_window(engine, manager):
    secret = manager.generate_secret()
    code = engine.generate_code(secret, BOUNDARY)
    assert engine.verify_code(secret, code, timestamp=BOUNDARY - 30)


def test_verify_respects_config_period(engine):
    code = engine.generate_code(RFC_SECRET, 120, {"period": 60})
    assert engine.verify_code(RFC_SECRET, code, window=1, config={"period": 60}, timestamp=180)
    assert not engine.verify_code(RFC_SECRET, code, window=1, config={"period": 60}, timestamp=300)


@pytest.mark.parametrize(
    ("secret", "code"),
    [
        ("not a secret!", "123456"),
        ("", "123456"),
        (None, "123456"),
        (RFC_SECRET, ""),
        (RFC_SECRET, None),
        (RFC_SECRET, 287082),
    ],
)
def test_verify_never_raises(engine, secret, code):
    assert engine.verify_code(secret, code, timestamp=59) is False


def test_verify_wrong_code(engine):
    assert not engine.verify_code(RFC_SECRET, "287083", timestamp=59)
    assert not engine.verify_code(RFC_SECRET, "28708", timestamp=59)


def test_verify_non_finite_timestamp(engine):
    assert engine.verify_code(RFC_SECRET, "287082", timestamp=float("nan")) is False


def test_verify_float_window(engine):
    assert engine.verify_code(RFC_SECRET, "287082", window=1.0, timestamp=89) is True
    assert engine.verify_code(RFC_SECRET, "287082", window=0.0, timestamp=89) is False


@pytest.mark.parametrize("window", ["one", object(), None])
def test_verify_odd_window_does_not_raise(engine, window):
    assert engine.verify_code(RFC_SECRET, "287082", window=window, timestamp=59) in (True, False)


def test_verify_bad_algorithm_is_a_config_error(engine):
    with pytest.raises(UnsupportedAlgorithmError):
        engine.verify_code(RFC_SECRET, "287082", config={"algorithm": "MD5"}, timestamp=59)


# === otpauth:// URIs ===


def test_uri_github_example(engine):
    cfg = TOTPConfig(
        service_name="GitHub",
        account_name="user@example.com",
        secret="JBSWY3DPEHPK3PXP",
        algorithm="SHA1",
        digits=6,
        period=30,
    )
    uri = engine.generate_otpauth_uri(cfg)
    assert uri.startswith("otpauth://totp/GitHub%3Auser%40example.com?")
    assert "secret=JBSWY3DPEHPK3PXP" in uri
    assert "issuer=GitHub" in uri
    for param in ("algorithm=", "digits=", "period="):
        assert param not in uri


def test_uri_non_default_params(engine):
    cfg = TOTPConfig(
        service_name="Acme Corp",
        account_name="alice",
        secret="JBSWY3DPEHPK3PXP",
        algorithm=HashAlgorithm.SHA512,
        digits=8,
        period=60,
        issuer="Acme & Co",
    )
    parts = urlsplit(engine.generate_otpauth_uri(cfg))
    assert parts.scheme == "otpauth"
    assert parts.netloc == "totp"
    assert parts.path == "/Acme%20%26%20Co%3Aalice"
    query = parse_qs(parts.query)
    assert query == {
        "secret": ["JBSWY3DPEHPK3PXP"],
        "issuer": ["Acme & Co"],
        "algorithm": ["SHA512"],
        "digits": ["8"],
        "period": ["60"],
    }


def test_uri_only_changed_params(engine):
    cfg = TOTPConfig(service_name="S", account_name="a", secret="JBSWY3DPEHPK3PXP", period=15)
    uri = engine.generate_otpauth_uri(cfg)
    assert uri.endswith("&period=15")
    assert "digits=" not in uri and "algorithm=" not in uri


def test_uri_readable_by_pyotp(engine, manager):
    secret = manager.generate_secret()
    cfg = TOTPConfig(service_name="GitHub", account_name="user@example.com", secret=secret, digits=8, algorithm="SHA256")
    otp = pyotp.parse_uri(engine.generate_otpauth_uri(cfg))
    assert otp.at(1700000000) == engine.generate_code(secret, 1700000000, cfg)
    assert otp.issuer == "GitHub"
    assert otp.name == "user@example.com"


def test_parse_round_trip(engine, manager):
    cfg = TOTPConfig(
        service_name="Example",
        account_name="alice@example.com",
        secret=manager.generate_secret(),
        algorithm=HashAlgorithm.SHA512,
        digits=8,
        period=60,
    )
    parsed = engine.parse_otpauth_uri(engine.generate_otpauth_uri(cfg))
    assert parsed.service_name == "Example"
    assert parsed.account_name == "alice@example.com"
    assert parsed.secret == cfg.secret
    assert parsed.algorithm is HashAlgorithm.SHA512
    assert parsed.digits == 8
    assert parsed.period == 60
    assert engine.generate_otpauth_uri(parsed) == engine.generate_otpauth_uri(cfg)


def test_parse_defaults(engine):
    parsed = engine.parse_otpauth_uri("otpauth://totp/GitHub:me?secret=JBSWY3DPEHPK3PXP&issuer=GitHub")
    assert parsed.algorithm is HashAlgorithm.SHA1
    assert parsed.digits == 6
    assert parsed.period == 30


@pytest.mark.parametrize(
    "uri",
    [
        "https://example.com/totp",
        "otpauth://hotp/GitHub:me?secret=JBSWY3DPEHPK3PXP&issuer=GitHub&counter=1",
        "otpauth://totp/GitHub:me?issuer=GitHub&secret=NOT-VALID",
        "otpauth://totp/GitHub:me?secret=JBSWY3DPEHPK3PXP&algorithm=MD5",
    ],
)
def test_parse_rejects(engine, uri):
    with pytest.raises(ValueError):
        engine.parse_otpauth_uri(uri)


def test_engine_has_no_shared_state():
    assert TOTPEngine().secret_manager is not TOTPEngine().secret_manager
