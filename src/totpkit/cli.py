"""CLI entry point for totpkit.

Usage:
    totpkit secret                      # New 32-char base-32 secret
    totpkit code SECRET                 # Current code
    totpkit verify SECRET 123456        # Exit 0 if the code is valid now
    totpkit uri --service GitHub --account me@example.com
    totpkit parse 'otpauth://totp/...'
    totpkit watch SECRET                # Live code + countdown, Ctrl+C to stop
"""

from __future__ import annotations

import logging
import sys
import time

import click
from rich.console import Console

from totpkit.auth.secret_manager import SecretManager
from totpkit.auth.totp import TOTPEngine
from totpkit.auth.validation import validate_config, validate_field
from totpkit.config import DEFAULT_DIGITS, DEFAULT_PERIOD, HashAlgorithm, settings
from totpkit.models import TOTPConfig
from totpkit.timing.timer import HighPrecisionTimerService, TimerService

console = Console()

_ALGORITHMS = click.Choice([a.value for a in HashAlgorithm], case_sensitive=False)


def _fail(message: str, suggestions: list[str] | None = None) -> None:
    console.print(f"[red]{message}[/red]")
    for hint in suggestions or []:
        console.print(f"  - {hint}")
    sys.exit(1)


def _params(algorithm: str, digits: int, period: int) -> dict[str, object]:
    for field, value in (("digits", digits), ("period", period)):
        result = validate_field(field, value)
        if not result.is_valid:
            _fail(result.error_message or f"Invalid {field}", result.suggestions)
    return {"algorithm": HashAlgorithm.coerce(algorithm), "digits": digits, "period": period}


def _checked_secret(manager: SecretManager, secret: str) -> str:
    secret = manager.clean_formatted_secret(secret)
    result = validate_field("secret", secret, manager)
    if not result.is_valid:
        _fail(result.error_message or "Invalid secret", result.suggestions)
    return secret


def otp_options(f):
    f = click.option("--period", type=int, default=DEFAULT_PERIOD, show_default=True, help="Seconds per code")(f)
    f = click.option("--digits", type=int, default=DEFAULT_DIGITS, show_default=True, help="Code length")(f)
    f = click.option("--algorithm", type=_ALGORITHMS, default="SHA1", show_default=True)(f)
    return f


@click.group()
@click.option("--log-level", default=None, help="Logging level (default from TOTPKIT_LOG_LEVEL)")
def main(log_level: str | None) -> None:
    """totpkit: TOTP secrets, codes and otpauth:// URIs."""
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command()
@click.option("--length", type=int, default=None, help="Secret size in bytes")
@click.option("--checksum", is_flag=True, help="Append a transcription checksum byte")
@click.option("--display", is_flag=True, help="Group characters in fours")
def secret(length: int | None, checksum: bool, display: bool) -> None:
    """Generate a new random secret."""
    manager = SecretManager()
    try:
        value = manager.generate_secret_with_checksum(length) if checksum else manager.generate_secret(length)
    except ValueError as e:
        _fail(str(e))
    click.echo(manager.format_secret_for_display(value) if display else value)


@main.command()
@click.argument("secret")
@otp_options
@click.option("--timestamp", type=int, default=None, help="Unix time instead of now")
def code(secret: str, algorithm: str, digits: int, period: int, timestamp: int | None) -> None:
    """Print the code for SECRET."""
    engine = TOTPEngine()
    secret = _checked_secret(engine.secret_manager, secret)
    click.echo(engine.generate_code(secret, timestamp, _params(algorithm, digits, period)))


@main.command()
@click.argument("secret")
@click.argument("otp")
@otp_options
@click.option("--window", type=click.IntRange(min=0), default=None, help="Periods of tolerance each side")
def verify(secret: str, otp: str, algorithm: str, digits: int, period: int, window: int | None) -> None:
    """Check OTP against SECRET. Exit status 0 when valid."""
    engine = TOTPEngine()
    secret = _checked_secret(engine.secret_manager, secret)
    if engine.verify_code(secret, otp.strip(), window, _params(algorithm, digits, period)):
        console.print("[green]valid[/green]")
    else:
        console.print("[red]invalid[/red]")
        sys.exit(1)


@main.command()
@click.option("--service", required=True, help="Service name, e.g. GitHub")
@click.option("--account", required=True, help="Account name, usually an email")
@click.option("--secret", "secret_", default=None, help="Base-32 secret (generated if omitted)")
@click.option("--issuer", default=None)
@otp_options
def uri(
    service: str,
    account: str,
    secret_: str | None,
    issuer: str | None,
    algorithm: str,
    digits: int,
    period: int,
) -> None:
    """Build an otpauth:// URI for QR enrollment."""
    engine = TOTPEngine()
    if secret_ is None:
        secret_ = engine.generate_secret()
    data = {
        "service_name": service,
        "account_name": account,
        "secret": engine.secret_manager.clean_formatted_secret(secret_),
        "algorithm": algorithm,
        "digits": digits,
        "period": period,
        "issuer": issuer,
    }
    result = validate_config(data, engine.secret_manager)
    if not result.is_valid:
        _fail(result.error_message or "Invalid configuration", result.suggestions)
    click.echo(engine.generate_otpauth_uri(TOTPConfig(**data)))


@main.command()
@click.argument("otpauth_uri")
def parse(otpauth_uri: str) -> None:
    """Show the settings inside an otpauth:// URI."""
    try:
        config = TOTPEngine().parse_otpauth_uri(otpauth_uri)
    except ValueError as e:
        _fail(str(e))
    console.print_json(data=config.model_dump(mode="json"))


@main.command()
@click.argument("secret")
@otp_options
@click.option("--high-precision", is_flag=True, help="Frame-driven countdown")
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
def watch(
    secret: str,
    algorithm: str,
    digits: int,
    period: int,
    high_precision: bool,
    duration: float | None,
) -> None:
    """Show the live code, refreshed on every period boundary."""
    engine = TOTPEngine()
    secret = _checked_secret(engine.secret_manager, secret)
    params = _params(algorithm, digits, period)
    timer = HighPrecisionTimerService() if high_precision else TimerService()

    def refresh() -> None:
        console.print(f"[bold]{engine.generate_code(secret, config=params)}[/bold]")

    shown: set[int] = set()

    def countdown(remaining: int) -> None:
        # ticks several times a second; print each second once
        if remaining == period:
            shown.clear()
        if remaining in shown or not timer.is_near_expiry(period):
            return
        shown.add(remaining)
        console.print(f"  [yellow]{remaining}s left[/yellow]")

    timer.start(refresh, period)
    timer.start_countdown(countdown, period)
    deadline = None if duration is None else time.monotonic() + duration
    try:
        while timer.is_running() and (deadline is None or time.monotonic() < deadline):
            time.sleep(0.2)
    except KeyboardInterrupt:
        console.print("\nStopping...")
    finally:
        timer.cleanup()


if __name__ == "__main__":
    main()
