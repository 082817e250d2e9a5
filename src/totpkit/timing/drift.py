"""Clock drift checks. Codes are only accepted if both sides agree on the time."""

from __future__ import annotations

import logging
import time

from totpkit.config import Settings
from totpkit.config import settings as default_settings
from totpkit.models import DriftSeverity, TimeSyncStatus

logger = logging.getLogger(__name__)


def calculate_offset(reference_ms: int, local_ms: int) -> int:
    return reference_ms - local_ms


def assess_time_sync(
    reference_ms: int,
    local_ms: int | None = None,
    settings: Settings | None = None,
) -> TimeSyncStatus:
    """Compare the local clock with a trusted reference time (both Unix ms).

    The reference comes from the caller (an HTTP Date header, NTP, a server
    response); nothing here touches the network.
    """
    settings = settings or default_settings
    if local_ms is None:
        local_ms = time.time_ns() // 1_000_000
    offset = calculate_offset(reference_ms, local_ms)

    drift = abs(offset)
    if drift >= settings.drift_error_ms:
        severity = DriftSeverity.ERROR
        logger.warning("Clock is off by %dms; codes will likely be rejected", offset)
    elif drift >= settings.drift_warning_ms:
        severity = DriftSeverity.WARNING
        logger.info("Clock is off by %dms", offset)
    else:
        severity = DriftSeverity.OK

    return TimeSyncStatus(
        is_synced=severity is DriftSeverity.OK,
        offset_ms=offset,
        severity=severity,
    )
