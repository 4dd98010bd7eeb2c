"""
Configuration constants for the study workflow services.

This module centralizes the magic numbers, strings, and tuning values used by
the workflow, assignment, query, and turnaround-time code, making them easy to
find, understand, and modify.

Design Principle:
    "Don't Repeat Yourself" - All configuration in one place
    "Self-Documenting Code" - Constants with clear names and documentation

Any value may be overridden per deployment through the ``STUDY_WORKFLOW``
Django setting, e.g. ``STUDY_WORKFLOW = {'MAX_PAGE_SIZE': 500}``.

Usage:
    >>> from common.config import ServiceConfig
    >>> ServiceConfig.get('MAX_PAGE_SIZE')
    1000
"""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.utils.timezone import is_naive
from django.utils.timezone import now as current_time


class ServiceConfig:
    """Service layer configuration constants.

    These values control business logic behavior in the assignment engine,
    report lifecycle controller, query engine and TAT calculator.
    """

    # ========== Timezone Configuration ==========

    DEFAULT_TIMEZONE_OFFSET_MINUTES: int = 330
    """Fixed UTC offset (minutes) used for calendar presets when no tz is given.

    Operational deployments run on Indian Standard Time (+05:30). Calendar
    presets such as ``today`` and ``thisWeek`` are computed against midnight
    in this offset, then converted to absolute instants.
    """

    # ========== Pagination Configuration ==========

    DEFAULT_PAGE_SIZE: int = 50
    """Default number of items per page when limit not specified."""

    MAX_PAGE_SIZE: int = 1000
    """Maximum allowed page size.

    Caller-supplied limits above this bound are clamped, never rejected.
    """

    MIN_PAGE_SIZE: int = 1
    """Minimum allowed page size. Smaller values use DEFAULT_PAGE_SIZE."""

    # ========== Concurrency Configuration ==========

    MAX_MUTATION_RETRIES: int = 3
    """Attempts for one optimistic read-modify-write cycle.

    Each attempt reloads the study, re-validates the business rules and
    issues a version-guarded UPDATE. When every attempt loses the race,
    ConcurrentModificationError is raised to the caller.
    """

    # ========== Blob Storage Configuration ==========

    BLOB_STORE_TIMEOUT_SECONDS: float = 10.0
    """Upper bound for a single BlobStore call.

    Exceeding it raises StorageTimeoutError; the dependent status
    transition is not committed.
    """

    BLOB_STORE_MAX_WORKERS: int = 4
    """Worker threads used to bound BlobStore calls with a timeout."""

    REPORT_CONTENT_TYPE: str = "text/plain; charset=utf-8"
    """Content type used when storing submitted report bodies."""

    # ========== SLA / TAT Configuration ==========

    URGENT_PRIORITIES: tuple[str, ...] = ("URGENT", "STAT", "EMERGENCY")
    """Priorities treated as urgent for SLA thresholds and dashboard counts."""

    SLA_THRESHOLD_HOURS: dict[str, int] = {
        "EMERGENCY": 24,
        "STAT": 24,
        "URGENT": 24,
        "NORMAL": 72,
    }
    """Hours allowed before an unfinalized study is flagged overdue.

    Elapsed time is measured from the latest assignment, or from upload
    when the study has never been assigned. Unknown priorities use NORMAL.
    """

    TAT_UNKNOWN_LABEL: str = "unknown"
    """Display value for a TAT delta whose endpoints are missing."""

    # ========== Cache Configuration ==========

    DOCTOR_STATS_CACHE_KEY_PREFIX: str = "study_doctor_stats"
    """Cache key prefix for per-doctor dashboard statistics."""

    DOCTOR_STATS_CACHE_TTL: int = 60
    """Seconds a doctor's statistics stay cached.

    Read paths tolerate eventually-consistent counters, so mutations do not
    invalidate this entry.
    """

    FILTER_OPTIONS_CACHE_KEY: str = "study_filter_options"
    """Cache key for distinct filter values (modalities, labs, priorities)."""

    FILTER_OPTIONS_CACHE_TTL: int = 24 * 60 * 60  # 24 hours
    """Time-to-live for filter options cache in seconds."""

    @classmethod
    def get(cls, name: str) -> Any:
        """Resolve a setting, preferring ``settings.STUDY_WORKFLOW[name]``."""
        overrides = getattr(settings, "STUDY_WORKFLOW", None) or {}
        if name in overrides:
            return overrides[name]
        return getattr(cls, name)

    @classmethod
    def sla_threshold(cls, priority: str | None) -> timedelta:
        thresholds = cls.get("SLA_THRESHOLD_HOURS")
        hours = thresholds.get((priority or "NORMAL").upper(), thresholds["NORMAL"])
        return timedelta(hours=hours)


def default_timezone() -> tzinfo:
    """The fixed operational offset (+05:30 unless overridden)."""
    minutes = ServiceConfig.get("DEFAULT_TIMEZONE_OFFSET_MINUTES")
    return timezone(timedelta(minutes=minutes))


def resolve_timezone(value: tzinfo | str | None = None) -> tzinfo:
    """
    Normalize a timezone argument.

    Accepts None (operational default), a tzinfo instance, an IANA name
    such as ``'Asia/Kolkata'``, or a fixed offset string such as ``'+05:30'``,
    ``'+0530'`` or ``'+05'``.

    Raises:
        ValueError: If the value cannot be interpreted as a timezone
    """
    if value is None:
        return default_timezone()
    if isinstance(value, tzinfo):
        return value

    text = str(value).strip()
    if text.upper() in ("UTC", "Z"):
        return timezone.utc
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        body = text[1:]
        if ":" in body:
            hours, _, minutes = body.partition(":")
        else:
            hours, minutes = body[:2], body[2:]
        try:
            if len(hours) > 2 or len(minutes) > 2 or int(minutes or 0) >= 60:
                raise ValueError(value)
            offset = timedelta(hours=int(hours), minutes=int(minutes or 0))
            return timezone(sign * offset)
        except ValueError:
            raise ValueError(f"Invalid UTC offset: {value}") from None
    try:
        return ZoneInfo(text)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {value}") from None


def resolve_now(now: datetime | None = None, tz: tzinfo | str | None = None) -> datetime:
    """
    Reference instant for an operation.

    None means the current time. A naive value is read as local time in
    ``tz``, the same way the date-window resolver reads it.
    """
    if now is None:
        return current_time()
    if is_naive(now):
        return now.replace(tzinfo=resolve_timezone(tz))
    return now
