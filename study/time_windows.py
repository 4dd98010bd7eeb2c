"""
Date-range presets resolved to exact instant windows.

Calendar presets (today, yesterday, thisWeek, thisMonth, thisYear) are cut at
midnight in the configured timezone, then expressed as absolute instants.
``last24h`` is a pure duration and ignores the timezone. The "this*" presets
and ``today`` end at ``now``: they are "elapsed so far" windows, which is what
the default dashboard views show.

``now`` and ``tz`` are always passed in; nothing here reads the clock.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from common.config import resolve_timezone
from common.exceptions import InvalidSearchParameterError, NoFilterError


@dataclass(frozen=True)
class TimeWindow:
    """
    Instant interval ``[start, end)``, or ``[start, end]`` when end_inclusive.

    A None bound is open-ended on that side.
    """

    start: datetime | None
    end: datetime | None
    tz: tzinfo
    end_inclusive: bool = False

    def contains(self, instant: datetime) -> bool:
        if self.start is not None and instant < self.start:
            return False
        if self.end is not None:
            if self.end_inclusive:
                return instant <= self.end
            return instant < self.end
        return True

    def date_bounds(self) -> tuple[date | None, date | None]:
        """Inclusive calendar-date bounds in ``tz``, for date-only fields."""
        first = self.start.astimezone(self.tz).date() if self.start is not None else None
        last = None
        if self.end is not None:
            end = self.end if self.end_inclusive else self.end - timedelta(microseconds=1)
            last = end.astimezone(self.tz).date()
        return first, last


class TimeWindowResolver:
    """
    Resolves a named preset against a reference instant and timezone.

    Presets:
        last24h    [now - 24h, now)
        today      [local midnight, now)
        yesterday  [previous local midnight, local midnight)
        thisWeek   [most recent Sunday midnight, now)
        thisMonth  [1st of month midnight, now)
        thisYear   [1 January midnight, now)
        custom     [from 00:00:00, to 23:59:59.999], either side optional

    Anything else raises NoFilterError; callers treat it as "no date
    restriction". ``assignedToday`` is not a preset here: callers switch the
    date field to the assignment timestamp and resolve ``today``.
    """

    LAST_24H = 'last24h'
    TODAY = 'today'
    YESTERDAY = 'yesterday'
    THIS_WEEK = 'thisWeek'
    THIS_MONTH = 'thisMonth'
    THIS_YEAR = 'thisYear'
    CUSTOM = 'custom'

    PRESETS = (LAST_24H, TODAY, YESTERDAY, THIS_WEEK, THIS_MONTH, THIS_YEAR, CUSTOM)

    END_OF_DAY = time(23, 59, 59, 999000)

    @classmethod
    def resolve(
        cls,
        preset: str | None,
        now: datetime,
        tz: tzinfo | str | None = None,
        custom_from: str | date | None = None,
        custom_to: str | date | None = None,
    ) -> TimeWindow:
        """
        Resolve ``preset`` to a TimeWindow.

        Args:
            preset: One of PRESETS
            now: Reference instant; a naive value is read as local time in tz
            tz: Timezone for calendar boundaries (default fixed +05:30)
            custom_from: First day (YYYY-MM-DD) for the custom preset
            custom_to: Last day (YYYY-MM-DD, inclusive) for the custom preset

        Raises:
            NoFilterError: Unknown preset, or custom without any bound
            InvalidSearchParameterError: Malformed custom date
        """
        zone = resolve_timezone(tz)
        if now.tzinfo is None:
            now = now.replace(tzinfo=zone)

        if preset == cls.LAST_24H:
            return TimeWindow(now - timedelta(hours=24), now, zone)

        if preset == cls.CUSTOM:
            return cls._custom(zone, custom_from, custom_to)

        local_now = now.astimezone(zone)
        midnight = datetime.combine(local_now.date(), time.min, tzinfo=zone)

        if preset == cls.TODAY:
            return TimeWindow(midnight, now, zone)
        if preset == cls.YESTERDAY:
            return TimeWindow(midnight - timedelta(days=1), midnight, zone)
        if preset == cls.THIS_WEEK:
            # weekday(): Monday == 0 ... Sunday == 6
            days_since_sunday = (local_now.weekday() + 1) % 7
            return TimeWindow(midnight - timedelta(days=days_since_sunday), now, zone)
        if preset == cls.THIS_MONTH:
            return TimeWindow(midnight.replace(day=1), now, zone)
        if preset == cls.THIS_YEAR:
            return TimeWindow(midnight.replace(month=1, day=1), now, zone)

        raise NoFilterError(preset)

    @classmethod
    def _custom(cls, zone: tzinfo, custom_from, custom_to) -> TimeWindow:
        first = cls.parse_date('custom_from', custom_from)
        last = cls.parse_date('custom_to', custom_to)
        if first is None and last is None:
            raise NoFilterError(cls.CUSTOM)
        if first is not None and last is not None and last < first:
            raise InvalidSearchParameterError('custom_to', custom_to, 'Must not be before custom_from')

        start = datetime.combine(first, time.min, tzinfo=zone) if first else None
        end = datetime.combine(last, cls.END_OF_DAY, tzinfo=zone) if last else None
        return TimeWindow(start, end, zone, end_inclusive=True)

    @staticmethod
    def parse_date(param: str, value: str | date | None) -> date | None:
        if value is None or value == '':
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            raise InvalidSearchParameterError(param, value, 'Must be YYYY-MM-DD format') from None
