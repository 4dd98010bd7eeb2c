"""
Test cases for TimeWindowResolver.

Reference instant: Wednesday 2024-11-13 15:30 at +05:30 unless stated.
"""

from datetime import date, datetime, timedelta, timezone

from django.test import SimpleTestCase

from common.exceptions import InvalidSearchParameterError, NoFilterError
from study.time_windows import TimeWindow, TimeWindowResolver
from tests.fixtures.test_data import DateTimeHelper

IST = DateTimeHelper.IST
NOW = DateTimeHelper.REFERENCE_NOW


class PresetWindowTests(SimpleTestCase):
    """Calendar and duration presets."""

    def test_last24h_is_pure_duration(self):
        # Act
        window = TimeWindowResolver.resolve('last24h', NOW, IST)

        # Assert
        self.assertEqual(window.start, NOW - timedelta(hours=24))
        self.assertEqual(window.end, NOW)

    def test_last24h_ignores_timezone(self):
        ist = TimeWindowResolver.resolve('last24h', NOW, IST)
        utc = TimeWindowResolver.resolve('last24h', NOW, 'UTC')

        self.assertEqual(ist.start, utc.start)
        self.assertEqual(ist.end, utc.end)

    def test_today_starts_at_local_midnight(self):
        window = TimeWindowResolver.resolve('today', NOW, IST)

        self.assertEqual(window.start, datetime(2024, 11, 13, 0, 0, tzinfo=IST))
        self.assertEqual(window.end, NOW)

    def test_today_uses_configured_timezone_not_utc(self):
        """01:00 IST is still the previous day in UTC."""
        now = datetime(2024, 11, 13, 1, 0, tzinfo=IST)

        window = TimeWindowResolver.resolve('today', now)

        self.assertEqual(window.start, datetime(2024, 11, 13, 0, 0, tzinfo=IST))
        self.assertEqual(window.start.astimezone(timezone.utc), datetime(2024, 11, 12, 18, 30, tzinfo=timezone.utc))

    def test_yesterday_is_full_previous_day(self):
        window = TimeWindowResolver.resolve('yesterday', NOW, IST)

        self.assertEqual(window.start, datetime(2024, 11, 12, 0, 0, tzinfo=IST))
        self.assertEqual(window.end, datetime(2024, 11, 13, 0, 0, tzinfo=IST))

    def test_this_week_starts_on_sunday(self):
        window = TimeWindowResolver.resolve('thisWeek', NOW, IST)

        self.assertEqual(window.start, datetime(2024, 11, 10, 0, 0, tzinfo=IST))
        self.assertEqual(window.end, NOW)

    def test_this_week_on_sunday_starts_same_day(self):
        sunday = datetime(2024, 11, 10, 9, 0, tzinfo=IST)

        window = TimeWindowResolver.resolve('thisWeek', sunday, IST)

        self.assertEqual(window.start, datetime(2024, 11, 10, 0, 0, tzinfo=IST))

    def test_this_month_and_year(self):
        month = TimeWindowResolver.resolve('thisMonth', NOW, IST)
        year = TimeWindowResolver.resolve('thisYear', NOW, IST)

        self.assertEqual(month.start, datetime(2024, 11, 1, tzinfo=IST))
        self.assertEqual(year.start, datetime(2024, 1, 1, tzinfo=IST))
        self.assertEqual(month.end, NOW)
        self.assertEqual(year.end, NOW)

    def test_naive_now_is_read_in_tz(self):
        window = TimeWindowResolver.resolve('today', datetime(2024, 11, 13, 15, 30), IST)

        self.assertEqual(window.start, datetime(2024, 11, 13, tzinfo=IST))

    def test_windows_are_half_open(self):
        window = TimeWindowResolver.resolve('yesterday', NOW, IST)

        self.assertTrue(window.contains(datetime(2024, 11, 12, 0, 0, tzinfo=IST)))
        self.assertFalse(window.contains(datetime(2024, 11, 13, 0, 0, tzinfo=IST)))

    def test_iana_timezone_name(self):
        window = TimeWindowResolver.resolve('today', NOW, 'Asia/Kolkata')

        self.assertEqual(window.start.astimezone(IST), datetime(2024, 11, 13, tzinfo=IST))


class CustomWindowTests(SimpleTestCase):
    """The custom preset."""

    def test_custom_covers_whole_days_inclusive(self):
        window = TimeWindowResolver.resolve('custom', NOW, IST, '2024-11-01', '2024-11-05')

        self.assertEqual(window.start, datetime(2024, 11, 1, tzinfo=IST))
        self.assertEqual(window.end, datetime(2024, 11, 5, 23, 59, 59, 999000, tzinfo=IST))
        self.assertTrue(window.contains(window.end))

    def test_custom_open_ended_bounds(self):
        from_only = TimeWindowResolver.resolve('custom', NOW, IST, custom_from='2024-11-01')
        to_only = TimeWindowResolver.resolve('custom', NOW, IST, custom_to='2024-11-05')

        self.assertIsNone(from_only.end)
        self.assertIsNone(to_only.start)
        self.assertTrue(from_only.contains(datetime(2030, 1, 1, tzinfo=IST)))

    def test_custom_without_bounds_is_no_filter(self):
        with self.assertRaises(NoFilterError):
            TimeWindowResolver.resolve('custom', NOW, IST)

    def test_custom_rejects_malformed_date(self):
        with self.assertRaises(InvalidSearchParameterError) as ctx:
            TimeWindowResolver.resolve('custom', NOW, IST, '2024-13-01', None)

        self.assertEqual(ctx.exception.param, 'custom_from')

    def test_custom_rejects_reversed_range(self):
        with self.assertRaises(InvalidSearchParameterError):
            TimeWindowResolver.resolve('custom', NOW, IST, '2024-11-05', '2024-11-01')

    def test_date_bounds_for_date_only_fields(self):
        window = TimeWindowResolver.resolve('custom', NOW, IST, '2024-11-01', '2024-11-05')

        self.assertEqual(window.date_bounds(), (date(2024, 11, 1), date(2024, 11, 5)))


class UnknownPresetTests(SimpleTestCase):

    def test_unknown_preset_raises_no_filter(self):
        with self.assertRaises(NoFilterError) as ctx:
            TimeWindowResolver.resolve('lastDecade', NOW, IST)

        self.assertEqual(ctx.exception.preset, 'lastDecade')

    def test_assigned_today_is_not_a_resolver_preset(self):
        with self.assertRaises(NoFilterError):
            TimeWindowResolver.resolve('assignedToday', NOW, IST)

    def test_half_open_date_bounds_exclude_end_day(self):
        window = TimeWindow(
            datetime(2024, 11, 12, tzinfo=IST),
            datetime(2024, 11, 13, tzinfo=IST),
            IST,
        )

        self.assertEqual(window.date_bounds(), (date(2024, 11, 12), date(2024, 11, 12)))
