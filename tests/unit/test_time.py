# PATH: tests/unit/test_time.py
"""
Unit tests for time utilities.
"""

import unittest
from datetime import datetime, timedelta, timezone

from core.time import age_ms, now_iso, now_ms, now_utc, parse_timestamp, today_utc


class TestNowFunctions(unittest.TestCase):
    """Tests for now_* functions."""

    def test_now_utc(self):
        """now_utc is timezone-aware."""
        self.assertIsNotNone(now_utc().tzinfo)

    def test_now_iso(self):
        iso = now_iso()
        self.assertIn("T", iso)
        self.assertIn("+", iso)

    def test_now_ms(self):
        self.assertGreater(now_ms(), 1_600_000_000_000)

    def test_today_utc(self):
        self.assertEqual(today_utc(), now_utc().date())


class TestAgeMs(unittest.TestCase):
    def test_age(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.assertEqual(age_ms(start, start + timedelta(seconds=1.5)), 1500)

    def test_future_timestamp_is_zero(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.assertEqual(age_ms(start, start - timedelta(seconds=1)), 0)


class TestParseTimestamp(unittest.TestCase):
    EXPECTED = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_iso_with_z(self):
        self.assertEqual(parse_timestamp("2024-01-01T00:00:00Z"), self.EXPECTED)

    def test_naive_assumed_utc(self):
        self.assertEqual(parse_timestamp("2024-01-01T00:00:00"), self.EXPECTED)
        self.assertEqual(parse_timestamp(datetime(2024, 1, 1)), self.EXPECTED)

    def test_unix_seconds_and_millis(self):
        self.assertEqual(parse_timestamp(1704067200), self.EXPECTED)
        self.assertEqual(parse_timestamp(1704067200000), self.EXPECTED)

    def test_unsupported(self):
        with self.assertRaises(TypeError):
            parse_timestamp(object())


if __name__ == "__main__":
    unittest.main()
