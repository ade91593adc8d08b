"""Tests for Gregorian/Hijri conversion and date labels."""

from datetime import date, datetime

import pytest

from daftar.dates import (
    HijriDate,
    day_name,
    ensure_supported,
    format_date_box,
    format_gregorian,
    format_hijri,
    gregorian_to_hijri,
    hijri_month_length,
    hijri_to_gregorian,
    is_hijri_leap_year,
)
from daftar.dates.hijri import gregorian_to_jdn, jdn_to_gregorian
from daftar.errors import DateOutOfRangeError, InvalidInputError


KNOWN_DATES = [
    (date(2024, 1, 1), (1445, 6, 19)),
    (date(2024, 3, 11), (1445, 9, 1)),
    (date(2000, 1, 1), (1420, 9, 24)),
    (date(2025, 3, 1), (1446, 9, 1)),
    (date(2024, 7, 7), (1445, 12, 30)),
    (date(2024, 7, 8), (1446, 1, 1)),
    (date(2023, 6, 28), (1444, 12, 9)),
]


class TestGregorianToHijri:
    """Tabular conversion spot checks."""

    @pytest.mark.parametrize("gregorian,expected", KNOWN_DATES)
    def test_known_dates(self, gregorian, expected):
        hijri = gregorian_to_hijri(gregorian)
        assert (hijri.year, hijri.month, hijri.day) == expected

    @pytest.mark.parametrize("gregorian,expected", KNOWN_DATES)
    def test_inverse(self, gregorian, expected):
        assert hijri_to_gregorian(*expected) == gregorian

    def test_datetime_uses_calendar_date(self):
        assert gregorian_to_hijri(datetime(2024, 1, 1, 23, 59)) == gregorian_to_hijri(date(2024, 1, 1))

    def test_consecutive_days_advance_by_one(self):
        """Walking a whole year never skips or repeats a Hijri day."""
        previous = gregorian_to_hijri(date(2023, 12, 31))
        current_date = date(2024, 1, 1)
        for _ in range(366):
            current = gregorian_to_hijri(current_date)
            if current.day == 1:
                assert previous.day == hijri_month_length(previous.year, previous.month)
            else:
                assert current.day == previous.day + 1
                assert current.month == previous.month
            previous = current
            current_date = date.fromordinal(current_date.toordinal() + 1)

    def test_range_bounds(self):
        gregorian_to_hijri(date(1900, 1, 1))
        gregorian_to_hijri(date(2100, 12, 31))
        with pytest.raises(DateOutOfRangeError):
            gregorian_to_hijri(date(1899, 12, 31))
        with pytest.raises(DateOutOfRangeError):
            gregorian_to_hijri(date(2101, 1, 1))

    def test_rejects_non_dates(self):
        with pytest.raises(InvalidInputError):
            ensure_supported("2024-01-01")


class TestHijriCalendar:
    """Month lengths, leap years and the inverse conversion."""

    def test_leap_years(self):
        assert is_hijri_leap_year(1445)
        assert not is_hijri_leap_year(1446)
        assert is_hijri_leap_year(1442)

    def test_month_lengths(self):
        assert hijri_month_length(1446, 1) == 30
        assert hijri_month_length(1446, 2) == 29
        assert hijri_month_length(1446, 12) == 29
        assert hijri_month_length(1445, 12) == 30

    def test_rejects_impossible_day(self):
        with pytest.raises(DateOutOfRangeError):
            hijri_to_gregorian(1446, 12, 30)
        with pytest.raises(DateOutOfRangeError):
            hijri_to_gregorian(1446, 13, 1)

    def test_rejects_result_outside_range(self):
        with pytest.raises(DateOutOfRangeError):
            hijri_to_gregorian(1600, 1, 1)

    def test_jdn_round_trip(self):
        assert gregorian_to_jdn(date(2024, 1, 1)) == 2460311
        assert jdn_to_gregorian(2460311) == date(2024, 1, 1)


class TestFormatting:
    """Display labels."""

    def test_day_names(self):
        assert day_name(date(2024, 1, 1)) == "الاثنين"
        assert day_name(date(2000, 1, 1)) == "السبت"
        assert day_name(date(2024, 3, 15)) == "الجمعة"

    def test_format_hijri(self):
        assert format_hijri(HijriDate(year=1445, month=6, day=19)) == "19 جمادى الآخرة 1445 هـ"

    def test_format_gregorian(self):
        assert format_gregorian(date(2024, 3, 5)) == "05/03/2024"

    def test_date_box(self):
        box = format_date_box(date(2024, 3, 11))
        assert box.gregorian == "11/03/2024"
        assert box.hijri == "1 رمضان 1445 هـ"
        assert box.day == "الاثنين"

    def test_date_box_converts_once(self, monkeypatch):
        import daftar.dates.hijri as hijri_module

        calls = []
        original = hijri_module.gregorian_to_hijri

        def counting(value):
            calls.append(value)
            return original(value)

        monkeypatch.setattr(hijri_module, "gregorian_to_hijri", counting)
        format_date_box(date(2024, 1, 1))
        assert len(calls) == 1

    def test_hijri_date_str(self):
        assert str(HijriDate(year=1445, month=6, day=9)) == "1445-06-09"
