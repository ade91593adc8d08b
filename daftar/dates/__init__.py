"""Calendar conversion package."""

from daftar.dates.hijri import (
    MAX_SUPPORTED_DATE,
    MIN_SUPPORTED_DATE,
    DateBox,
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

__all__ = [
    "MAX_SUPPORTED_DATE",
    "MIN_SUPPORTED_DATE",
    "DateBox",
    "HijriDate",
    "day_name",
    "ensure_supported",
    "format_date_box",
    "format_gregorian",
    "format_hijri",
    "gregorian_to_hijri",
    "hijri_month_length",
    "hijri_to_gregorian",
    "is_hijri_leap_year",
]
