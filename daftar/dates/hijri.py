"""
Gregorian <-> Hijri Conversion

DESIGN DECISION: Conversion uses the tabular Islamic calendar (civil
epoch, 30-year cycle with 11 leap years) through the Julian day number.
It is pure integer arithmetic:
1. No calendar service or locale data is consulted
2. The same Gregorian date maps to the same Hijri date on every device
3. Results are stable across timezones (only the calendar date is used)

Tabular dates can differ by a day from the observation-based or Umm
al-Qura calendars. That is accepted: labels must be deterministic.
"""

from datetime import date, datetime
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from daftar.errors import DateOutOfRangeError, InvalidInputError


MIN_SUPPORTED_DATE = date(1900, 1, 1)
MAX_SUPPORTED_DATE = date(2100, 12, 31)

# Julian day number of 1 Muharram 1 AH (civil epoch, 16 July 622 Julian)
HIJRI_EPOCH_JDN = 1948440

# Index 0 is Monday, matching date.weekday()
WEEKDAY_NAMES_AR = (
    "الاثنين",
    "الثلاثاء",
    "الأربعاء",
    "الخميس",
    "الجمعة",
    "السبت",
    "الأحد",
)

HIJRI_MONTH_NAMES_AR = (
    "محرم",
    "صفر",
    "ربيع الأول",
    "ربيع الآخر",
    "جمادى الأولى",
    "جمادى الآخرة",
    "رجب",
    "شعبان",
    "رمضان",
    "شوال",
    "ذو القعدة",
    "ذو الحجة",
)

# Leap years within the 30-year cycle
_LEAP_YEARS_IN_CYCLE = frozenset({2, 5, 7, 10, 13, 16, 18, 21, 24, 26, 29})


DateLike = Union[date, datetime]


class HijriDate(BaseModel):
    """A date in the tabular Hijri calendar."""
    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=1)
    month: int = Field(..., ge=1, le=12)
    day: int = Field(..., ge=1, le=30)

    @property
    def month_name(self) -> str:
        return HIJRI_MONTH_NAMES_AR[self.month - 1]

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


class DateBox(BaseModel):
    """Three independently formatted labels for compact display."""
    model_config = ConfigDict(frozen=True)

    gregorian: str
    hijri: str
    day: str


def _as_date(value: DateLike) -> date:
    """Reduce datetimes to their calendar date and check the supported span."""
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        raise InvalidInputError(f"Not a date: {value!r}")
    if value < MIN_SUPPORTED_DATE or value > MAX_SUPPORTED_DATE:
        raise DateOutOfRangeError(
            f"{value.isoformat()} is outside the supported range "
            f"{MIN_SUPPORTED_DATE.isoformat()}..{MAX_SUPPORTED_DATE.isoformat()}"
        )
    return value


def ensure_supported(value: DateLike) -> date:
    """
    Validate that a date can be converted.

    Returns the plain date (datetimes are truncated).
    Raises DateOutOfRangeError otherwise.
    """
    return _as_date(value)


def gregorian_to_jdn(value: date) -> int:
    """Julian day number of a proleptic Gregorian date."""
    a = (14 - value.month) // 12
    y = value.year + 4800 - a
    m = value.month + 12 * a - 3
    return (
        value.day
        + (153 * m + 2) // 5
        + 365 * y
        + y // 4
        - y // 100
        + y // 400
        - 32045
    )


def jdn_to_gregorian(jdn: int) -> date:
    """Proleptic Gregorian date of a Julian day number."""
    a = jdn + 32044
    b = (4 * a + 3) // 146097
    c = a - (146097 * b) // 4
    d = (4 * c + 3) // 1461
    e = c - (1461 * d) // 4
    m = (5 * e + 2) // 153
    day = e - (153 * m + 2) // 5 + 1
    month = m + 3 - 12 * (m // 10)
    year = 100 * b + d - 4800 + m // 10
    return date(year, month, day)


def is_hijri_leap_year(year: int) -> bool:
    """True if the Hijri year has 355 days in the tabular calendar."""
    return (year % 30) in _LEAP_YEARS_IN_CYCLE


def hijri_month_length(year: int, month: int) -> int:
    """Odd months have 30 days, even months 29; Dhu al-Hijjah gains a day in leap years."""
    if month % 2 == 1:
        return 30
    if month == 12 and is_hijri_leap_year(year):
        return 30
    return 29


def gregorian_to_hijri(value: DateLike) -> HijriDate:
    """
    Convert a Gregorian date to the tabular Hijri calendar.

    Raises DateOutOfRangeError outside 1900-01-01..2100-12-31.
    """
    jdn = gregorian_to_jdn(_as_date(value))

    l = jdn - HIJRI_EPOCH_JDN + 10632
    n = (l - 1) // 10631
    l = l - 10631 * n + 354
    j = ((10985 - l) // 5316) * ((50 * l) // 17719) + (l // 5670) * ((43 * l) // 15238)
    l = l - ((30 - j) // 15) * ((17719 * j) // 50) - (j // 16) * ((15238 * j) // 43) + 29
    month = (24 * l) // 709
    day = l - (709 * month) // 24
    year = 30 * n + j - 30

    return HijriDate(year=year, month=month, day=day)


def hijri_to_gregorian(year: int, month: int, day: int) -> date:
    """
    Convert a tabular Hijri date back to the Gregorian calendar.

    Raises DateOutOfRangeError for impossible Hijri dates or results
    outside the supported Gregorian span.
    """
    if year < 1 or not 1 <= month <= 12:
        raise DateOutOfRangeError(f"Invalid Hijri date: {year}-{month}-{day}")
    if not 1 <= day <= hijri_month_length(year, month):
        raise DateOutOfRangeError(
            f"Hijri month {year}-{month:02d} has {hijri_month_length(year, month)} days, got {day}"
        )

    jdn = (
        (11 * year + 3) // 30
        + 354 * year
        + 30 * month
        - (month - 1) // 2
        + day
        + HIJRI_EPOCH_JDN
        - 385
    )
    return _as_date(jdn_to_gregorian(jdn))


def day_name(value: DateLike) -> str:
    """Arabic weekday name."""
    return WEEKDAY_NAMES_AR[_as_date(value).weekday()]


def format_hijri(hijri: HijriDate) -> str:
    """Format as e.g. '19 جمادى الآخرة 1445 هـ'."""
    return f"{hijri.day} {hijri.month_name} {hijri.year} هـ"


def format_gregorian(value: DateLike) -> str:
    """Format as DD/MM/YYYY."""
    return _as_date(value).strftime("%d/%m/%Y")


def format_date_box(value: DateLike) -> DateBox:
    """
    Build the three display labels for a date.

    The Hijri conversion is done once and reused.
    """
    plain = _as_date(value)
    hijri = gregorian_to_hijri(plain)
    return DateBox(
        gregorian=format_gregorian(plain),
        hijri=format_hijri(hijri),
        day=WEEKDAY_NAMES_AR[plain.weekday()],
    )
