"""Course window derivation from a medical-exam date.

All values are calendar dates (``datetime.date``); nothing here carries a
time component, so windows never drift across timezones.
"""
from dataclasses import dataclass
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from coursedesk.config import settings

MONDAY = 0


@dataclass(frozen=True)
class CourseWindow:
    course_start_date: date
    course_end_date: date


def parse_iso_date(value: date | str) -> date:
    """Accept a ``date`` or an ISO ``YYYY-MM-DD`` string.

    Unparseable strings raise ``ValueError`` from ``date.fromisoformat``.
    """
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip())


def to_iso(value: date) -> str:
    return value.isoformat()


def is_monday(value: date) -> bool:
    return value.weekday() == MONDAY


def next_monday(value: date | str) -> date:
    """Return ``value`` if it is a Monday, otherwise the following Monday."""
    day = parse_iso_date(value)
    days_until_monday = (MONDAY - day.weekday()) % 7
    return day + timedelta(days=days_until_monday)


def course_end_for(course_start_date: date) -> date:
    return course_start_date + timedelta(days=settings.course_length_days)


def compute_course_dates(medical_date: date | str) -> CourseWindow:
    start = next_monday(medical_date)
    return CourseWindow(course_start_date=start, course_end_date=course_end_for(start))


def is_medical_valid_for_course(medical_date: date | str, course_start_date: date | str) -> bool:
    """The exam must not be after the course start and not older than the
    configured number of calendar months before it."""
    medical = parse_iso_date(medical_date)
    course_start = parse_iso_date(course_start_date)
    if medical > course_start:
        return False
    earliest_valid = course_start - relativedelta(months=settings.medical_validity_months)
    return medical >= earliest_valid
