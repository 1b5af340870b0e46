from datetime import date

import pytest

from coursedesk.services.date_engine import (
    compute_course_dates,
    is_medical_valid_for_course,
    next_monday,
    parse_iso_date,
    to_iso,
)


@pytest.mark.parametrize(
    ("day", "expected"),
    [
        (date(2025, 3, 3), date(2025, 3, 3)),
        (date(2025, 3, 4), date(2025, 3, 10)),
        (date(2025, 3, 6), date(2025, 3, 10)),
        (date(2025, 3, 8), date(2025, 3, 10)),
        (date(2025, 3, 9), date(2025, 3, 10)),
    ],
)
def test_next_monday(day, expected):
    assert next_monday(day) == expected
    assert next_monday(next_monday(day)) == expected


def test_course_window_is_one_week_from_next_monday():
    window = compute_course_dates("2025-03-05")

    assert window.course_start_date == date(2025, 3, 10)
    assert window.course_end_date == date(2025, 3, 17)
    assert to_iso(window.course_start_date) == "2025-03-10"


def test_course_window_crosses_year_boundary():
    window = compute_course_dates(date(2025, 12, 31))

    assert window.course_start_date == date(2026, 1, 5)
    assert window.course_end_date == date(2026, 1, 12)


def test_invalid_date_string_raises():
    with pytest.raises(ValueError):
        compute_course_dates("2025-02-30")
    with pytest.raises(ValueError):
        parse_iso_date("next tuesday")


def test_medical_validity_bounds():
    start = date(2025, 3, 10)

    assert is_medical_valid_for_course(date(2025, 3, 10), start)
    assert is_medical_valid_for_course(date(2024, 9, 10), start)
    assert not is_medical_valid_for_course(date(2024, 9, 9), start)
    assert not is_medical_valid_for_course(date(2025, 3, 11), start)


def test_medical_validity_uses_calendar_months():
    # Six months before 31 August is 28 February.
    assert is_medical_valid_for_course("2025-02-28", "2025-08-31")
    assert not is_medical_valid_for_course("2025-02-27", "2025-08-31")


def test_mid_january_exam():
    window = compute_course_dates("2025-01-15")

    assert window.course_start_date == date(2025, 1, 20)
    assert window.course_end_date == date(2025, 1, 27)
