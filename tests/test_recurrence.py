from datetime import date
from types import SimpleNamespace

import pytest

from errors import ScheduleComputationError
from models import Frequency
from recurrence import next_due_date, shape_changed, sunday_based_weekday


def test_future_start_is_returned_unchanged():
    assert next_due_date(
        date(2025, 7, 1), Frequency.monthly, now=date(2025, 6, 1)
    ) == date(2025, 7, 1)


def test_daily_rolls_past_today():
    assert next_due_date(
        date(2025, 6, 1), Frequency.daily, now=date(2025, 6, 10)
    ) == date(2025, 6, 11)


def test_start_today_is_not_due_again_today():
    assert next_due_date(
        date(2025, 6, 10), Frequency.daily, now=date(2025, 6, 10)
    ) == date(2025, 6, 11)


def test_daily_interval_keeps_start_phase():
    assert next_due_date(
        date(2025, 6, 1), Frequency.daily, interval=3, now=date(2025, 6, 10)
    ) == date(2025, 6, 13)


def test_weekday_numbering_starts_on_sunday():
    assert sunday_based_weekday(date(2025, 1, 5)) == 0
    assert sunday_based_weekday(date(2025, 1, 6)) == 1
    assert sunday_based_weekday(date(2025, 1, 11)) == 6


def test_weekly_on_same_weekday_lands_next_week():
    # Monday start, Wednesday today, due Mondays
    assert next_due_date(
        date(2025, 1, 6), Frequency.weekly, day_of_week=1, now=date(2025, 1, 8)
    ) == date(2025, 1, 13)


def test_weekly_shifts_forward_to_requested_weekday():
    # Friday is 5 with Sunday-based numbering
    assert next_due_date(
        date(2025, 1, 6), Frequency.weekly, day_of_week=5, now=date(2025, 1, 8)
    ) == date(2025, 1, 17)


def test_monthly_day_31_clamps_to_april_30():
    assert next_due_date(
        date(2025, 1, 31), Frequency.monthly, day_of_month=31, now=date(2025, 3, 31)
    ) == date(2025, 4, 30)


def test_monthly_day_31_clamps_to_february_in_leap_year():
    assert next_due_date(
        date(2024, 1, 31), Frequency.monthly, day_of_month=31, now=date(2024, 2, 1)
    ) == date(2024, 2, 29)


def test_monthly_day_31_clamps_to_february_outside_leap_year():
    assert next_due_date(
        date(2025, 1, 31), Frequency.monthly, day_of_month=31, now=date(2025, 2, 1)
    ) == date(2025, 2, 28)


def test_monthly_steps_do_not_drift_after_short_month():
    # Stepping is measured from the start date, so February does not pull
    # later occurrences back to the 28th.
    assert next_due_date(
        date(2025, 1, 31), Frequency.monthly, now=date(2025, 3, 15)
    ) == date(2025, 3, 31)


def test_monthly_interval_two():
    assert next_due_date(
        date(2025, 1, 15), Frequency.monthly, interval=2, now=date(2025, 4, 20)
    ) == date(2025, 5, 15)


def test_yearly_feb_29_outside_leap_year():
    assert next_due_date(
        date(2023, 1, 1),
        Frequency.yearly,
        day_of_month=29,
        month_of_year=2,
        now=date(2025, 6, 1),
    ) == date(2026, 2, 28)


def test_yearly_feb_29_in_leap_year():
    assert next_due_date(
        date(2023, 1, 1),
        Frequency.yearly,
        day_of_month=29,
        month_of_year=2,
        now=date(2027, 6, 1),
    ) == date(2028, 2, 29)


def test_yearly_without_month_and_day_keeps_anniversary():
    assert next_due_date(
        date(2020, 3, 10), Frequency.yearly, now=date(2025, 3, 10)
    ) == date(2026, 3, 10)


def test_fields_for_other_frequencies_are_ignored():
    plain = next_due_date(date(2025, 6, 1), Frequency.daily, now=date(2025, 6, 10))
    noisy = next_due_date(
        date(2025, 6, 1),
        Frequency.daily,
        day_of_week=3,
        day_of_month=20,
        month_of_year=11,
        now=date(2025, 6, 10),
    )
    assert noisy == plain


def test_accepts_frequency_as_string():
    assert next_due_date(
        date(2025, 6, 1), "weekly", now=date(2025, 6, 3)
    ) == date(2025, 6, 8)


def test_unknown_frequency_raises():
    with pytest.raises(ScheduleComputationError):
        next_due_date(date(2025, 1, 1), "hourly", now=date(2025, 2, 1))


def test_interval_below_one_raises():
    with pytest.raises(ScheduleComputationError):
        next_due_date(date(2025, 1, 1), Frequency.daily, interval=0, now=date(2025, 2, 1))


def test_shape_changed_only_for_timing_fields():
    current = SimpleNamespace(
        frequency=Frequency.monthly,
        interval=1,
        start_date=date(2025, 1, 1),
        day_of_month=15,
        day_of_week=None,
        month_of_year=None,
        name="Rent",
    )
    renamed = SimpleNamespace(**{**vars(current), "name": "Office rent"})
    moved = SimpleNamespace(**{**vars(current), "day_of_month": 20})
    assert not shape_changed(current, renamed)
    assert shape_changed(current, moved)


def test_alignment_to_earlier_day_moves_to_next_step():
    # June's step lands on the 15th, already behind the 20th
    assert next_due_date(
        date(2025, 1, 31), Frequency.monthly, day_of_month=15, now=date(2025, 6, 20)
    ) == date(2025, 7, 15)


def test_yearly_target_month_already_passed_moves_a_year():
    assert next_due_date(
        date(2024, 6, 1),
        Frequency.yearly,
        day_of_month=10,
        month_of_year=3,
        now=date(2025, 6, 2),
    ) == date(2026, 3, 10)


def test_weekly_target_earlier_than_stepped_weekday_lands_following_week():
    # Wednesday start steps to Wednesday the 15th; Monday the 13th is behind
    # it, so the shift goes forward to Monday the 20th
    assert next_due_date(
        date(2025, 1, 1), Frequency.weekly, day_of_week=1, now=date(2025, 1, 10)
    ) == date(2025, 1, 20)


def test_weekly_sunday_target_from_saturday_step():
    # Saturday the 18th, Sunday is 0
    assert next_due_date(
        date(2025, 1, 4), Frequency.weekly, day_of_week=0, now=date(2025, 1, 12)
    ) == date(2025, 1, 19)
