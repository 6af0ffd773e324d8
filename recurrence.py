import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ScheduleComputationError
from models import Frequency

logger = logging.getLogger(__name__)

# Fields that define when a schedule falls due. Edits to anything else keep
# the stored next due date.
SCHEDULE_SHAPE_FIELDS = (
    "frequency",
    "interval",
    "start_date",
    "day_of_month",
    "day_of_week",
    "month_of_year",
)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def _clamp_day(candidate: date, day_of_month: int) -> date:
    dim = days_in_month(candidate.year, candidate.month)
    return candidate.replace(day=max(1, min(day_of_month, dim)))


def sunday_based_weekday(d: date) -> int:
    """Weekday with 0 = Sunday .. 6 = Saturday."""
    return (d.weekday() + 1) % 7


def _step(start: date, frequency: Frequency, units: int) -> date:
    if frequency == Frequency.daily:
        return start + timedelta(days=units)
    if frequency == Frequency.weekly:
        return start + timedelta(weeks=units)
    if frequency == Frequency.monthly:
        return _add_months(start, units)
    return _add_months(start, 12 * units)


def _steps_past(start: date, frequency: Frequency, interval: int, now: date) -> int:
    """Smallest number of ``interval`` steps that moves ``start`` past ``now``."""
    if frequency in (Frequency.daily, Frequency.weekly):
        unit_days = 1 if frequency == Frequency.daily else 7
        return (now - start).days // (unit_days * interval) + 1

    months_per_step = interval if frequency == Frequency.monthly else 12 * interval
    elapsed = (now.year - start.year) * 12 + (now.month - start.month)
    steps = max(1, elapsed // months_per_step)
    # the estimate can land one step short (same month, earlier day) or
    # one step long
    while _step(start, frequency, steps * interval) <= now:
        steps += 1
    while steps > 1 and _step(start, frequency, (steps - 1) * interval) > now:
        steps -= 1
    return steps


def _align(
    candidate: date,
    frequency: Frequency,
    day_of_month: Optional[int],
    day_of_week: Optional[int],
    month_of_year: Optional[int],
) -> date:
    if frequency == Frequency.weekly and day_of_week is not None:
        shift = (day_of_week - sunday_based_weekday(candidate) + 7) % 7
        return candidate + timedelta(days=shift)
    if frequency == Frequency.monthly and day_of_month is not None:
        return _clamp_day(candidate, day_of_month)
    if (
        frequency == Frequency.yearly
        and month_of_year is not None
        and day_of_month is not None
    ):
        return _clamp_day(candidate.replace(day=1, month=month_of_year), day_of_month)
    return candidate


def _ignored_fields(
    frequency: Frequency,
    day_of_month: Optional[int],
    day_of_week: Optional[int],
    month_of_year: Optional[int],
) -> list[str]:
    ignored = []
    if day_of_week is not None and frequency != Frequency.weekly:
        ignored.append("day_of_week")
    if day_of_month is not None and frequency not in (
        Frequency.monthly,
        Frequency.yearly,
    ):
        ignored.append("day_of_month")
    if month_of_year is not None and frequency != Frequency.yearly:
        ignored.append("month_of_year")
    if frequency == Frequency.yearly and (day_of_month is None) != (
        month_of_year is None
    ):
        ignored.append("day_of_month" if day_of_month is not None else "month_of_year")
    return ignored


def next_due_date(
    start_date: date,
    frequency: Frequency,
    interval: int = 1,
    day_of_month: Optional[int] = None,
    day_of_week: Optional[int] = None,
    month_of_year: Optional[int] = None,
    now: Optional[date] = None,
) -> date:
    """Compute the next occurrence of a recurring schedule.

    A start date in the future is returned as is. Otherwise the start date is
    advanced by whole multiples of ``interval`` and aligned to the requested
    weekday (weekly), day of month (monthly) or month and day (yearly) until
    the result falls strictly after ``now``. Day alignment clamps to the
    length of the target month, so the 31st becomes the 30th in April and
    February 29th becomes the 28th outside leap years. Month and year steps
    are always measured from ``start_date`` so a short month does not shift
    later occurrences.

    Fields that do not apply to ``frequency`` are ignored.
    """
    try:
        frequency = Frequency(frequency)
    except ValueError as exc:
        raise ScheduleComputationError(f"Unknown frequency: {frequency}") from exc
    if interval < 1:
        raise ScheduleComputationError("Interval must be at least 1")

    now = now or local_today()
    if start_date > now:
        return start_date

    ignored = _ignored_fields(frequency, day_of_month, day_of_week, month_of_year)
    if ignored:
        logger.debug(
            f"next_due_date: frequency={frequency.value} ignored={','.join(ignored)}"
        )

    steps = _steps_past(start_date, frequency, interval, now)
    candidate = _align(
        _step(start_date, frequency, steps * interval),
        frequency,
        day_of_month,
        day_of_week,
        month_of_year,
    )
    # aligning to an earlier day or month can pull the step back to now
    while candidate <= now:
        steps += 1
        candidate = _align(
            _step(start_date, frequency, steps * interval),
            frequency,
            day_of_month,
            day_of_week,
            month_of_year,
        )
    return candidate


def shape_changed(current: object, incoming: object) -> bool:
    return any(
        getattr(current, field) != getattr(incoming, field)
        for field in SCHEDULE_SHAPE_FIELDS
    )
