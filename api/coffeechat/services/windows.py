from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from ..config import SCHEDULE_TIMEZONE, SIGNUP_DAY_OF_WEEK, SIGNUP_END_HOUR, SIGNUP_START_HOUR

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


@dataclass(frozen=True)
class SignupWindow:
    day_of_week: int
    start_hour: int
    end_hour: int


DEFAULT_WINDOW = SignupWindow(SIGNUP_DAY_OF_WEEK, SIGNUP_START_HOUR, SIGNUP_END_HOUR)


def _int_in_range(value: Any, lo: int, hi: int) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and value != parsed:
        return None
    if parsed < lo or parsed > hi:
        return None
    return parsed


def _pick(source: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if source.get(key) is not None:
            return source[key]
    return None


def resolve_window(schedule: dict[str, Any] | SignupWindow | None, default: SignupWindow = DEFAULT_WINDOW) -> SignupWindow:
    """Resolve a tenant schedule override against the compiled-in default.

    Each field falls back independently. A window whose end is not after its
    start is repaired so callers never see an empty or inverted window.
    """
    if isinstance(schedule, SignupWindow):
        source: dict[str, Any] = {
            "day_of_week": schedule.day_of_week,
            "start_hour": schedule.start_hour,
            "end_hour": schedule.end_hour,
        }
    else:
        source = schedule or {}

    day = _int_in_range(_pick(source, "signup_day_of_week", "day_of_week"), 0, 6)
    start = _int_in_range(_pick(source, "signup_start_hour", "start_hour"), 0, 23)
    end = _int_in_range(_pick(source, "signup_end_hour", "end_hour"), 1, 23)

    day = default.day_of_week if day is None else day
    start = default.start_hour if start is None else start
    end = default.end_hour if end is None else end

    if end <= start:
        end = default.end_hour if default.end_hour > start else min(23, start + 1)
    # start=23 cannot be repaired inside one day; pull the start back instead
    if end <= start:
        start = end - 1

    return SignupWindow(day_of_week=day, start_hour=start, end_hour=end)


def reference_now(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(SCHEDULE_TIMEZONE))


def day_of_week(moment: datetime) -> int:
    # datetime.weekday() is Monday=0; the schedule uses Sunday=0
    return (moment.weekday() + 1) % 7


def is_window_open(now: datetime, schedule: dict[str, Any] | SignupWindow | None) -> bool:
    window = resolve_window(schedule)
    local = reference_now(now)
    if day_of_week(local) != window.day_of_week:
        return False
    return window.start_hour <= local.hour < window.end_hour


def get_week_start_date(now: datetime) -> date:
    local = reference_now(now)
    return local.date() - timedelta(days=local.weekday())


def history_since(now: datetime, weeks: int) -> date:
    # the current week counts as one of the `weeks`
    return get_week_start_date(now) - timedelta(days=7 * max(weeks - 1, 0))


def format_hour(hour24: int) -> str:
    hour12 = hour24 % 12 or 12
    suffix = "PM" if hour24 >= 12 else "AM"
    return f"{hour12}:00 {suffix}"


def describe_window(schedule: dict[str, Any] | SignupWindow | None) -> str:
    window = resolve_window(schedule)
    return f"{DAY_NAMES[window.day_of_week]} from {format_hour(window.start_hour)} to {format_hour(window.end_hour)} CT"


def format_date(moment: datetime) -> str:
    local = reference_now(moment)
    return f"{DAY_NAMES[day_of_week(local)]}, {local.strftime('%B')} {local.day}, {local.year}"
