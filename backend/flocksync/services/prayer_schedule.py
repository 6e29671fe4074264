# FILE: backend/flocksync/services/prayer_schedule.py
# Per-tenant local time and the prayer session table used by the missed-prayer
# job. Pure functions: callers pass `now` in, nothing here reads the clock.

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from ..core.config import settings
from ..models.tenant import PrayerSchedule

logger = structlog.get_logger(__name__)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
EXCLUDED_WEEKDAY = "monday"
MINUTES_PER_DAY = 24 * 60

# weekday -> (start, end) local session time
DEFAULT_SESSIONS: Dict[str, Tuple[str, str]] = {
    "tuesday": ("04:30", "06:30"),
    "friday": ("04:30", "06:30"),
    "wednesday": ("04:00", "06:00"),
    "thursday": ("04:00", "06:00"),
    "saturday": ("05:00", "07:00"),
    "sunday": ("05:00", "07:00"),
}


@dataclass(frozen=True)
class LocalClock:
    timezone: str
    local: datetime

    @property
    def date(self) -> str:
        return self.local.strftime("%Y-%m-%d")

    @property
    def time(self) -> str:
        return self.local.strftime("%H:%M")

    @property
    def weekday(self) -> str:
        return WEEKDAY_NAMES[self.local.weekday()]

    @property
    def minute_of_day(self) -> int:
        return self.local.hour * 60 + self.local.minute


@dataclass(frozen=True)
class SessionInfo:
    start: str
    end: str
    disabled: bool = False

    @property
    def hours(self) -> float:
        return (to_minutes(self.end) - to_minutes(self.start)) / 60


NO_SESSION = SessionInfo("00:00", "00:00")


def to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def resolve_timezone(name: Optional[str]) -> Tuple[tzinfo, str, bool]:
    """Return (tzinfo, name, used_fallback). Unset or unknown names fall back."""
    candidate = (name or "").strip()
    if candidate:
        try:
            return ZoneInfo(candidate), candidate, False
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("prayer_schedule.unknown_timezone", timezone=candidate, fallback=settings.DEFAULT_TIMEZONE)
    return ZoneInfo(settings.DEFAULT_TIMEZONE), settings.DEFAULT_TIMEZONE, True


def local_clock(now: datetime, timezone_name: Optional[str]) -> LocalClock:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tz, name, _ = resolve_timezone(timezone_name)
    return LocalClock(timezone=name, local=now.astimezone(tz))


def tuesday_of_week(day: str) -> str:
    """Tuesday that opens the Tue..Sun prayer week containing `day`.

    Monday belongs to the previous week.
    """
    d = date.fromisoformat(day)
    offset = (d.weekday() - 1) % 7
    return (d - timedelta(days=offset)).isoformat()


def weekday_of(day: str) -> str:
    return WEEKDAY_NAMES[date.fromisoformat(day).weekday()]


def _disabled_in(schedule: Optional[PrayerSchedule], day_name: str, day: str) -> bool:
    if schedule is None:
        return False
    disabled_from = schedule.disabled_days.get(day_name)
    return bool(disabled_from) and day >= disabled_from


def session_info(day: str, schedules: Optional[Sequence[PrayerSchedule]] = None) -> SessionInfo:
    """Session for a local date: week schedule, then permanent schedule, then defaults."""
    day_name = weekday_of(day)
    if day_name == EXCLUDED_WEEKDAY:
        return NO_SESSION

    default = DEFAULT_SESSIONS[day_name]
    if not schedules:
        return SessionInfo(*default)

    week_start = tuesday_of_week(day)
    week_schedule = next((s for s in schedules if not s.is_permanent and s.week_start == week_start), None)
    permanent = next((s for s in schedules if s.is_permanent and s.id == "default"), None)

    if _disabled_in(week_schedule, day_name, day) or _disabled_in(permanent, day_name, day):
        return SessionInfo("00:00", "00:00", disabled=True)

    for schedule in (week_schedule, permanent):
        if schedule is not None and day_name in schedule.times:
            times = schedule.times[day_name]
            return SessionInfo(times.start, times.end)

    return SessionInfo(*default)


def in_missed_window(clock: LocalClock, session: SessionInfo, window_minutes: Optional[int] = None) -> bool:
    """True from one minute after the session ends, for `window_minutes` minutes.

    The window never runs past local midnight: after that the local date has
    moved on and the session belongs to the previous day.
    """
    if session.disabled or session.hours <= 0:
        return False
    window = window_minutes if window_minutes is not None else settings.MISSED_WINDOW_MINUTES
    opens = to_minutes(session.end) + 1
    closes = min(opens + window, MINUTES_PER_DAY)
    return opens <= clock.minute_of_day < closes
