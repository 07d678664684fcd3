from datetime import datetime
from typing import Optional, Tuple
import pytz

DEFAULT_TZ = "UTC"

SERVER_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%SZ",
)

def get_timezone(name: Optional[str] = None):
    return pytz.timezone(name or DEFAULT_TZ)

def now_local(tz_name: Optional[str] = None) -> datetime:
    return datetime.now(get_timezone(tz_name))

def day_of_year(dt: Optional[datetime] = None, tz_name: Optional[str] = None) -> int:
    """Номер дня в году по локальному календарю"""
    dt = dt or now_local(tz_name)
    return dt.timetuple().tm_yday

def is_next_day(previous_day: int, today: int) -> bool:
    """
    today идёт сразу после previous_day.
    Переход 31 декабря -> 1 января тоже считается соседним днём.
    """
    if previous_day < 1 or today < 1:
        return False
    if today == previous_day + 1:
        return True
    return today == 1 and previous_day in (365, 366)

def format_date(dt: datetime, fmt: str = "%Y-%m-%d") -> str:
    return dt.strftime(fmt)

def format_time(dt: datetime, fmt: str = "%H:%M:%S") -> str:
    return dt.strftime(fmt)

def parse_server_timestamp(value: str) -> Optional[datetime]:
    """ISO-время сервера (UTC с суффиксом Z) или None"""
    for fmt in SERVER_TIMESTAMP_FORMATS:
        try:
            return pytz.utc.localize(datetime.strptime(value, fmt))
        except (TypeError, ValueError):
            continue
    return None

def split_server_timestamp(value: str, tz_name: Optional[str] = None) -> Tuple[str, str]:
    """Дата и время записи в локальной зоне, "Unknown" если не распарсилось"""
    parsed = parse_server_timestamp(value)
    if parsed is None:
        return "Unknown", "Unknown"
    local = parsed.astimezone(get_timezone(tz_name))
    return format_date(local), format_time(local)

