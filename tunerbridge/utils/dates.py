"""Calendar helpers for guide windows, XMLTV timestamps and device headers"""

from datetime import date, datetime, timedelta, timezone
from email.utils import format_datetime


def days_from_today(count: int, today: date | None = None) -> list[str]:
    """ISO dates for ``count`` consecutive days starting today."""
    start = today or date.today()
    return [(start + timedelta(days=offset)).isoformat() for offset in range(count)]


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp (``Z`` suffix allowed) into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def xmltv_timestamp(moment: datetime) -> str:
    """Format a datetime the way XMLTV start/stop attributes expect."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y%m%d%H%M%S +0000")


def xmltv_date(moment: datetime) -> str:
    """Compact YYYYMMDD date used for programme <date> fallbacks."""
    return moment.astimezone(timezone.utc).strftime("%Y%m%d")


def device_date(moment: datetime | None = None) -> str:
    """RFC 1123 ``Date`` header value for signed device requests."""
    moment = moment or datetime.now(timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
