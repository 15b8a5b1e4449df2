"""
Sign-in source merging.

Cloud sign-in activity always wins over the on-prem last logon. On-prem is a
fallback only, and its recency is reported in whole days while cloud recency
keeps one decimal.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from .constants import (
    FILETIME_EPOCH_OFFSET,
    FILETIME_TICKS_PER_SECOND,
    SECONDS_PER_DAY,
    SIGNIN_SENTINELS,
)
from .models import ActivitySource, ResolvedActivity

logger = logging.getLogger(__name__)

# Slash-separated Export-Csv dates, tried after ISO 8601 in the export's locale order
_MONTH_FIRST_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
)
_DAY_FIRST_FORMATS = (
    "%d/%m/%Y %I:%M:%S %p",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y",
)
_ISO_TEXT_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
)

_SLASH_DATE = re.compile(r'^(\d{1,2})/(\d{1,2})/\d{4}\b')


def is_ambiguous_day_month(value: Any) -> bool:
    """True for slash dates such as 05/03/2024 that read validly either way round."""
    match = _SLASH_DATE.match(str(value or '').strip())
    if not match:
        return False
    first, second = int(match.group(1)), int(match.group(2))
    return first != second and 1 <= first <= 12 and 1 <= second <= 12


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce a provider value into an aware UTC datetime.

    Accepts datetime objects and ISO 8601 text. Anything else, including
    placeholders such as "-" or "N/A", is treated as absent and returns None.
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if text in SIGNIN_SENTINELS:
        return None
    try:
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_directory_timestamp(value: Any, day_first: bool = False) -> Optional[datetime]:
    """
    Parse an on-prem directory timestamp.

    Handles Windows FILETIME integers (lastLogonTimestamp), ISO 8601 and the
    common locale date formats produced by Export-Csv. Zero and the
    "never" FILETIME sentinel return None.

    Args:
        value: Raw export value
        day_first: Read slash dates as dd/mm/yyyy (non-US export locale)
            instead of mm/dd/yyyy
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if value is None:
        return None

    text = str(value).strip()
    if not text or text in SIGNIN_SENTINELS:
        return None

    if text.isdigit():
        ticks = int(text)
        # 0 and 0x7FFFFFFFFFFFFFFF both mean "never logged on"
        if ticks <= FILETIME_EPOCH_OFFSET or ticks >= 0x7FFFFFFFFFFFFFFF:
            return None
        seconds = (ticks - FILETIME_EPOCH_OFFSET) / FILETIME_TICKS_PER_SECOND
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    parsed = parse_timestamp(text)
    if parsed:
        return parsed

    slash_formats = _DAY_FIRST_FORMATS if day_first else _MONTH_FIRST_FORMATS
    for fmt in slash_formats + _ISO_TEXT_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def days_since(moment: datetime, now: datetime) -> float:
    """Fractional days elapsed between moment and now."""
    return (_as_utc(now) - _as_utc(moment)).total_seconds() / SECONDS_PER_DAY


def merge_activity(
    cloud_last_sign_in: Any,
    on_prem_last_logon: Optional[datetime],
    now: datetime,
) -> ResolvedActivity:
    """
    Reconcile the cloud and on-prem timestamps into one last-activity value.

    Args:
        cloud_last_sign_in: Raw cloud value (malformed values count as absent)
        on_prem_last_logon: On-prem last logon, if known
        now: Reference time for the recency calculation

    Returns:
        ResolvedActivity tagged with its source
    """
    cloud = parse_timestamp(cloud_last_sign_in)
    if cloud is not None:
        return ResolvedActivity(
            source=ActivitySource.CLOUD,
            last_activity=cloud,
            days_since=round(days_since(cloud, now), 1),
        )

    on_prem = parse_timestamp(on_prem_last_logon) if on_prem_last_logon is not None else None
    if on_prem is not None:
        return ResolvedActivity(
            source=ActivitySource.ONPREM,
            last_activity=on_prem,
            days_since=int(round(days_since(on_prem, now))),
        )

    return ResolvedActivity(source=ActivitySource.NONE)
