"""
Turns raw export plays into canonical events.

One canonical event per raw event, same order. Nothing here raises for a bad
timestamp: the event comes out with timestamp=None and date=INVALID_DATE so
the caller can see and report it.
"""
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

import pycountry

from streamstats.models import CanonicalEvent, RawEvent

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000
MS_PER_MINUTE = 60_000

INVALID_DATE = 'Invalid Date'

# Country code -> zone for the countries this history was recorded in
TZ_MAP = {
    'IN': 'Asia/Kolkata',
    'US': 'America/New_York',
    'QA': 'Asia/Qatar',
}

# Plays without a country moved from India to the US on this date
TZ_FALLBACK_CUTOFF = datetime(2024, 8, 4, tzinfo=timezone.utc)
TZ_BEFORE_CUTOFF = 'Asia/Kolkata'
TZ_AFTER_CUTOFF = 'America/New_York'
TZ_DEFAULT = 'UTC'

# Checked in order, first match wins
PLATFORM_PATTERNS = [
    ('Android', re.compile(r'android')),
    ('iOS', re.compile(r'ios|iphone|ipad|mac|darwin')),
    ('Windows', re.compile(r'windows')),
    ('Google Cast', re.compile(r'google cast|chromecast|cast_')),
]

MORNING = 'Morning (5-11)'
AFTERNOON = 'Afternoon (12-17)'
EVENING = 'Evening (18-22)'
NIGHT = 'Night (23-4)'
TIME_BUCKETS = (MORNING, AFTERNOON, EVENING, NIGHT)

# Fixed English tables so output never depends on the process locale
WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')
MONTHS = ('Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec')
MONTH_NAMES = (
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December',
)


# Everyday names where the ISO-3166 name (or pycountry common_name) is the formal one
COUNTRY_COMMON_NAMES = {
    'BN': 'Brunei',
    'CD': 'DR Congo',
    'CG': 'Republic of the Congo',
    'CI': 'Ivory Coast',
    'CV': 'Cape Verde',
    'CZ': 'Czechia',
    'FM': 'Micronesia',
    'IR': 'Iran',
    'KP': 'North Korea',
    'KR': 'South Korea',
    'LA': 'Laos',
    'MD': 'Moldova',
    'MO': 'Macau',
    'PS': 'Palestine',
    'RU': 'Russia',
    'SY': 'Syria',
    'TR': 'Turkey',
    'TW': 'Taiwan',
    'TZ': 'Tanzania',
    'VA': 'Vatican City',
    'VE': 'Venezuela',
    'VN': 'Vietnam',
}


def parse_utc(ts: str) -> Optional[datetime]:
    """Parse an export timestamp as an aware UTC datetime, or None if unparseable."""
    try:
        parsed = datetime.fromisoformat(ts.replace('Z', '+00:00'))
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (ValueError, AttributeError, OverflowError):
        return None


def to_local(ts_utc: Optional[datetime], tz_name: str) -> Optional[datetime]:
    """Convert to the resolved zone; None if the shift leaves the datetime range."""
    if ts_utc is None:
        return None
    try:
        return ts_utc.astimezone(ZoneInfo(tz_name))
    except OverflowError:
        return None


def resolve_timezone(country: Optional[str], ts_utc: Optional[datetime]) -> str:
    """
    Pick the zone a play happened in.

    Known countries map through TZ_MAP. Plays with no country fall back on the
    cutoff date; an unparseable instant counts as before the cutoff. Any other
    country is left in UTC.
    """
    if country and country in TZ_MAP:
        return TZ_MAP[country]
    if not country:
        if ts_utc is not None and ts_utc >= TZ_FALLBACK_CUTOFF:
            return TZ_AFTER_CUTOFF
        return TZ_BEFORE_CUTOFF
    return TZ_DEFAULT


def classify_platform(platform: Optional[str]) -> str:
    if not platform:
        return 'Unknown'
    lower = platform.lower()
    for name, pattern in PLATFORM_PATTERNS:
        if pattern.search(lower):
            return name
    return 'Other'


def extract_track_id(uri: Optional[str]) -> Optional[str]:
    """spotify:track:abc123 -> abc123"""
    if not uri:
        return None
    return uri.split(':')[-1]


def country_name(code: Optional[str]) -> Optional[str]:
    """Common English name for an ISO-3166 alpha-2 code, None if unknown."""
    if not code:
        return None
    code = code.upper()
    if code in COUNTRY_COMMON_NAMES:
        return COUNTRY_COMMON_NAMES[code]
    country = pycountry.countries.get(alpha_2=code)
    if country is None:
        return None
    return getattr(country, 'common_name', country.name)


def time_bucket(hour: Optional[int]) -> str:
    if hour is not None:
        if 5 <= hour <= 11:
            return MORNING
        if 12 <= hour <= 17:
            return AFTERNOON
        if 18 <= hour <= 22:
            return EVENING
    return NIGHT


def normalize_event(raw: RawEvent) -> CanonicalEvent:
    country = raw.conn_country.upper() if raw.conn_country else None
    ts_utc = parse_utc(raw.ts)
    tz_name = resolve_timezone(country, ts_utc)
    local = to_local(ts_utc, tz_name)

    if local is None:
        logger.warning(f"Unusable timestamp {raw.ts!r} in {tz_name}, event kept as invalid")
        date = INVALID_DATE
        hour = minute = second = month_num = year = None
        time_hms = weekday = month = month_name = None
    else:
        date = local.date().isoformat()
        hour, minute, second = local.hour, local.minute, local.second
        time_hms = local.strftime('%H:%M:%S')
        weekday = WEEKDAYS[local.weekday()]
        month_num = local.month
        month = MONTHS[month_num - 1]
        month_name = MONTH_NAMES[month_num - 1]
        year = local.year

    return CanonicalEvent(
        ms_played=raw.ms_played,
        hours=raw.ms_played / MS_PER_HOUR,
        minutes=raw.ms_played / MS_PER_MINUTE,
        timestamp=local,
        timezone=tz_name,
        date=date,
        hour=hour,
        minute=minute,
        second=second,
        time_hms=time_hms,
        weekday=weekday,
        month=month,
        month_name=month_name,
        month_num=month_num,
        year=year,
        time_bucket=time_bucket(hour),
        platform=classify_platform(raw.platform),
        country=country_name(country),
        track_id=extract_track_id(raw.spotify_track_uri),
        track_name=raw.track_name,
        artist_name=raw.artist_name,
        album_name=raw.album_name,
        reason_start=raw.reason_start,
        reason_end=raw.reason_end,
        shuffle=raw.shuffle,
        skipped=raw.skipped,
        offline=raw.offline,
        incognito_mode=raw.incognito_mode,
    )


def normalize(raw_events: Sequence[RawEvent]) -> List[CanonicalEvent]:
    """
    Normalize every raw event.

    Args:
        raw_events: RawEvent objects as parsed from the export

    Returns:
        List of CanonicalEvent objects, same length and order as the input
    """
    events = [normalize_event(raw) for raw in raw_events]
    logger.debug(f"Normalized {len(events)} events")
    return events
