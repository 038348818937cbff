"""
Building blocks shared by the global, album and artist reports.

Each helper is an independent fold over a list of canonical events or over an
already-accumulated key -> hours map, so the same rules apply at every scope.
"""
from collections import defaultdict
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from streamstats.models import (
    BucketHours,
    CanonicalEvent,
    DateHours,
    HeatmapCell,
    TopTrack,
)
from streamstats.normalizer import MONTHS, TIME_BUCKETS, WEEKDAYS


def valid_events(events: Iterable[CanonicalEvent]) -> List[CanonicalEvent]:
    """Events with strictly positive play time."""
    return [e for e in events if e.hours > 0]


def sum_hours(events: Iterable[CanonicalEvent],
              key: Callable[[CanonicalEvent], Hashable]) -> Dict[Hashable, float]:
    """Sum hours per key, keys in first-seen order."""
    totals = defaultdict(float)
    for event in events:
        totals[key(event)] += event.hours
    return dict(totals)


def ranked(totals: Dict[Hashable, float]) -> List[Tuple[Hashable, float]]:
    """Entries by value descending; ties keep first-seen order."""
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def time_series(date_hours: Dict[str, float]) -> List[DateHours]:
    return [DateHours(date=date, hours=hours) for date, hours in sorted(date_hours.items())]


def time_of_day(bucket_hours: Dict[str, float]) -> List[BucketHours]:
    return [BucketHours(bucket=bucket, hours=bucket_hours.get(bucket, 0.0)) for bucket in TIME_BUCKETS]


def heatmap(cell_hours: Dict[Tuple[str, str], float]) -> List[HeatmapCell]:
    """All 84 month x weekday cells, zero-filled, Jan/Monday first."""
    return [
        HeatmapCell(month=month, weekday=weekday, hours=cell_hours.get((month, weekday), 0.0))
        for month in MONTHS
        for weekday in WEEKDAYS
    ]


def top_tracks(valid: Iterable[CanonicalEvent], artist: Optional[str] = None) -> List[TopTrack]:
    """
    Rank named tracks by total hours.

    Artist and track id are the first non-null values seen for the track,
    unless a fixed artist is given (artist-scoped reports).
    """
    tracks: Dict[str, dict] = {}
    for event in valid:
        if event.track_name is None:
            continue
        entry = tracks.setdefault(event.track_name, {'hours': 0.0, 'artist': None, 'track_id': None})
        entry['hours'] += event.hours
        if entry['artist'] is None:
            entry['artist'] = event.artist_name
        if entry['track_id'] is None:
            entry['track_id'] = event.track_id

    result = [
        TopTrack(
            track=track,
            track_id=data['track_id'],
            hours=data['hours'],
            artist=artist if artist is not None else data['artist'],
        )
        for track, data in tracks.items()
    ]
    result.sort(key=lambda t: t.hours, reverse=True)
    return result
