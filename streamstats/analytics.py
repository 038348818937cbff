"""
Report computation over canonical events.

compute_report() and compute_artist_report() are pure: they read the event
list, never mutate it, and build every rollup as its own pass.

Most hour-weighted rollups use only valid events (hours > 0). Unique days,
shuffle/offline counts, the weekday averages, the streak and the first song
use every event, including zero and negative plays.
"""
import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Sequence

from streamstats import rollups
from streamstats.albums import album_reports, artist_album_coverage
from streamstats.models import (
    ArtistReport,
    CanonicalEvent,
    CountryHours,
    DateHours,
    FirstSong,
    MaxDay,
    Milestone,
    MonthHours,
    MostListenedTrack,
    OfflineStats,
    PlatformHours,
    Report,
    ShuffleStats,
    Streak,
    TopTrack,
    TrackCount,
    TrackHours,
    WeekdayHours,
)
from streamstats.normalizer import MONTHS, WEEKDAYS

logger = logging.getLogger(__name__)

MILESTONE_HOURS = [100, 500, 1000, 2000, 5000, 10000, 20000]
TOP_N = 5


def _avg_hours_per_day(total_hours: float, unique_days: int) -> float:
    return total_hours / unique_days if unique_days > 0 else 0.0


def monthly_hours(valid: Sequence[CanonicalEvent]) -> List[MonthHours]:
    """Hours per month, Jan..Dec, months without listening left out."""
    month_hours = rollups.sum_hours(valid, lambda e: e.month)
    return [
        MonthHours(month=month, hours=month_hours[month])
        for month in MONTHS
        if month_hours.get(month, 0.0) > 0
    ]


def weekday_hours(events: Sequence[CanonicalEvent], valid: Sequence[CanonicalEvent]) -> List[WeekdayHours]:
    """
    Average daily hours per weekday.

    Each event (zero-length ones included) adds its whole day's valid total
    to its weekday and counts once, so the average is weighted by event
    count rather than by distinct days.
    """
    daily_totals = rollups.sum_hours(valid, lambda e: e.date)

    totals = defaultdict(float)
    counts = defaultdict(int)
    for event in events:
        totals[event.weekday] += daily_totals.get(event.date, 0.0)
        counts[event.weekday] += 1

    return [
        WeekdayHours(weekday=weekday, hours=totals[weekday] / counts[weekday] if counts[weekday] else 0.0)
        for weekday in WEEKDAYS
    ]


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def longest_streak(events: Sequence[CanonicalEvent]) -> Streak:
    """Longest run of calendar-consecutive dates with at least one event."""
    dates = sorted({e.date for e in events})
    if not dates:
        return Streak(days=0, start='', end='')

    best = Streak(days=0, start='', end='')
    run_start = dates[0]
    run_length = 1

    for prev, curr in zip(dates, dates[1:]):
        prev_day, curr_day = _parse_date(prev), _parse_date(curr)
        if prev_day is not None and curr_day is not None and (curr_day - prev_day).days == 1:
            run_length += 1
            continue
        if run_length > best.days:
            best = Streak(days=run_length, start=run_start, end=prev)
        run_start = curr
        run_length = 1

    # the run still open at the end of the scan
    if run_length > best.days:
        best = Streak(days=run_length, start=run_start, end=dates[-1])
    return best


def max_day(date_hours: Dict[str, float]) -> MaxDay:
    if not date_hours:
        return MaxDay(date='', hours=0.0)
    day, hours = max(date_hours.items(), key=lambda item: item[1])
    return MaxDay(date=day, hours=hours)


def first_song(events: Sequence[CanonicalEvent]) -> Optional[FirstSong]:
    """Earliest play by real instant; events without a timestamp sort last."""
    if not events:
        return None
    first = min(
        events,
        key=lambda e: (e.timestamp is None, e.timestamp.timestamp() if e.timestamp is not None else 0.0),
    )
    return FirstSong(
        track=first.track_name if first.track_name is not None else 'Unknown',
        artist=first.artist_name if first.artist_name is not None else 'Unknown',
        date=first.date,
    )


def milestones(time_series: Sequence[DateHours]) -> List[Milestone]:
    """First date the running total reaches each threshold; unreached ones are omitted."""
    reached = []
    pending = list(MILESTONE_HOURS)
    cumulative = 0.0
    for entry in time_series:
        cumulative += entry.hours
        while pending and cumulative >= pending[0]:
            reached.append(Milestone(hours=pending.pop(0), date=entry.date))
    return reached


def most_listened_track(top: Sequence[TopTrack], valid: Sequence[CanonicalEvent]) -> Optional[MostListenedTrack]:
    """Top track overall, with the day it was played most."""
    if not top:
        return None
    leader = top[0]
    per_day = rollups.sum_hours((e for e in valid if e.track_name == leader.track), lambda e: e.date)
    peak = max(per_day.items(), key=lambda item: item[1])[0] if per_day else ''
    return MostListenedTrack(track=leader.track, hours=leader.hours, date=peak)


def skipped_tracks(events: Sequence[CanonicalEvent]) -> List[TrackCount]:
    counts: Dict[str, int] = defaultdict(int)
    for event in events:
        if event.skipped and event.track_name is not None:
            counts[event.track_name] += 1
    ordered = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [TrackCount(track=track, count=count) for track, count in ordered[:TOP_N]]


def top_played_tracks(valid: Sequence[CanonicalEvent]) -> List[TrackHours]:
    played = rollups.sum_hours(
        (e for e in valid if not e.skipped and e.track_name is not None),
        lambda e: e.track_name,
    )
    return [TrackHours(track=track, hours=hours) for track, hours in rollups.ranked(played)[:TOP_N]]


def compute_report(events: Sequence[CanonicalEvent]) -> Report:
    """
    Compute the full listening report.

    Args:
        events: Canonical events, in any order

    Returns:
        Report. first_song and most_listened_track are None when there is
        nothing to pick them from.
    """
    valid = rollups.valid_events(events)

    total_hours = sum(e.hours for e in valid)
    unique_days = len({e.date for e in events})

    top = rollups.top_tracks(valid)
    date_hours = rollups.sum_hours(valid, lambda e: e.date)
    series = rollups.time_series(date_hours)

    platforms = rollups.sum_hours(valid, lambda e: e.platform)
    countries = rollups.sum_hours(valid, lambda e: e.country if e.country is not None else 'Unknown')

    shuffled = sum(1 for e in events if e.shuffle)
    offline = sum(1 for e in events if e.offline)

    albums = album_reports(valid)

    report = Report(
        total_hours=total_hours,
        total_tracks=len(valid),
        unique_days=unique_days,
        avg_hours_per_day=_avg_hours_per_day(total_hours, unique_days),
        top_tracks=top,
        album_stats=albums,
        artist_album_coverage=artist_album_coverage(albums),
        platform_usage=[PlatformHours(platform=p, hours=h) for p, h in rollups.ranked(platforms)],
        shuffle_stats=ShuffleStats(shuffled=shuffled, not_shuffled=len(events) - shuffled),
        offline_stats=OfflineStats(offline=offline, online=len(events) - offline),
        country_stats=[CountryHours(country=c, hours=h) for c, h in rollups.ranked(countries)],
        time_series=series,
        time_of_day=rollups.time_of_day(rollups.sum_hours(valid, lambda e: e.time_bucket)),
        monthly_hours=monthly_hours(valid),
        weekday_hours=weekday_hours(events, valid),
        longest_streak=longest_streak(events),
        max_day=max_day(date_hours),
        first_song=first_song(events),
        milestones=milestones(series),
        most_listened_track=most_listened_track(top, valid),
        skipped_tracks=skipped_tracks(events),
        top_played_tracks=top_played_tracks(valid),
        heatmap_data=rollups.heatmap(rollups.sum_hours(valid, lambda e: (e.month, e.weekday))),
    )
    logger.debug(f"Computed report over {len(events)} events ({len(valid)} valid, {len(albums)} albums)")
    return report


def compute_artist_report(events: Sequence[CanonicalEvent], artist_name: str) -> ArtistReport:
    """
    Same rules as compute_report, restricted to one artist's events (exact match).

    unique_tracks counts named tracks only; the dashboard this replaces also
    counted plays with no track name as one extra track.
    """
    artist_events = [e for e in events if e.artist_name == artist_name]
    valid = rollups.valid_events(artist_events)

    total_hours = sum(e.hours for e in valid)
    unique_days = len({e.date for e in artist_events})

    return ArtistReport(
        artist=artist_name,
        total_hours=total_hours,
        unique_tracks=len({e.track_name for e in valid if e.track_name is not None}),
        unique_days=unique_days,
        avg_hours_per_day=_avg_hours_per_day(total_hours, unique_days),
        top_tracks=rollups.top_tracks(valid, artist=artist_name),
        time_of_day=rollups.time_of_day(rollups.sum_hours(valid, lambda e: e.time_bucket)),
        time_series=rollups.time_series(rollups.sum_hours(valid, lambda e: e.date)),
    )
