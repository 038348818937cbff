from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional


def _text(entry: Dict[str, Any], key: str) -> Optional[str]:
    value = entry.get(key)
    if value is None or value == '':
        return None
    return str(value)


@dataclass
class RawEvent:
    """
    One playback as found in a Spotify extended streaming history export.

    There are no IP address fields; from_dict never reads them.
    """
    ts: str
    ms_played: int = 0
    platform: Optional[str] = None
    conn_country: Optional[str] = None
    track_name: Optional[str] = None
    artist_name: Optional[str] = None
    album_name: Optional[str] = None
    spotify_track_uri: Optional[str] = None
    reason_start: Optional[str] = None
    reason_end: Optional[str] = None
    shuffle: bool = False
    skipped: bool = False
    offline: bool = False
    incognito_mode: bool = False

    @classmethod
    def from_dict(cls, entry: Dict[str, Any]) -> 'RawEvent':
        """
        Build a RawEvent from one export object.

        Only whitelisted keys are copied, so ip_addr / ip_addr_decrypted
        are dropped here, before any other processing.
        """
        ms_played = entry.get('ms_played')
        return cls(
            ts=str(entry.get('ts') or ''),
            ms_played=int(ms_played) if ms_played is not None else 0,
            platform=_text(entry, 'platform'),
            conn_country=_text(entry, 'conn_country'),
            track_name=_text(entry, 'master_metadata_track_name'),
            artist_name=_text(entry, 'master_metadata_album_artist_name'),
            album_name=_text(entry, 'master_metadata_album_album_name'),
            spotify_track_uri=_text(entry, 'spotify_track_uri'),
            reason_start=_text(entry, 'reason_start'),
            reason_end=_text(entry, 'reason_end'),
            shuffle=bool(entry.get('shuffle') or False),
            skipped=bool(entry.get('skipped') or False),
            offline=bool(entry.get('offline') or False),
            incognito_mode=bool(entry.get('incognito_mode') or False),
        )


@dataclass(frozen=True)
class CanonicalEvent:
    ms_played: int
    hours: float
    minutes: float
    timestamp: Optional[datetime]  # local, tz-aware; None when ts failed to parse
    timezone: str
    date: str
    hour: Optional[int]
    minute: Optional[int]
    second: Optional[int]
    time_hms: Optional[str]
    weekday: Optional[str]
    month: Optional[str]
    month_name: Optional[str]
    month_num: Optional[int]
    year: Optional[int]
    time_bucket: str
    platform: str
    country: Optional[str]
    track_id: Optional[str]
    track_name: Optional[str]
    artist_name: Optional[str]
    album_name: Optional[str]
    reason_start: Optional[str]
    reason_end: Optional[str]
    shuffle: bool
    skipped: bool
    offline: bool
    incognito_mode: bool


# Report building blocks

@dataclass(frozen=True)
class TopTrack:
    track: str
    track_id: Optional[str]
    hours: float
    artist: Optional[str]


@dataclass(frozen=True)
class PlatformHours:
    platform: str
    hours: float


@dataclass(frozen=True)
class CountryHours:
    country: str
    hours: float


@dataclass(frozen=True)
class DateHours:
    date: str
    hours: float


@dataclass(frozen=True)
class BucketHours:
    bucket: str
    hours: float


@dataclass(frozen=True)
class MonthHours:
    month: str
    hours: float


@dataclass(frozen=True)
class WeekdayHours:
    weekday: str
    hours: float


@dataclass(frozen=True)
class HeatmapCell:
    month: str
    weekday: str
    hours: float


@dataclass(frozen=True)
class ShuffleStats:
    shuffled: int
    not_shuffled: int


@dataclass(frozen=True)
class OfflineStats:
    offline: int
    online: int


@dataclass(frozen=True)
class Streak:
    days: int
    start: str
    end: str


@dataclass(frozen=True)
class MaxDay:
    date: str
    hours: float


@dataclass(frozen=True)
class FirstSong:
    track: str
    artist: str
    date: str


@dataclass(frozen=True)
class Milestone:
    hours: int
    date: str


@dataclass(frozen=True)
class MostListenedTrack:
    track: str
    hours: float
    date: str


@dataclass(frozen=True)
class TrackCount:
    track: str
    count: int


@dataclass(frozen=True)
class TrackHours:
    track: str
    hours: float


@dataclass(frozen=True)
class AlbumTrack:
    track: Optional[str]
    hours: float
    plays: int


@dataclass(frozen=True)
class AlbumReport:
    key: str
    album: str
    artist: str
    hours: float
    plays: int
    unique_tracks: int
    depth_score: float  # share of album hours spent on its most played track
    most_played_track: AlbumTrack
    first_listen: str
    last_listen: str
    time_series: List[DateHours]
    time_of_day: List[BucketHours]
    heatmap_data: List[HeatmapCell]


@dataclass(frozen=True)
class CoverageAlbum:
    key: str
    album: str
    hours: float
    share: float  # percent of the artist's total


@dataclass(frozen=True)
class ArtistCoverage:
    artist: str
    total_hours: float
    albums: List[CoverageAlbum]


@dataclass(frozen=True)
class Report:
    total_hours: float
    total_tracks: int
    unique_days: int
    avg_hours_per_day: float
    top_tracks: List[TopTrack]
    album_stats: List[AlbumReport]
    artist_album_coverage: List[ArtistCoverage]
    platform_usage: List[PlatformHours]
    shuffle_stats: ShuffleStats
    offline_stats: OfflineStats
    country_stats: List[CountryHours]
    time_series: List[DateHours]
    time_of_day: List[BucketHours]
    monthly_hours: List[MonthHours]
    weekday_hours: List[WeekdayHours]
    longest_streak: Streak
    max_day: MaxDay
    first_song: Optional[FirstSong]
    milestones: List[Milestone]
    most_listened_track: Optional[MostListenedTrack]
    skipped_tracks: List[TrackCount]
    top_played_tracks: List[TrackHours]
    heatmap_data: List[HeatmapCell]


@dataclass(frozen=True)
class ArtistReport:
    artist: str
    total_hours: float
    unique_tracks: int
    unique_days: int
    avg_hours_per_day: float
    top_tracks: List[TopTrack]
    time_of_day: List[BucketHours]
    time_series: List[DateHours]
