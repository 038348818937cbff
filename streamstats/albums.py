from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from streamstats.models import (
    AlbumReport,
    AlbumTrack,
    ArtistCoverage,
    CanonicalEvent,
    CoverageAlbum,
)
from streamstats import rollups

UNKNOWN_ALBUM = 'Unknown Album'
UNKNOWN_ARTIST = 'Unknown Artist'


class AlbumAccumulator:
    """Running totals for one (album, artist) group."""

    def __init__(self, album: str, artist: str, first_date: str):
        self.album = album
        self.artist = artist
        self.hours = 0.0
        self.plays = 0
        self.tracks: Dict[str, List] = {}  # track -> [hours, plays]
        self.date_hours = defaultdict(float)
        self.bucket_hours = defaultdict(float)
        self.cell_hours = defaultdict(float)
        self.first_listen = first_date
        self.last_listen = first_date

    @property
    def key(self) -> str:
        return f"{self.album}__{self.artist}"

    def add(self, event: CanonicalEvent) -> None:
        self.hours += event.hours
        self.plays += 1

        if event.date < self.first_listen:
            self.first_listen = event.date
        if event.date > self.last_listen:
            self.last_listen = event.date

        if event.track_name is not None:
            stats = self.tracks.setdefault(event.track_name, [0.0, 0])
            stats[0] += event.hours
            stats[1] += 1

        self.date_hours[event.date] += event.hours
        self.bucket_hours[event.time_bucket] += event.hours
        self.cell_hours[(event.month, event.weekday)] += event.hours

    def finalize(self) -> AlbumReport:
        most_played = AlbumTrack(track=None, hours=0.0, plays=0)
        if self.tracks:
            track, (hours, plays) = max(self.tracks.items(), key=lambda item: item[1][0])
            most_played = AlbumTrack(track=track, hours=hours, plays=plays)

        return AlbumReport(
            key=self.key,
            album=self.album,
            artist=self.artist,
            hours=self.hours,
            plays=self.plays,
            unique_tracks=len(self.tracks),
            depth_score=most_played.hours / self.hours if self.hours > 0 else 0.0,
            most_played_track=most_played,
            first_listen=self.first_listen,
            last_listen=self.last_listen,
            time_series=rollups.time_series(self.date_hours),
            time_of_day=rollups.time_of_day(self.bucket_hours),
            heatmap_data=rollups.heatmap(self.cell_hours),
        )


def album_reports(valid: Iterable[CanonicalEvent]) -> List[AlbumReport]:
    """
    Per-album rollups over valid events, most listened album first.

    Albums are keyed by (album, artist) so same-named albums by different
    artists stay apart.
    """
    groups: Dict[Tuple[str, str], AlbumAccumulator] = {}
    for event in valid:
        album = event.album_name if event.album_name is not None else UNKNOWN_ALBUM
        artist = event.artist_name if event.artist_name is not None else UNKNOWN_ARTIST
        group = groups.get((album, artist))
        if group is None:
            group = groups[(album, artist)] = AlbumAccumulator(album, artist, event.date)
        group.add(event)

    reports = [group.finalize() for group in groups.values()]
    reports.sort(key=lambda r: r.hours, reverse=True)
    return reports


def artist_album_coverage(albums: Iterable[AlbumReport]) -> List[ArtistCoverage]:
    """
    Group album reports by artist and work out each album's share.

    Shares are percentages of the artist's total hours.
    """
    by_artist: Dict[str, List[AlbumReport]] = {}
    for album in albums:
        by_artist.setdefault(album.artist, []).append(album)

    coverage = []
    for artist, artist_albums in by_artist.items():
        total = sum(a.hours for a in artist_albums)
        entries = [
            CoverageAlbum(
                key=a.key,
                album=a.album,
                hours=a.hours,
                share=(a.hours / total) * 100 if total > 0 else 0.0,
            )
            for a in artist_albums
        ]
        entries.sort(key=lambda e: e.hours, reverse=True)
        coverage.append(ArtistCoverage(artist=artist, total_hours=total, albums=entries))

    coverage.sort(key=lambda c: c.total_hours, reverse=True)
    return coverage
