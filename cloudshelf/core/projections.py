# Copyright (c) 2025 Trae AI. All rights reserved.

"""
Read-side views over catalog snapshots. Nothing here touches the store;
callers pass in the lists they loaded.
"""

from typing import Dict, Iterable, List, Optional, Tuple
from .models import (
    InProgressEntry,
    LibraryType,
    MediaItem,
    MusicAlbum,
    MusicArtist,
    TvSeason,
    TvShow,
    WatchProgress,
)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
DEFAULT_SEASON = 1
UNNUMBERED_TRACK = 999

MUSIC_TYPES = (LibraryType.MUSIC, LibraryType.AUDIOBOOKS)


def _newest_first(items: Iterable[MediaItem]) -> List[MediaItem]:
    return sorted(items, key=lambda i: i.added_at, reverse=True)


def select_items_by_library(items: Iterable[MediaItem], library_id: str) -> List[MediaItem]:
    return _newest_first(i for i in items if i.library_id == library_id)


def select_recently_added(items: Iterable[MediaItem], limit: int = 20) -> List[MediaItem]:
    return _newest_first(items)[:limit]


def select_in_progress(
    items: Iterable[MediaItem],
    progress: Iterable[WatchProgress],
    min_watched: float = 30.0,
    limit: int = 20,
) -> List[InProgressEntry]:
    """
    Started but unfinished items, most recently watched first.
    Progress whose item no longer exists is skipped.
    """
    by_id = {item.id: item for item in items}
    candidates = [
        p for p in progress
        if not p.completed and p.position > min_watched and p.item_id in by_id
    ]
    candidates.sort(key=lambda p: p.last_watched_at, reverse=True)
    return [InProgressEntry(item=by_id[p.item_id], progress=p) for p in candidates[:limit]]


def show_key(item: MediaItem) -> str:
    return item.show_id or item.show_title or item.title


def select_tv_shows(items: Iterable[MediaItem]) -> List[TvShow]:
    """
    Groups TV episodes into shows and seasons.
    """
    groups: Dict[str, List[MediaItem]] = {}
    for item in items:
        if item.library_type != LibraryType.TV:
            continue
        groups.setdefault(show_key(item), []).append(item)

    shows = []
    for key, episodes in groups.items():
        seasons: Dict[int, List[MediaItem]] = {}
        for ep in episodes:
            season = ep.season if ep.season is not None else DEFAULT_SEASON
            seasons.setdefault(season, []).append(ep)

        ordered = [
            TvSeason(
                season_number=number,
                episodes=sorted(
                    seasons[number],
                    key=lambda e: (e.episode is None, e.episode or 0, e.filename),
                ),
            )
            for number in sorted(seasons)
        ]

        # Show-level fields win; otherwise borrow them from the first episode that has them
        first = ordered[0].episodes[0]
        shows.append(
            TvShow(
                show_key=key,
                title=_first(episodes, "show_title") or first.title,
                library_id=first.library_id,
                poster_url=_first(episodes, "show_poster_url") or _first(episodes, "poster_url"),
                backdrop_url=_first(episodes, "show_backdrop_url") or _first(episodes, "backdrop_url"),
                overview=_first(episodes, "show_overview") or _first(episodes, "overview"),
                rating=_first(episodes, "rating"),
                year=_first(episodes, "year"),
                seasons=ordered,
                episode_count=len(episodes),
            )
        )

    shows.sort(key=lambda s: s.title.lower())
    return shows


def _first(items: List[MediaItem], field: str):
    for item in items:
        value = getattr(item, field)
        if value is not None:
            return value
    return None


def _track_order(item: MediaItem) -> Tuple[int, str]:
    number = item.track_number if item.track_number is not None else UNNUMBERED_TRACK
    return number, item.filename


def select_music_artists(items: Iterable[MediaItem]) -> List[MusicArtist]:
    """
    Groups music and audiobook items into artists and albums.
    """
    artists: Dict[str, Dict[str, List[MediaItem]]] = {}
    for item in items:
        if item.library_type not in MUSIC_TYPES:
            continue
        artist = item.artist or item.author or UNKNOWN_ARTIST
        album = item.album or UNKNOWN_ALBUM
        artists.setdefault(artist, {}).setdefault(album, []).append(item)

    result = []
    for name in sorted(artists, key=str.lower):
        albums = []
        for album_name in sorted(artists[name], key=str.lower):
            tracks = sorted(artists[name][album_name], key=_track_order)
            albums.append(
                MusicAlbum(
                    name=album_name,
                    artist_name=name,
                    year=_first(tracks, "year"),
                    poster_url=_first(tracks, "poster_url"),
                    tracks=tracks,
                )
            )
        result.append(
            MusicArtist(
                name=name,
                poster_url=_poster(albums),
                albums=albums,
                album_count=len(albums),
                track_count=sum(len(a.tracks) for a in albums),
            )
        )
    return result


def _poster(albums: List[MusicAlbum]) -> Optional[str]:
    for album in albums:
        if album.poster_url:
            return album.poster_url
    return None
