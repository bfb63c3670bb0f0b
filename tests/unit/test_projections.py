# Copyright (c) 2025 Trae AI. All rights reserved.

from cloudshelf.core.models import LibraryType, WatchProgress
from cloudshelf.core.projections import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    select_in_progress,
    select_items_by_library,
    select_music_artists,
    select_recently_added,
    select_tv_shows,
)


def _episode(make_item, path, season, episode, **fields):
    fields.setdefault("title", "Show")
    return make_item(path, library_type=LibraryType.TV, season=season, episode=episode, **fields)


def test_tv_grouping(make_item):
    items = [
        _episode(make_item, "/tv/Show.S02E01.mkv", 2, 1),
        _episode(make_item, "/tv/Show.S01E02.mkv", 1, 2),
        _episode(make_item, "/tv/Show.S01E01.mkv", 1, 1),
    ]

    shows = select_tv_shows(items)

    assert len(shows) == 1
    show = shows[0]
    assert [s.season_number for s in show.seasons] == [1, 2]
    assert [e.episode for e in show.seasons[0].episodes] == [1, 2]
    assert [e.episode for e in show.seasons[1].episodes] == [1]
    assert show.episode_count == 3

def test_tv_show_key_prefers_show_id(make_item):
    items = [
        _episode(make_item, "/tv/a.mkv", 1, 1, show_id="1399", show_title="Game of Thrones"),
        _episode(make_item, "/tv/b.mkv", 1, 2, show_id="1399", show_title="GoT", title="Other"),
        _episode(make_item, "/tv/c.mkv", 1, 1, title="Another Show"),
    ]

    shows = select_tv_shows(items)

    assert [s.title for s in shows] == ["Another Show", "Game of Thrones"]
    assert shows[1].show_key == "1399"
    assert shows[1].episode_count == 2

def test_tv_season_defaults_to_one(make_item):
    shows = select_tv_shows([_episode(make_item, "/tv/Show.Special.mkv", None, None)])
    assert shows[0].seasons[0].season_number == 1

def test_tv_show_metadata_falls_back_to_episode(make_item):
    items = [
        _episode(make_item, "/tv/a.mkv", 1, 1, poster_url="ep.jpg"),
        _episode(make_item, "/tv/b.mkv", 1, 2, show_poster_url="show.jpg"),
    ]
    assert select_tv_shows(items)[0].poster_url == "show.jpg"
    assert select_tv_shows(items[:1])[0].poster_url == "ep.jpg"

def test_tv_ignores_other_library_types(make_item):
    assert select_tv_shows([make_item("/m/Movie.mkv")]) == []

def test_music_grouping(make_item):
    items = [
        make_item("/mu/3.mp3", library_type=LibraryType.MUSIC, artist="Band", album="LP", track_number=3),
        make_item("/mu/x.mp3", library_type=LibraryType.MUSIC, artist="Band", album="LP"),
        make_item("/mu/1.mp3", library_type=LibraryType.MUSIC, artist="Band", album="LP", track_number=1),
        make_item("/mu/loose.mp3", library_type=LibraryType.MUSIC),
        make_item("/ab/book.m4b", library_type=LibraryType.AUDIOBOOKS, author="Writer"),
    ]

    artists = select_music_artists(items)

    assert [a.name for a in artists] == ["Band", UNKNOWN_ARTIST, "Writer"]
    band = artists[0]
    assert band.album_count == 1
    assert [t.track_number for t in band.albums[0].tracks] == [1, 3, None]
    assert artists[1].albums[0].name == UNKNOWN_ALBUM

def test_items_by_library_newest_first(make_item):
    items = [
        make_item("/a.mkv", added_at=1.0),
        make_item("/b.mkv", added_at=3.0),
        make_item("/c.mkv", library_id="lib2", added_at=2.0),
    ]
    assert [i.title for i in select_items_by_library(items, "lib1")] == ["b", "a"]
    assert [i.title for i in select_recently_added(items, limit=2)] == ["b", "c"]

def test_in_progress(make_item):
    a, b, c, d = (make_item(f"/{n}.mkv") for n in "abcd")
    progress = [
        WatchProgress(item_id=a.id, position=100, duration=1000, last_watched_at=1.0),
        WatchProgress(item_id=b.id, position=200, duration=1000, last_watched_at=2.0),
        WatchProgress(item_id=c.id, position=10, duration=1000, last_watched_at=3.0),
        WatchProgress(item_id=d.id, position=950, duration=1000, completed=True, last_watched_at=4.0),
        WatchProgress(item_id="deleted", position=500, duration=1000, last_watched_at=5.0),
    ]

    entries = select_in_progress([a, b, c, d], progress)

    assert [e.item.title for e in entries] == ["b", "a"]
    assert select_in_progress([a, b, c, d], progress, limit=1)[0].item.title == "b"
