# Copyright (c) 2025 Trae AI. All rights reserved.

"""
Metadata provider variants and their response normalizers.

Every provider answer is translated here into a MetadataPatch; no provider field
name is visible past this module.
"""

from typing import Any, Dict, Optional
from .models import Confidence, LibraryType, MetadataPatch, MetadataSource

TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_URL = "https://image.tmdb.org/t/p"
MUSICBRAINZ_URL = "https://musicbrainz.org/ws/2/recording"
MUSICBRAINZ_USER_AGENT = "CloudShelf/0.1 ( cloudshelf@example.com )"
OPENLIBRARY_SEARCH_URL = "https://openlibrary.org/search.json"
OPENLIBRARY_COVER_URL = "https://covers.openlibrary.org/b/id"
THEPORNDB_SCENES_URL = "https://api.theporndb.net/scenes"


def select_provider(
    library_type: LibraryType,
    tmdb_api_key: Optional[str] = None,
    theporndb_api_key: Optional[str] = None,
) -> Optional[MetadataSource]:
    """
    Picks the catalog for a library type. None means the item stays unenriched.
    """
    if library_type in (LibraryType.MOVIES, LibraryType.TV):
        return MetadataSource.TMDB if tmdb_api_key else None
    if library_type == LibraryType.MUSIC:
        return MetadataSource.MUSICBRAINZ
    if library_type in (LibraryType.BOOKS, LibraryType.AUDIOBOOKS):
        return MetadataSource.OPENLIBRARY
    if library_type == LibraryType.ADULT:
        return MetadataSource.THEPORNDB if theporndb_api_key else None
    return None


def _year_from_date(value: Any) -> Optional[int]:
    if not value or not isinstance(value, str):
        return None
    head = value.split("-")[0]
    return int(head) if head.isdigit() else None


def _tmdb_image(path: Optional[str], size: str) -> Optional[str]:
    return f"{TMDB_IMAGE_URL}/{size}{path}" if path else None


def _provenance(source: MetadataSource, metadata_id: Any) -> Dict[str, Any]:
    return {
        "metadata_id": str(metadata_id) if metadata_id is not None else None,
        "metadata_source": source,
        "metadata_confidence": Confidence.HIGH,
    }


def normalize_tmdb_movie(raw: Dict[str, Any]) -> MetadataPatch:
    return MetadataPatch(
        title=raw.get("title") or raw.get("original_title"),
        year=_year_from_date(raw.get("release_date")),
        poster_url=_tmdb_image(raw.get("poster_path"), "w342"),
        backdrop_url=_tmdb_image(raw.get("backdrop_path"), "w780"),
        overview=raw.get("overview") or None,
        rating=raw.get("vote_average"),
        **_provenance(MetadataSource.TMDB, raw.get("id")),
    )


def normalize_tmdb_show(
    raw: Dict[str, Any], episode: Optional[Dict[str, Any]] = None
) -> MetadataPatch:
    """
    Show-level search result, optionally refined by an episode detail record.
    The item's own title stays the parsed one; the show name goes to show_title.
    """
    show_poster = _tmdb_image(raw.get("poster_path"), "w342")
    show_backdrop = _tmdb_image(raw.get("backdrop_path"), "w780")
    episode = episode or {}
    thumb = _tmdb_image(episode.get("still_path"), "w300")
    show_id = str(raw["id"]) if raw.get("id") is not None else None

    return MetadataPatch(
        show_title=raw.get("name") or raw.get("original_name"),
        show_id=show_id,
        show_poster_url=show_poster,
        show_backdrop_url=show_backdrop,
        show_overview=raw.get("overview") or None,
        episode_title=episode.get("name") or None,
        thumb_url=thumb,
        poster_url=thumb or show_poster,
        backdrop_url=show_backdrop,
        overview=episode.get("overview") or None,
        year=_year_from_date(raw.get("first_air_date")),
        rating=raw.get("vote_average"),
        **_provenance(MetadataSource.TMDB, raw.get("id")),
    )


def normalize_musicbrainz_recording(raw: Dict[str, Any]) -> MetadataPatch:
    credits = raw.get("artist-credit") or []
    releases = raw.get("releases") or []
    release = releases[0] if releases else {}
    artist = credits[0].get("name") if credits else None

    track_number = None
    media = release.get("media") or []
    if media:
        tracks = media[0].get("track") or media[0].get("tracks") or []
        if tracks:
            number = str(tracks[0].get("number", ""))
            track_number = int(number) if number.isdigit() else None

    return MetadataPatch(
        title=raw.get("title"),
        artist=artist,
        album=release.get("title"),
        year=_year_from_date(release.get("date")),
        track_number=track_number,
        **_provenance(MetadataSource.MUSICBRAINZ, raw.get("id")),
    )


def normalize_openlibrary_doc(raw: Dict[str, Any]) -> MetadataPatch:
    authors = raw.get("author_name") or []
    cover_id = raw.get("cover_i")
    return MetadataPatch(
        title=raw.get("title"),
        author=authors[0] if authors else None,
        year=raw.get("first_publish_year"),
        poster_url=f"{OPENLIBRARY_COVER_URL}/{cover_id}-M.jpg" if cover_id else None,
        genres=(raw.get("subject") or [])[:5] or None,
        **_provenance(MetadataSource.OPENLIBRARY, raw.get("key")),
    )


def normalize_theporndb_scene(raw: Dict[str, Any]) -> MetadataPatch:
    posters = raw.get("posters") or []
    poster = posters[0].get("url") if posters and isinstance(posters[0], dict) else None
    if poster is None and isinstance(raw.get("image"), str):
        poster = raw["image"]
    return MetadataPatch(
        title=raw.get("title"),
        year=_year_from_date(raw.get("date")),
        poster_url=poster,
        overview=raw.get("description") or None,
        **_provenance(MetadataSource.THEPORNDB, raw.get("id")),
    )
