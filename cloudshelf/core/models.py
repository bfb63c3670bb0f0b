# Copyright (c) 2025 Trae AI. All rights reserved.

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class LibraryType(Enum):
    MOVIES = "movies"
    TV = "tv"
    MUSIC = "music"
    AUDIOBOOKS = "audiobooks"
    BOOKS = "books"
    ADULT = "adult"


class MetadataSource(Enum):
    TMDB = "tmdb"
    MUSICBRAINZ = "musicbrainz"
    OPENLIBRARY = "openlibrary"
    THEPORNDB = "theporndb"
    MANUAL = "manual"


class Confidence(Enum):
    HIGH = "high"  # matched via an external catalog
    LOW = "low"  # no match, fields are parser guesses
    MANUAL = "manual"  # user corrected


class ScanStatus(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    ERROR = "error"


class Library(BaseModel):
    """
    A user-defined mapping of remote roots to one media type.
    """

    id: str
    name: str
    type: LibraryType
    root_paths: List[str] = Field(default_factory=list)


class FileDescriptor(BaseModel):
    """
    Represents a single file on the remote.
    """

    remote_path: str
    filename: str
    size: int = 0
    is_dir: bool = False
    mime_type: Optional[str] = None


class ListingResult(BaseModel):
    new_files: List[FileDescriptor] = Field(default_factory=list)
    removed_paths: List[str] = Field(default_factory=list)
    total_found: int = 0
    errors: List[str] = Field(default_factory=list)


class ParsedTitle(BaseModel):
    title: str
    year: Optional[int] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    is_episode: bool = False


class MetadataPatch(BaseModel):
    """
    Normalized partial record returned by a metadata provider.
    Unset fields mean "no information", never "clear this field".
    """

    title: Optional[str] = None
    year: Optional[int] = None
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    thumb_url: Optional[str] = None
    overview: Optional[str] = None
    rating: Optional[float] = None
    genres: Optional[List[str]] = None
    # TV
    episode_title: Optional[str] = None
    show_title: Optional[str] = None
    show_id: Optional[str] = None
    show_poster_url: Optional[str] = None
    show_backdrop_url: Optional[str] = None
    show_overview: Optional[str] = None
    # Music
    artist: Optional[str] = None
    album: Optional[str] = None
    track_number: Optional[int] = None
    # Books
    author: Optional[str] = None
    # Provenance
    metadata_id: Optional[str] = None
    metadata_source: Optional[MetadataSource] = None
    metadata_confidence: Optional[Confidence] = None

    @property
    def is_empty(self) -> bool:
        return not self.present_fields()

    def present_fields(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


class MediaItem(BaseModel):
    """
    One physical file on the remote. The id is derived from remote_path only.
    """

    id: str
    library_id: str
    library_type: LibraryType
    remote_path: str
    filename: str
    title: str
    year: Optional[int] = None
    size: int = 0
    mime_type: Optional[str] = None
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    thumb_url: Optional[str] = None
    overview: Optional[str] = None
    rating: Optional[float] = None
    genres: Optional[List[str]] = None
    duration: Optional[float] = None
    metadata_id: Optional[str] = None
    metadata_source: Optional[MetadataSource] = None
    metadata_confidence: Confidence = Confidence.LOW
    added_at: float = 0.0
    last_scanned_at: float = 0.0
    # TV
    season: Optional[int] = None
    episode: Optional[int] = None
    episode_title: Optional[str] = None
    show_title: Optional[str] = None
    show_id: Optional[str] = None
    show_poster_url: Optional[str] = None
    show_backdrop_url: Optional[str] = None
    show_overview: Optional[str] = None
    # Music
    artist: Optional[str] = None
    album: Optional[str] = None
    track_number: Optional[int] = None
    # Books
    author: Optional[str] = None

    def merged_with(self, patch: MetadataPatch) -> "MediaItem":
        """
        Returns a copy with every field present in the patch written over this record.
        """
        return self.model_copy(update=patch.present_fields())


class WatchProgress(BaseModel):
    item_id: str
    position: float = 0.0  # seconds for video/audio, page for documents
    duration: float = 0.0
    completed: bool = False
    last_watched_at: float = 0.0
    cfi: Optional[str] = None  # e-book location


class ScanState(BaseModel):
    status: ScanStatus = ScanStatus.IDLE
    current_library: Optional[str] = None
    progress: Optional[int] = None
    new_items_found: int = 0
    removed_items: int = 0
    metadata_failures: int = 0
    last_error: Optional[str] = None
    last_scan_at: Optional[float] = None


class ScanProgress(BaseModel):
    """
    Event published to scan observers.
    """

    status: ScanStatus
    current_library: Optional[str] = None
    progress: Optional[int] = None
    new_items_found: int = 0


class ScanSummary(BaseModel):
    library_id: str
    new_items: int = 0
    removed: int = 0
    metadata_failures: int = 0
    listing_errors: List[str] = Field(default_factory=list)


# Projections


class TvSeason(BaseModel):
    season_number: int
    episodes: List[MediaItem] = Field(default_factory=list)


class TvShow(BaseModel):
    show_key: str
    title: str
    library_id: str
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    overview: Optional[str] = None
    rating: Optional[float] = None
    year: Optional[int] = None
    seasons: List[TvSeason] = Field(default_factory=list)
    episode_count: int = 0


class MusicAlbum(BaseModel):
    name: str
    artist_name: str
    year: Optional[int] = None
    poster_url: Optional[str] = None
    tracks: List[MediaItem] = Field(default_factory=list)


class MusicArtist(BaseModel):
    name: str
    poster_url: Optional[str] = None
    albums: List[MusicAlbum] = Field(default_factory=list)
    album_count: int = 0
    track_count: int = 0


class InProgressEntry(BaseModel):
    item: MediaItem
    progress: WatchProgress
