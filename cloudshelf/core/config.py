# Copyright (c) 2025 Trae AI. All rights reserved.

import yaml
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel

DEFAULT_MEDIA_EXTENSIONS = [
    # video
    ".mkv", ".mp4", ".avi", ".mov", ".wmv", ".m4v", ".ts", ".webm",
    # audio
    ".mp3", ".flac", ".aac", ".ogg", ".m4a", ".wav", ".opus",
    # books and documents
    ".epub", ".pdf",
    # audiobooks
    ".m4b", ".aax",
]


class Config(BaseModel):
    database_path: Path = Path("cloudshelf.db")
    tmdb_api_key: Optional[str] = None
    theporndb_api_key: Optional[str] = None
    rclone_binary: str = "rclone"
    rclone_config_path: Optional[Path] = None
    media_extensions: List[str] = DEFAULT_MEDIA_EXTENSIONS

    # Metadata client
    min_request_gap_ms: int = 120
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    request_timeout_seconds: float = 10.0
    degraded_threshold: int = 5

    # Scan orchestrator
    batch_size: int = 20

    # Playback and projections
    progress_interval_seconds: float = 10.0
    completion_ratio: float = 0.9
    min_watched_seconds: float = 30.0
    recently_added_limit: int = 20
    in_progress_limit: int = 20

    server_port: int = 5000
    server_host: str = "0.0.0.0"
    scan_interval_minutes: int = 60
    verbose: bool = False

    @classmethod
    def load(cls, path: str = "config.yaml") -> "Config":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)
