# Copyright (c) 2025 Trae AI. All rights reserved.

import asyncio
import json
import logging
import mimetypes
import os
import re
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Set
from .exceptions import ListingError
from .models import FileDescriptor, ListingResult

logger = logging.getLogger(__name__)


class RemoteLister(Protocol):
    """
    Lists media files under a root and reports the delta against known paths.
    """

    async def scan_files(self, root_path: str, known_paths: Iterable[str]) -> ListingResult:
        ...


def is_media(filename: str, extensions: Set[str]) -> bool:
    return Path(filename).suffix.lower() in extensions


def compute_delta(
    found: List[FileDescriptor], known_paths: Iterable[str], errors: Optional[List[str]] = None
) -> ListingResult:
    """
    new_files = found minus known (listing order kept), removed_paths = known minus found.
    """
    known = set(known_paths)
    found_paths = set()
    new_files = []
    for f in found:
        if f.remote_path in found_paths:
            continue
        found_paths.add(f.remote_path)
        if f.remote_path not in known:
            new_files.append(f)

    removed = sorted(known - found_paths)
    return ListingResult(
        new_files=new_files,
        removed_paths=removed,
        total_found=len(found_paths),
        errors=list(errors or []),
    )


class LocalLister:
    """
    Walks a mounted remote (or any local directory) for media files.
    """

    def __init__(self, extensions: List[str], blacklist: List[str] = None):
        self.extensions = {ext.lower() for ext in extensions}
        self.blacklist = set(blacklist) if blacklist else {"#recycle", "@eaDir", ".DS_Store"}

    async def scan_files(self, root_path: str, known_paths: Iterable[str]) -> ListingResult:
        known = list(known_paths)
        return await asyncio.to_thread(self._scan, root_path, known)

    def _scan(self, root_path: str, known_paths: List[str]) -> ListingResult:
        root = Path(root_path)
        if not root.is_dir():
            raise ListingError(f"Root not found: {root_path}")

        found: List[FileDescriptor] = []
        errors: List[str] = []
        for current, dirs, files in os.walk(root):
            # Modify dirs in place to skip blacklisted directories
            dirs[:] = sorted(d for d in dirs if d not in self.blacklist)
            for name in sorted(files):
                if name in self.blacklist or not is_media(name, self.extensions):
                    continue
                path = Path(current) / name
                try:
                    size = path.stat().st_size
                except OSError as e:
                    errors.append(f"{path}: {e}")
                    continue
                found.append(
                    FileDescriptor(
                        remote_path=path.as_posix(),
                        filename=name,
                        size=size,
                        mime_type=mimetypes.guess_type(name)[0],
                    )
                )
        return compute_delta(found, known_paths, errors)


class RcloneLister:
    """
    Lists a remote with `rclone lsjson --recursive --files-only`.
    """

    def __init__(
        self,
        extensions: List[str],
        binary: str = "rclone",
        config_path: Optional[Path] = None,
        timeout: Optional[float] = None,
    ):
        self.extensions = {ext.lower() for ext in extensions}
        self.binary = binary
        self.config_path = config_path
        self.timeout = timeout

    def build_command(self, root_path: str) -> List[str]:
        cmd = [self.binary, "lsjson"]
        if self.config_path:
            cmd += ["--config", str(self.config_path)]
        cmd += ["--recursive", "--no-modtime", "--files-only", root_path]
        return cmd

    async def scan_files(self, root_path: str, known_paths: Iterable[str]) -> ListingResult:
        known = list(known_paths)
        return await asyncio.to_thread(self._scan, root_path, known)

    def _scan(self, root_path: str, known_paths: List[str]) -> ListingResult:
        cmd = self.build_command(root_path)
        logger.info(f"Listing {root_path} with rclone")
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ListingError(f"Failed to run rclone: {e}") from e

        if proc.returncode != 0:
            raise ListingError(f"rclone error: {proc.stderr.strip()}")

        try:
            entries = json.loads(proc.stdout or "[]")
        except json.JSONDecodeError as e:
            raise ListingError(f"Failed to parse rclone output: {e}") from e

        return compute_delta(self.parse_entries(root_path, entries), known_paths)

    def parse_entries(self, root_path: str, entries: List[dict]) -> List[FileDescriptor]:
        found = []
        base = root_path.rstrip("/")
        # A bare remote ("gdrive:") joins without a separator
        prefix = base if base.endswith(":") else base + "/"
        for entry in entries:
            if entry.get("IsDir"):
                continue
            name = entry.get("Name", "")
            if not is_media(name, self.extensions):
                continue
            found.append(
                FileDescriptor(
                    remote_path=f"{prefix}{entry.get('Path', name)}",
                    filename=name,
                    size=entry.get("Size") or 0,
                    mime_type=entry.get("MimeType"),
                )
            )
        return found


# rclone remotes are written "name:path"; single letters are drive names
REMOTE_PREFIX_RE = re.compile(r"^[\w.\- ]{2,}:")


def normalize_root(root_path: str) -> str:
    """
    Canonical form of a library root, so stored item paths stay comparable
    across scans: remotes lose trailing slashes, local roots become absolute.
    """
    root_path = root_path.strip()
    if REMOTE_PREFIX_RE.match(root_path):
        return root_path.rstrip("/")
    return Path(os.path.abspath(os.path.expanduser(root_path))).as_posix()


def is_under(path: str, root_path: str) -> bool:
    base = root_path.rstrip("/")
    if base.endswith(":"):
        return path.startswith(base)
    return path == base or path.startswith(base + "/")


class RoutingLister:
    """
    Sends "remote:path" roots to rclone and everything else to the local walker.
    """

    def __init__(self, local: LocalLister, rclone: RcloneLister):
        self.local = local
        self.rclone = rclone

    def lister_for(self, root_path: str) -> RemoteLister:
        return self.rclone if REMOTE_PREFIX_RE.match(root_path) else self.local

    async def scan_files(self, root_path: str, known_paths: Iterable[str]) -> ListingResult:
        return await self.lister_for(root_path).scan_files(root_path, known_paths)


def build_lister(config) -> RoutingLister:
    return RoutingLister(
        LocalLister(config.media_extensions),
        RcloneLister(
            config.media_extensions,
            binary=config.rclone_binary,
            config_path=config.rclone_config_path,
        ),
    )
