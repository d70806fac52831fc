from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .heuristics import generate_name_variations, is_artist_folder, parse_folder_name
from .models import FolderDescriptor
from .paths import is_within_root, relative_to_root

logger = logging.getLogger(__name__)


class FilesystemScanner:
    """Walks the library root and describes the folders it finds.

    Unreadable or vanished directories are logged and skipped so a scan always
    returns whatever it could reach.
    """

    def __init__(
        self,
        root: Path,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not root.is_absolute():
            raise ValueError("Library root must be an absolute path")
        self.root = root
        self._clock = clock

    def scan_library(self) -> list[FolderDescriptor]:
        scanned_at = self._clock()
        entries: list[FolderDescriptor] = []
        self._scan_directory(self.root, entries, scanned_at)
        logger.debug("Full scan found %d folder(s)", len(entries))
        return entries

    def _scan_directory(
        self, directory: Path, entries: list[FolderDescriptor], scanned_at: datetime
    ) -> None:
        children = self._list_subdirectories(directory)
        if children is None:
            return
        for name in children:
            folder = directory / name
            parsed = parse_folder_name(name)
            entries.append(
                FolderDescriptor(
                    path=folder,
                    name=name,
                    parent_path=directory,
                    is_artist_folder=is_artist_folder(name),
                    parsed_year=parsed.year,
                    parsed_title=parsed.title,
                    scanned_at=scanned_at,
                )
            )
            self._scan_directory(folder, entries, scanned_at)

    def scan_artist_folder(self, artist_folder: Path) -> list[FolderDescriptor]:
        if not is_within_root(self.root, artist_folder):
            logger.warning("Refusing to scan a folder outside the library root")
            return []
        children = self._list_subdirectories(artist_folder)
        if children is None:
            return []
        scanned_at = self._clock()
        entries: list[FolderDescriptor] = []
        for name in children:
            parsed = parse_folder_name(name)
            if parsed.year is None:
                continue
            entries.append(
                FolderDescriptor(
                    path=artist_folder / name,
                    name=name,
                    parent_path=artist_folder,
                    is_artist_folder=False,
                    parsed_year=parsed.year,
                    parsed_title=parsed.title,
                    scanned_at=scanned_at,
                )
            )
        return entries

    def detect_artist_folder(self, artist_name: str) -> Optional[Path]:
        variations = [value.lower() for value in generate_name_variations(artist_name)]
        for entry in self.scan_library():
            if entry.name.lower() in variations:
                logger.debug("Detected folder for %s: %s", artist_name, entry.path)
                return entry.path
        logger.info("No folder found for %s", artist_name)
        return None

    def _list_subdirectories(self, directory: Path) -> Optional[list[str]]:
        try:
            with os.scandir(directory) as it:
                names = [
                    entry.name
                    for entry in it
                    if entry.is_dir(follow_symlinks=False)
                ]
        except OSError as exc:
            logger.warning(
                "Cannot access directory %s: %s",
                relative_to_root(self.root, directory) or ".",
                exc.strerror or exc.__class__.__name__,
            )
            return None
        return sorted(names)
