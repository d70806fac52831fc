from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .matching import NameMatcher
from .models import (
    ArtistRecord,
    CatalogEntry,
    FolderDescriptor,
    MatchVerdict,
    NotFoundError,
    OwnershipCounts,
    OwnershipStatus,
    ReconcileSummary,
    ReleaseCandidate,
    ValidationError,
)
from .paths import is_within_root, resolve_path
from .protocols import ArtistRepository, CatalogRepository, FolderCacheRepository
from .scanner import FilesystemScanner

logger = logging.getLogger(__name__)
MISSING = MatchVerdict(status=OwnershipStatus.MISSING, folder_path=None, confidence=0.0)


class OwnershipReconciler:
    """Applies scan-and-match results to the catalog, honouring manual overrides.

    Entries flagged ``is_manual_override`` are never written by
    ``reconcile_artist``; only the override operations below touch them.
    """

    def __init__(
        self,
        scanner: FilesystemScanner,
        matcher: NameMatcher,
        artists: ArtistRepository,
        catalog: CatalogRepository,
        folders: FolderCacheRepository,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.scanner = scanner
        self.matcher = matcher
        self.artists = artists
        self.catalog = catalog
        self.folders = folders
        self._now = now

    @property
    def root(self) -> Path:
        return self.scanner.root

    def scan_library(self) -> list[FolderDescriptor]:
        descriptors = self.scanner.scan_library()
        self.folders.replace_folders(self.root, descriptors)
        logger.info("Library scan cached %d folder(s)", len(descriptors))
        return descriptors

    def reconcile_artist(self, artist_id: int) -> ReconcileSummary:
        artist = self._require_artist(artist_id)
        entries = self.catalog.list_entries(artist.id)
        folder = self._artist_folder(artist)

        if folder is None:
            for entry in entries:
                if entry.is_manual_override:
                    continue
                self._write_verdict(entry, MISSING)
            return ReconcileSummary(
                artist_id=artist.id,
                folder_path=None,
                scanned_folders=0,
                matched_releases=0,
                completed_at=self._now(),
            )

        descriptors = self.scanner.scan_artist_folder(folder)
        self.folders.replace_folders(folder, descriptors)
        verdicts = self.matcher.match_releases(
            [
                ReleaseCandidate(natural_key=e.natural_key, title=e.title, year=e.release_year)
                for e in entries
            ],
            descriptors,
        )

        matched = 0
        for entry in entries:
            if entry.is_manual_override:
                continue
            verdict = verdicts.get(entry.natural_key) or MISSING
            written = self._write_verdict(entry, verdict)
            if written is not None and written.ownership_status is OwnershipStatus.OWNED:
                matched += 1

        logger.info(
            "%s: %d folder(s) scanned, %d of %d release(s) owned",
            artist.name,
            len(descriptors),
            matched,
            len(entries),
        )
        return ReconcileSummary(
            artist_id=artist.id,
            folder_path=folder,
            scanned_folders=len(descriptors),
            matched_releases=matched,
            completed_at=self._now(),
        )

    def _write_verdict(self, entry: CatalogEntry, verdict: MatchVerdict) -> Optional[CatalogEntry]:
        written = self.catalog.update_ownership(
            entry.id,
            status=verdict.status,
            matched_path=verdict.folder_path,
            confidence=verdict.confidence,
            automatic=True,
        )
        if written is None:
            logger.debug("Skipped %s: manually overridden during the scan", entry.title)
        return written

    def _artist_folder(self, artist: ArtistRecord) -> Optional[Path]:
        linked = artist.linked_folder_path
        if linked is not None:
            if is_within_root(self.root, linked):
                return linked
            logger.warning("Ignoring linked folder for %s: outside the library root", artist.name)
        return self.scanner.detect_artist_folder(artist.name)

    # -- manual overrides ------------------------------------------------

    def set_folder_path(self, entry_id: int, user_path: str) -> Optional[CatalogEntry]:
        """Link an entry to a folder by hand. Returns ``None`` if the path is rejected."""
        self._require_entry(entry_id)
        resolved = resolve_path(self.root, user_path)
        if resolved is None:
            return None
        return self.catalog.update_ownership(
            entry_id,
            status=OwnershipStatus.OWNED,
            matched_path=resolved,
            confidence=None,
            manual=True,
        )

    def clear_folder_path(self, entry_id: int) -> CatalogEntry:
        self._require_entry(entry_id)
        return self.catalog.update_ownership(
            entry_id,
            status=OwnershipStatus.MISSING,
            matched_path=None,
            confidence=None,
            manual=True,
        )

    def set_ownership(self, entry_id: int, status: OwnershipStatus | str) -> CatalogEntry:
        try:
            status = OwnershipStatus(status)
        except ValueError as exc:
            raise ValidationError(
                "ownership_status must be one of: Owned, Missing, Ambiguous"
            ) from exc
        entry = self._require_entry(entry_id)
        if status is OwnershipStatus.OWNED and entry.matched_path is None:
            raise ValidationError("Cannot set ownership to Owned without a matched folder path")
        return self.catalog.update_ownership(
            entry_id,
            status=status,
            matched_path=entry.matched_path,
            confidence=None,
            manual=True,
        )

    def clear_override(self, entry_id: int) -> CatalogEntry:
        self._require_entry(entry_id)
        return self.catalog.set_manual_override(entry_id, False)

    def set_ignored(self, entry_id: int, ignored: bool) -> CatalogEntry:
        entry = self._require_entry(entry_id)
        if ignored and entry.ownership_status is OwnershipStatus.OWNED:
            raise ValidationError("An owned release cannot be ignored")
        return self.catalog.set_ignored(entry_id, ignored)

    def link_artist_folder(
        self, artist_id: int, user_path: Optional[str]
    ) -> Optional[ArtistRecord]:
        self._require_artist(artist_id)
        if user_path is None:
            return self.artists.set_linked_folder(artist_id, None)
        resolved = resolve_path(self.root, user_path)
        if resolved is None:
            return None
        return self.artists.set_linked_folder(artist_id, resolved)

    def ownership_counts(self, artist_id: int) -> OwnershipCounts:
        self._require_artist(artist_id)
        return self.catalog.count_ownership(artist_id)

    def _require_artist(self, artist_id: int) -> ArtistRecord:
        artist = self.artists.get_artist(artist_id)
        if artist is None:
            raise NotFoundError(f"Artist {artist_id} not found")
        return artist

    def _require_entry(self, entry_id: int) -> CatalogEntry:
        entry = self.catalog.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Catalog entry {entry_id} not found")
        return entry
