from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from .models import (
    ArtistRecord,
    ArtistSearchResult,
    CatalogEntry,
    FolderDescriptor,
    OwnershipCounts,
    OwnershipStatus,
    ReleaseInfo,
)


class MetadataService(Protocol):
    def search_artists(self, term: str) -> list[ArtistSearchResult]: ...

    def fetch_releases(self, artist_key: str) -> list[ReleaseInfo]: ...


class ArtistRepository(Protocol):
    def add_artist(
        self,
        natural_key: str,
        name: str,
        sort_name: Optional[str] = None,
        disambiguation: Optional[str] = None,
    ) -> ArtistRecord: ...

    def get_artist(self, artist_id: int) -> Optional[ArtistRecord]: ...

    def get_artist_by_key(self, natural_key: str) -> Optional[ArtistRecord]: ...

    def list_artists(self) -> list[ArtistRecord]: ...

    def set_linked_folder(self, artist_id: int, path: Optional[Path]) -> ArtistRecord: ...

    def touch_artist(self, artist_id: int, when: Optional[datetime] = None) -> ArtistRecord: ...

    def find_oldest_artist(self) -> Optional[ArtistRecord]: ...

    def delete_artist(self, artist_id: int) -> None: ...


class CatalogRepository(Protocol):
    def add_entries(self, artist_id: int, releases: Sequence[ReleaseInfo]) -> list[CatalogEntry]: ...

    def get_entry(self, entry_id: int) -> Optional[CatalogEntry]: ...

    def list_entries(self, artist_id: int) -> list[CatalogEntry]: ...

    def update_ownership(
        self,
        entry_id: int,
        *,
        status: OwnershipStatus,
        matched_path: Optional[Path],
        confidence: Optional[float],
        manual: Optional[bool] = None,
        automatic: bool = False,
    ) -> Optional[CatalogEntry]: ...

    def set_manual_override(self, entry_id: int, manual: bool) -> CatalogEntry: ...

    def set_ignored(self, entry_id: int, ignored: bool) -> CatalogEntry: ...

    def count_ownership(self, artist_id: int) -> OwnershipCounts: ...


class FolderCacheRepository(Protocol):
    def replace_folders(self, root: Path, folders: Sequence[FolderDescriptor]) -> None: ...

    def list_folders(self, root: Path) -> list[FolderDescriptor]: ...
