from __future__ import annotations

from dataclasses import dataclass

from .config import Settings
from .matching import NameMatcher
from .protocols import MetadataService
from .providers.musicbrainz import MusicBrainzService
from .reconcile import OwnershipReconciler
from .refresh import MetadataFetchCoordinator
from .scanner import FilesystemScanner
from .store import LibraryStore


@dataclass
class AlbumTrackerApp:
    settings: Settings
    store: LibraryStore
    scanner: FilesystemScanner
    matcher: NameMatcher
    coordinator: MetadataFetchCoordinator
    reconciler: OwnershipReconciler

    @classmethod
    def create(
        cls,
        settings: Settings,
        *,
        service: MetadataService | None = None,
        store: LibraryStore | None = None,
    ) -> "AlbumTrackerApp":
        store = store or LibraryStore(settings.storage.database_path)
        scanner = FilesystemScanner(settings.library.root)
        matcher = NameMatcher(
            similarity_threshold=settings.matching.similarity_threshold,
            year_tolerance=settings.matching.year_tolerance,
            inclusion_threshold=settings.matching.inclusion_threshold,
        )
        coordinator = MetadataFetchCoordinator(
            service or MusicBrainzService(settings.providers),
            artists=store,
            catalog=store,
            settings=settings.providers,
        )
        reconciler = OwnershipReconciler(
            scanner,
            matcher,
            artists=store,
            catalog=store,
            folders=store,
        )
        return cls(
            settings=settings,
            store=store,
            scanner=scanner,
            matcher=matcher,
            coordinator=coordinator,
            reconciler=reconciler,
        )

    def close(self) -> None:
        self.store.close()
