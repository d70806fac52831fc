from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

MBID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
YEAR_PREFIX = re.compile(r"^(\d{4})")


class OwnershipStatus(str, Enum):
    OWNED = "Owned"
    MISSING = "Missing"
    AMBIGUOUS = "Ambiguous"


@dataclass(slots=True)
class ArtistRecord:
    id: int
    natural_key: str
    name: str
    last_refreshed_at: datetime
    sort_name: Optional[str] = None
    disambiguation: Optional[str] = None
    linked_folder_path: Optional[Path] = None


@dataclass(slots=True)
class CatalogEntry:
    id: int
    artist_id: int
    natural_key: str
    title: str
    updated_at: datetime
    release_year: Optional[int] = None
    release_date: Optional[str] = None
    disambiguation: Optional[str] = None
    ownership_status: OwnershipStatus = OwnershipStatus.MISSING
    matched_path: Optional[Path] = None
    match_confidence: Optional[float] = None
    is_manual_override: bool = False
    is_ignored: bool = False


@dataclass(frozen=True, slots=True)
class FolderDescriptor:
    path: Path
    name: str
    parent_path: Path
    is_artist_folder: bool
    parsed_year: Optional[int]
    parsed_title: Optional[str]
    scanned_at: datetime


@dataclass(frozen=True, slots=True)
class ReleaseCandidate:
    """Minimal view of a catalog entry used by the matcher."""

    natural_key: str
    title: str
    year: Optional[int]


@dataclass(frozen=True, slots=True)
class MatchVerdict:
    status: OwnershipStatus
    confidence: float
    folder_path: Optional[Path] = None


@dataclass(frozen=True, slots=True)
class ArtistSearchResult:
    natural_key: str
    name: str
    score: int = 0
    sort_name: Optional[str] = None
    disambiguation: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    natural_key: str
    title: str
    release_date: Optional[str] = None
    disambiguation: Optional[str] = None

    @property
    def release_year(self) -> Optional[int]:
        return extract_year(self.release_date)


@dataclass(frozen=True, slots=True)
class RefreshResult:
    artist_id: int
    releases_added: int
    refreshed_at: datetime
    message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StaleArtist:
    id: int
    name: str
    last_refreshed_at: datetime
    days_since_refresh: float


@dataclass(frozen=True, slots=True)
class StaleCheckResult:
    refresh_needed: bool
    artist: Optional[StaleArtist] = None
    refresh_result: Optional[RefreshResult] = None


@dataclass(frozen=True, slots=True)
class ReconcileSummary:
    artist_id: int
    folder_path: Optional[Path]
    scanned_folders: int
    matched_releases: int
    completed_at: datetime


@dataclass(frozen=True, slots=True)
class DirectoryListing:
    current_path: str
    parent_path: Optional[str]
    directories: list[tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class OwnershipCounts:
    total: int
    owned: int
    ignored: int


class AlbumTrackerError(Exception):
    """Base class for errors that cross a component boundary."""


class NotFoundError(AlbumTrackerError):
    """Raised when an artist or catalog entry id is unknown."""


class ConflictError(AlbumTrackerError):
    """Raised when a refresh is already running or a natural key already exists."""


class ValidationError(AlbumTrackerError):
    """Raised for rejected input before any I/O takes place."""


class FilesystemAccessError(AlbumTrackerError):
    """Raised when a directory cannot be read. Scans log and skip instead."""


class ExternalServiceError(AlbumTrackerError):
    """Raised when the metadata service fails. The message stays generic; details go to logs."""

    def __init__(
        self,
        detail: str,
        *,
        retryable: bool = False,
        status: Optional[int] = None,
    ) -> None:
        super().__init__("metadata service unavailable")
        self.detail = detail
        self.retryable = retryable
        self.status = status


def extract_year(release_date: Optional[str]) -> Optional[int]:
    if not release_date:
        return None
    match = YEAR_PREFIX.match(release_date)
    return int(match.group(1)) if match else None


def validate_natural_key(value: str) -> str:
    if not value or not MBID_PATTERN.match(value):
        raise ValidationError("Invalid MusicBrainz ID format (must be UUID)")
    return value.lower()
