from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Optional

from rapidfuzz import fuzz

from .heuristics import normalize_title
from .models import (
    FolderDescriptor,
    MatchVerdict,
    OwnershipStatus,
    ReleaseCandidate,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.80
DEFAULT_YEAR_TOLERANCE = 1
DEFAULT_INCLUSION_THRESHOLD = 0.60

MISSING = MatchVerdict(status=OwnershipStatus.MISSING, confidence=0.0)


def title_similarity(release_title: str, folder_title: str) -> float:
    """Similarity in [0, 1] that ignores word order, position and length differences."""
    if not release_title or not folder_title:
        return 0.0
    score = max(
        fuzz.partial_ratio(release_title, folder_title),
        fuzz.token_sort_ratio(release_title, folder_title),
    )
    return score / 100.0


class NameMatcher:
    """Pairs catalog releases with album folders by year window and fuzzy title."""

    def __init__(
        self,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        year_tolerance: int = DEFAULT_YEAR_TOLERANCE,
        inclusion_threshold: float = DEFAULT_INCLUSION_THRESHOLD,
    ) -> None:
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValidationError("Similarity threshold must be between 0 and 1")
        if not 0.0 <= inclusion_threshold <= 1.0:
            raise ValidationError("Inclusion threshold must be between 0 and 1")
        if year_tolerance < 0:
            raise ValidationError("Year tolerance cannot be negative")
        self.similarity_threshold = similarity_threshold
        self.year_tolerance = year_tolerance
        # Never stricter than the acceptance threshold, so near misses surface as Ambiguous.
        self.inclusion_threshold = min(inclusion_threshold, similarity_threshold)

    def match_releases(
        self,
        releases: Iterable[ReleaseCandidate],
        folders: Iterable[FolderDescriptor],
    ) -> dict[str, MatchVerdict]:
        ordered = sorted(folders, key=lambda folder: str(folder.path))
        verdicts: dict[str, MatchVerdict] = {}
        for release in releases:
            verdicts[release.natural_key] = self._match_single(release, ordered)
        return verdicts

    def _match_single(
        self, release: ReleaseCandidate, folders: list[FolderDescriptor]
    ) -> MatchVerdict:
        candidates = self._filter_by_year(folders, release.year)
        if not candidates:
            return MISSING

        query = normalize_title(release.title)
        best: Optional[FolderDescriptor] = None
        best_score = 0.0
        for folder in candidates:
            score = title_similarity(query, folder.parsed_title or "")
            if score < self.inclusion_threshold:
                continue
            if best is None or score > best_score:
                best = folder
                best_score = score
        if best is None:
            return MISSING

        status = (
            OwnershipStatus.OWNED
            if best_score >= self.similarity_threshold
            else OwnershipStatus.AMBIGUOUS
        )
        logger.debug(
            "%s -> %s (%.2f, %s)", release.title, best.name, best_score, status.value
        )
        return MatchVerdict(status=status, confidence=best_score, folder_path=best.path)

    def _filter_by_year(
        self, folders: list[FolderDescriptor], year: Optional[int]
    ) -> list[FolderDescriptor]:
        if year is None:
            return []
        return [
            folder
            for folder in folders
            if folder.parsed_year is not None
            and abs(folder.parsed_year - year) <= self.year_tolerance
        ]
