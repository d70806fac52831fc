"""
Metadata refresh coordination.

One ``MetadataFetchCoordinator`` is created per process and shared by every
caller. It owns the only mutable process-wide state in the engine:

- the set of artist ids with a refresh in flight, so each artist is refreshed
  at most once at a time;
- the request pacer, which spaces *all* outbound metadata calls by the
  configured interval because the service's rate limit is account-wide.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from .config import ProviderSettings
from .models import (
    ArtistRecord,
    ArtistSearchResult,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    RefreshResult,
    ReleaseInfo,
    StaleArtist,
    StaleCheckResult,
    ValidationError,
    validate_natural_key,
)
from .protocols import ArtistRepository, CatalogRepository, MetadataService

logger = logging.getLogger(__name__)

T = TypeVar("T")

STALE_THRESHOLD_DAYS = 7
BACKOFF_BASE_SECONDS = 1.0


class RequestPacer:
    """Blocks callers until ``interval`` seconds have passed since the previous request."""

    def __init__(
        self,
        interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request: Optional[float] = None

    @property
    def last_request(self) -> Optional[float]:
        return self._last_request

    def wait(self) -> None:
        # Held while sleeping so concurrent callers queue up one interval apart.
        with self._lock:
            if self._last_request is not None:
                remaining = self.interval - (self._clock() - self._last_request)
                if remaining > 0:
                    self._sleep(remaining)
            self._mark_locked()

    def mark(self) -> None:
        with self._lock:
            self._mark_locked()

    def _mark_locked(self) -> None:
        now = self._clock()
        if self._last_request is None or now > self._last_request:
            self._last_request = now


class MetadataFetchCoordinator:
    def __init__(
        self,
        service: MetadataService,
        artists: ArtistRepository,
        catalog: CatalogRepository,
        settings: ProviderSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.service = service
        self.artists = artists
        self.catalog = catalog
        self.max_retries = settings.max_api_retries
        self.pacer = RequestPacer(settings.api_rate_limit_ms / 1000.0, clock=clock, sleep=sleep)
        self._sleep = sleep
        self._now = now
        self._in_flight: set[int] = set()
        self._in_flight_lock = threading.Lock()

    @property
    def in_flight(self) -> frozenset[int]:
        with self._in_flight_lock:
            return frozenset(self._in_flight)

    @contextmanager
    def _claim(self, artist_id: int) -> Iterator[None]:
        with self._in_flight_lock:
            if artist_id in self._in_flight:
                raise ConflictError("Refresh already in progress for this artist")
            self._in_flight.add(artist_id)
        try:
            yield
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(artist_id)

    def refresh(self, artist_id: int) -> RefreshResult:
        with self._claim(artist_id):
            artist = self.artists.get_artist(artist_id)
            if artist is None:
                raise NotFoundError(f"Artist {artist_id} not found")
            artist_key = validate_natural_key(artist.natural_key)

            fetched = self.retry_with_backoff(
                lambda: self.service.fetch_releases(artist_key),
                label=f"Fetch releases for {artist.name}",
            )
            new_releases = self._unseen_releases(artist, fetched)
            if new_releases:
                self.catalog.add_entries(artist.id, new_releases)
                logger.info("Added %d release(s) for %s", len(new_releases), artist.name)

            touched = self.artists.touch_artist(artist.id, self._now())
            return RefreshResult(
                artist_id=artist.id,
                releases_added=len(new_releases),
                refreshed_at=touched.last_refreshed_at,
                message=None if new_releases else "No new releases found",
            )

    def _unseen_releases(
        self, artist: ArtistRecord, fetched: list[ReleaseInfo]
    ) -> list[ReleaseInfo]:
        known = {entry.natural_key for entry in self.catalog.list_entries(artist.id)}
        unseen: list[ReleaseInfo] = []
        for release in fetched:
            if release.natural_key in known:
                continue
            known.add(release.natural_key)
            unseen.append(release)
        return unseen

    def check_stale(self, now: Optional[datetime] = None) -> StaleCheckResult:
        oldest = self.artists.find_oldest_artist()
        if oldest is None:
            return StaleCheckResult(refresh_needed=False)
        now = now or self._now()
        age_days = (now - oldest.last_refreshed_at).total_seconds() / 86400
        if age_days <= STALE_THRESHOLD_DAYS:
            return StaleCheckResult(refresh_needed=False)

        logger.info("%s was last refreshed %.1f days ago, refreshing", oldest.name, age_days)
        result = self.refresh(oldest.id)
        return StaleCheckResult(
            refresh_needed=True,
            artist=StaleArtist(
                id=oldest.id,
                name=oldest.name,
                last_refreshed_at=oldest.last_refreshed_at,
                days_since_refresh=age_days,
            ),
            refresh_result=result,
        )

    def search_artists(self, term: str) -> list[ArtistSearchResult]:
        if not term or not term.strip():
            raise ValidationError("Search term cannot be empty")
        return self.retry_with_backoff(
            lambda: self.service.search_artists(term.strip()),
            label=f'Artist search for "{term.strip()}"',
        )

    def import_artist(
        self,
        natural_key: str,
        name: str,
        *,
        sort_name: Optional[str] = None,
        disambiguation: Optional[str] = None,
    ) -> tuple[ArtistRecord, RefreshResult]:
        key = validate_natural_key(natural_key)
        if not name or not name.strip():
            raise ValidationError("Artist name cannot be empty")
        if self.artists.get_artist_by_key(key) is not None:
            raise ConflictError(f"Artist {key} already exists")
        artist = self.artists.add_artist(key, name.strip(), sort_name, disambiguation)
        result = self.refresh(artist.id)
        return artist, result

    def remove_artist(self, artist_id: int) -> ArtistRecord:
        """Stop tracking an artist. Its catalog entries go with it."""
        with self._claim(artist_id):
            artist = self.artists.get_artist(artist_id)
            if artist is None:
                raise NotFoundError(f"Artist {artist_id} not found")
            self.artists.delete_artist(artist.id)
            logger.info("Removed %s and its catalog", artist.name)
            return artist

    def retry_with_backoff(self, fn: Callable[[], T], *, label: str) -> T:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            self.pacer.wait()
            try:
                result = fn()
            except (ExternalServiceError, OSError) as exc:
                self.pacer.mark()
                error = _as_service_error(exc)
                if not error.retryable or attempt == self.max_retries:
                    logger.error("%s failed after %d attempt(s): %s", label, attempt + 1, error.detail)
                    if error is exc:
                        raise
                    raise error from exc
                delay = (2**attempt) * BACKOFF_BASE_SECONDS
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.0fs: %s",
                    label,
                    attempt + 1,
                    attempts,
                    delay,
                    error.detail,
                )
                self._sleep(delay)
                continue
            self.pacer.mark()
            if attempt > 0:
                logger.info("%s succeeded on attempt %d", label, attempt + 1)
            return result
        raise AssertionError("unreachable")  # pragma: no cover


def _as_service_error(exc: Exception) -> ExternalServiceError:
    if isinstance(exc, ExternalServiceError):
        return exc
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ExternalServiceError(f"{exc.__class__.__name__}: {exc}", retryable=True)
    return ExternalServiceError(f"{exc.__class__.__name__}: {exc}")
