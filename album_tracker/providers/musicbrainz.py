from __future__ import annotations

import logging
from typing import Any, Optional

import musicbrainzngs

from ..config import ProviderSettings
from ..models import ArtistSearchResult, ExternalServiceError, ReleaseInfo

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 502, 503, 504})
RELEASE_GROUP_LIMIT = 100


class MusicBrainzService:
    """Thin adapter over musicbrainzngs.

    Pacing and retries are the coordinator's job, so the library's own rate
    limiter is switched off and every failure is translated into an
    ``ExternalServiceError`` tagged as retryable or not.
    """

    def __init__(self, settings: ProviderSettings) -> None:
        self.settings = settings
        musicbrainzngs.set_useragent(
            "album-tracker",
            "0.1",
            contact=settings.musicbrainz_useragent,
        )
        musicbrainzngs.set_rate_limit(False)

    def search_artists(self, term: str) -> list[ArtistSearchResult]:
        response = self._call(musicbrainzngs.search_artists, artist=term)
        artists = response.get("artist-list") or []
        results = [
            ArtistSearchResult(
                natural_key=item["id"],
                name=item.get("name", ""),
                sort_name=item.get("sort-name"),
                disambiguation=item.get("disambiguation"),
                score=_parse_score(item.get("ext:score")),
            )
            for item in artists
            if item.get("id")
        ]
        results.sort(key=lambda result: result.score, reverse=True)
        return results

    def fetch_releases(self, artist_key: str) -> list[ReleaseInfo]:
        response = self._call(
            musicbrainzngs.browse_release_groups,
            artist=artist_key,
            release_type=["album"],
            limit=RELEASE_GROUP_LIMIT,
        )
        groups = response.get("release-group-list") or []
        releases = [
            ReleaseInfo(
                natural_key=group["id"],
                title=group.get("title", ""),
                disambiguation=group.get("disambiguation") or None,
                release_date=group.get("first-release-date") or None,
            )
            for group in groups
            if _is_plain_album(group)
        ]
        # Undated releases sort last
        releases.sort(key=lambda release: (release.release_date is None, release.release_date or ""))
        return releases

    def _call(self, fn, **kwargs) -> dict[str, Any]:
        try:
            return fn(**kwargs)
        except musicbrainzngs.NetworkError as exc:
            raise ExternalServiceError(f"network error: {exc}", retryable=True) from exc
        except musicbrainzngs.ResponseError as exc:
            status = _status_code(exc)
            raise ExternalServiceError(
                f"HTTP {status}: {exc}",
                retryable=status in RETRYABLE_STATUS,
                status=status,
            ) from exc
        except (TimeoutError, ConnectionError) as exc:
            raise ExternalServiceError(f"network error: {exc}", retryable=True) from exc
        except musicbrainzngs.WebServiceError as exc:
            raise ExternalServiceError(str(exc)) from exc


def _is_plain_album(group: dict[str, Any]) -> bool:
    primary = group.get("primary-type") or group.get("type")
    if primary and primary.lower() != "album":
        return False
    return not group.get("secondary-type-list")


def _status_code(exc: Exception) -> Optional[int]:
    cause = getattr(exc, "cause", None)
    code = getattr(cause, "code", None)
    return code if isinstance(code, int) else None


def _parse_score(value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
