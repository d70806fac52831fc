from __future__ import annotations

import os
from dataclasses import dataclass

from ..app import AlbumTrackerApp
from ..config import Settings
from .output import error, ok as ok_line, warning


@dataclass(slots=True)
class DoctorReport:
    ok: bool
    checks: list[str]


def run(settings: Settings, app: AlbumTrackerApp | None = None) -> DoctorReport:
    checks: list[str] = []
    ok = True

    owns_app = app is None
    app = app or AlbumTrackerApp.create(settings)
    try:
        checks.append(ok_line("Database", str(settings.storage.database_path)))

        root = settings.library.root
        if not root.exists():
            ok = False
            checks.append(error("Library root", "missing"))
        elif not root.is_dir():
            ok = False
            checks.append(error("Library root", "not a directory"))
        elif not os.access(root, os.R_OK | os.X_OK):
            ok = False
            checks.append(error("Library root", "not readable"))
        else:
            checks.append(ok_line("Library root", str(root)))

        matching = settings.matching
        checks.append(
            ok_line(
                "Matching",
                f"threshold={matching.similarity_threshold:.2f} "
                f"year_tolerance={matching.year_tolerance}",
            )
        )

        providers = settings.providers
        if "example.com" in providers.musicbrainz_useragent:
            checks.append(
                warning(
                    "MusicBrainz user agent",
                    "set providers.musicbrainz_useragent to a real contact",
                )
            )
        else:
            checks.append(ok_line("MusicBrainz user agent"))
        checks.append(
            ok_line(
                "Rate limit",
                f"{providers.api_rate_limit_ms}ms, {providers.max_api_retries} retries",
            )
        )

        artists = app.store.list_artists()
        checks.append(ok_line("Artists", f"{len(artists)} tracked"))
        oldest = app.store.find_oldest_artist()
        if oldest is not None:
            checks.append(
                ok_line("Oldest refresh", f"{oldest.name} at {oldest.last_refreshed_at:%Y-%m-%d}")
            )
    finally:
        if owns_app:
            app.close()

    return DoctorReport(ok=ok, checks=checks)
