import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from album_tracker.commands.doctor import run
from album_tracker.config import (
    LibrarySettings,
    ProviderSettings,
    Settings,
    StorageSettings,
)
from album_tracker.store import LibraryStore


class TestDoctorReport(unittest.TestCase):
    def test_reports_artists_and_oldest_refresh(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            root = tmp / "music"
            root.mkdir()
            db_path = tmp / "tracker.sqlite3"

            store = LibraryStore(db_path)
            try:
                artist = store.add_artist("83d91898-7763-47d7-b03b-b92132375c47", "Pink Floyd")
                store.touch_artist(artist.id, datetime(2024, 1, 2, tzinfo=timezone.utc))
            finally:
                store.close()

            settings = Settings(
                library=LibrarySettings(root=root),
                providers=ProviderSettings(musicbrainz_useragent="me@example.org"),
                storage=StorageSettings(database_path=db_path),
            )
            report = run(settings)

        self.assertTrue(report.ok)
        joined = "\n".join(report.checks)
        self.assertIn("Library root: OK", joined)
        self.assertIn("Artists: OK (1 tracked)", joined)
        self.assertIn("Pink Floyd at 2024-01-02", joined)
        self.assertIn("MusicBrainz user agent: OK", joined)

    def test_missing_root_and_placeholder_user_agent(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            settings = Settings(
                library=LibrarySettings(root=tmp / "missing"),
                storage=StorageSettings(database_path=tmp / "tracker.sqlite3"),
            )
            report = run(settings)

        self.assertFalse(report.ok)
        joined = "\n".join(report.checks)
        self.assertIn("Library root: ERROR (missing)", joined)
        self.assertIn("MusicBrainz user agent: WARNING", joined)


if __name__ == "__main__":
    unittest.main()
