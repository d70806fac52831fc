import os
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

from album_tracker.scanner import FilesystemScanner

FIXED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _make_library(root: Path) -> None:
    for rel in (
        "Pink Floyd/[1973] The Dark Side of the Moon",
        "Pink Floyd/[1979] The Wall",
        "Pink Floyd/Extras",
        "= B =/Beatles, The/[1969] Abbey Road",
        "AC-DC/[1980] Back in Black",
    ):
        (root / rel).mkdir(parents=True)
    (root / "Pink Floyd" / "cover.jpg").write_bytes(b"")


class TestFilesystemScanner(unittest.TestCase):
    def test_scan_library_walks_depth_first_in_name_order(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _make_library(root)
            scanner = FilesystemScanner(root, clock=lambda: FIXED)

            entries = scanner.scan_library()
            rel = [str(entry.path.relative_to(root)) for entry in entries]
            self.assertEqual(
                rel,
                [
                    "= B =",
                    "= B =/Beatles, The",
                    "= B =/Beatles, The/[1969] Abbey Road",
                    "AC-DC",
                    "AC-DC/[1980] Back in Black",
                    "Pink Floyd",
                    "Pink Floyd/Extras",
                    "Pink Floyd/[1973] The Dark Side of the Moon",
                    "Pink Floyd/[1979] The Wall",
                ],
            )
            by_name = {entry.name: entry for entry in entries}
            self.assertFalse(by_name["= B ="].is_artist_folder)
            self.assertTrue(by_name["Pink Floyd"].is_artist_folder)
            self.assertEqual(by_name["[1969] Abbey Road"].parsed_year, 1969)
            self.assertEqual(by_name["[1969] Abbey Road"].parent_path, root / "= B =" / "Beatles, The")
            self.assertTrue(all(entry.scanned_at == FIXED for entry in entries))

    def test_scan_artist_folder_keeps_only_dated_albums(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _make_library(root)
            scanner = FilesystemScanner(root)

            entries = scanner.scan_artist_folder(root / "Pink Floyd")
            self.assertEqual([entry.parsed_year for entry in entries], [1973, 1979])
            self.assertEqual(entries[0].parsed_title, "the dark side of the moon")
            self.assertTrue(all(not entry.is_artist_folder for entry in entries))

    def test_scan_artist_folder_refuses_paths_outside_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir, tempfile.TemporaryDirectory() as other:
            (Path(other) / "[2000] Elsewhere").mkdir()
            scanner = FilesystemScanner(Path(tmpdir))
            with self.assertLogs("album_tracker.scanner", level="WARNING"):
                self.assertEqual(scanner.scan_artist_folder(Path(other)), [])

    def test_detect_artist_folder_uses_name_variations(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _make_library(root)
            scanner = FilesystemScanner(root)

            self.assertEqual(
                scanner.detect_artist_folder("The Beatles"), root / "= B =" / "Beatles, The"
            )
            self.assertEqual(scanner.detect_artist_folder("pink floyd"), root / "Pink Floyd")
            self.assertEqual(scanner.detect_artist_folder("AC/DC"), root / "AC-DC")
            self.assertIsNone(scanner.detect_artist_folder("Nobody"))

    def test_missing_directories_are_logged_and_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            scanner = FilesystemScanner(root / "gone")
            with self.assertLogs("album_tracker.scanner", level="WARNING"):
                self.assertEqual(scanner.scan_library(), [])
            with self.assertLogs("album_tracker.scanner", level="WARNING"):
                self.assertEqual(scanner.scan_artist_folder(root / "gone" / "Artist"), [])

    def test_unreadable_directory_does_not_stop_the_walk(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _make_library(root)
            scanner = FilesystemScanner(root)
            real_scandir = os.scandir

            def scandir(path):
                if Path(path) == root / "Pink Floyd":
                    raise PermissionError(13, "Permission denied", str(path))
                return real_scandir(path)

            with patch("album_tracker.scanner.os.scandir", side_effect=scandir):
                with self.assertLogs("album_tracker.scanner", level="WARNING") as logs:
                    entries = scanner.scan_library()

            rel = [str(entry.path.relative_to(root)) for entry in entries]
            self.assertEqual(
                rel,
                [
                    "= B =",
                    "= B =/Beatles, The",
                    "= B =/Beatles, The/[1969] Abbey Road",
                    "AC-DC",
                    "AC-DC/[1980] Back in Black",
                    "Pink Floyd",
                ],
            )
            self.assertEqual(len(logs.output), 1)
            self.assertIn("Pink Floyd: Permission denied", logs.output[0])
            self.assertNotIn(tmpdir, logs.output[0])

    def test_relative_root_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            FilesystemScanner(Path("music"))


if __name__ == "__main__":
    unittest.main()
