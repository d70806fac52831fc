from __future__ import annotations

import argparse
import logging
import re
from pathlib import Path

from .app import AlbumTrackerApp
from .commands import doctor as cmd_doctor
from .commands.output import entry_line
from .config import Settings, find_config
from .models import AlbumTrackerError, ExternalServiceError, OwnershipStatus
from .paths import browse_directory, relative_to_root
from .search_links import search_links

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"
WARNINGS_LOG_NAME = "album-tracker-warnings.log"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}


class ShortPathFormatter(logging.Formatter):
    """Strips the library root from log messages so only library-relative paths are shown."""

    def __init__(self, fmt: str, root: Path) -> None:
        super().__init__(fmt)
        self.root = str(root).rstrip("/")
        # Only a whole path component counts: /srv/music2 is not under /srv/music.
        self._pattern = (
            re.compile(rf"(?<![\w.\-/\\]){re.escape(self.root)}(?P<sep>/|$|(?=[\s:,;'\")\]]))")
            if self.root
            else None
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if self._pattern is None:
            return message
        return self._pattern.sub(lambda m: "" if m.group("sep") == "/" else ".", message)


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    """Keeps formatted warnings so they can be repeated once the command finishes."""

    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)

    def print_summary(self) -> None:
        if not self.records:
            return
        print(f"\n{LEVEL_COLORS[logging.WARNING]}Warnings/Errors summary:{C_RESET}")
        for line in self.records:
            print(f" - {line}")


def configure_logging(level_name: str, settings: Settings) -> WarningBufferHandler:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    library_root = settings.library.root

    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT, library_root))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(ShortPathFormatter(LOG_FORMAT, library_root))
    root_logger.addHandler(warn_buffer)

    warn_log_path = settings.storage.database_path.parent / WARNINGS_LOG_NAME
    warn_log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(warn_log_path, mode="w", encoding="utf-8", delay=True)
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ShortPathFormatter(LOG_FORMAT, library_root))
    root_logger.addHandler(file_handler)

    logging.getLogger("musicbrainzngs").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return warn_buffer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Track which albums you own")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    search_parser = subparsers.add_parser("search", help="Search MusicBrainz for an artist")
    search_parser.add_argument("term")
    add_parser = subparsers.add_parser("add", help="Track an artist and ingest its albums")
    add_parser.add_argument("mbid", help="MusicBrainz artist ID")
    add_parser.add_argument("name", help="Artist display name")
    add_parser.add_argument("--sort-name", default=None)
    add_parser.add_argument("--disambiguation", default=None)
    subparsers.add_parser("artists", help="List tracked artists")
    remove_parser = subparsers.add_parser(
        "remove", help="Stop tracking an artist and drop its albums"
    )
    remove_parser.add_argument("artist_id", type=int)
    refresh_parser = subparsers.add_parser("refresh", help="Fetch new albums for an artist")
    refresh_parser.add_argument("artist_id", type=int)
    subparsers.add_parser(
        "check-stale", help="Refresh the least recently refreshed artist if it is stale"
    )
    scan_parser = subparsers.add_parser(
        "scan", help="Scan an artist folder and update ownership"
    )
    scan_parser.add_argument("artist_id", type=int)
    subparsers.add_parser("scan-library", help="Rebuild the folder cache for the whole library")
    detect_parser = subparsers.add_parser("detect", help="Find the folder of an artist")
    detect_parser.add_argument("artist_id", type=int)
    browse_parser = subparsers.add_parser("browse", help="List folders inside the library")
    browse_parser.add_argument("path", nargs="?", default="")
    link_parser = subparsers.add_parser("link", help="Link an artist to a library folder")
    link_parser.add_argument("artist_id", type=int)
    link_parser.add_argument("path", nargs="?", default=None)
    link_parser.add_argument("--clear", action="store_true", help="Remove the link")
    albums_parser = subparsers.add_parser("albums", help="Show the albums of an artist")
    albums_parser.add_argument("artist_id", type=int)
    album_parser = subparsers.add_parser("album", help="Manually correct a single album")
    album_parser.add_argument("entry_id", type=int)
    actions = album_parser.add_mutually_exclusive_group(required=True)
    actions.add_argument("--path", help="Folder (relative to the library root) holding the album")
    actions.add_argument("--clear-path", action="store_true")
    actions.add_argument("--status", choices=[status.value for status in OwnershipStatus])
    actions.add_argument("--clear-override", action="store_true")
    actions.add_argument("--ignore", action="store_true")
    actions.add_argument("--unignore", action="store_true")
    subparsers.add_parser("doctor", help="Run basic config/library/database checks")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    config_path = find_config(args.config)
    settings = Settings.load(config_path)
    warn_buffer = configure_logging(args.log_level, settings)

    app = AlbumTrackerApp.create(settings)
    try:
        _dispatch(parser, args, app)
    except ExternalServiceError as exc:
        raise SystemExit(f"Error: {exc} (try again later)")
    except AlbumTrackerError as exc:
        raise SystemExit(f"Error: {exc}")
    finally:
        app.close()
        warn_buffer.print_summary()


def _dispatch(parser: argparse.ArgumentParser, args: argparse.Namespace, app: AlbumTrackerApp) -> None:
    root = app.settings.library.root
    reconciler = app.reconciler
    coordinator = app.coordinator
    match args.command:
        case "search":
            for result in coordinator.search_artists(args.term):
                extra = f" ({result.disambiguation})" if result.disambiguation else ""
                print(f"{result.score:>3}  {result.natural_key}  {result.name}{extra}")
        case "add":
            artist, result = coordinator.import_artist(
                args.mbid,
                args.name,
                sort_name=args.sort_name,
                disambiguation=args.disambiguation,
            )
            print(f"Added {artist.name} (id {artist.id}) with {result.releases_added} album(s)")
        case "artists":
            for artist in app.store.list_artists():
                counts = app.store.count_ownership(artist.id)
                print(
                    f"{artist.id:>5}  {artist.name}  {counts.owned}/{counts.total} owned"
                    f"  refreshed {artist.last_refreshed_at:%Y-%m-%d}"
                )
        case "remove":
            artist = coordinator.remove_artist(args.artist_id)
            print(f"Removed {artist.name}")
        case "refresh":
            result = coordinator.refresh(args.artist_id)
            print(result.message or f"Added {result.releases_added} album(s)")
        case "check-stale":
            stale = coordinator.check_stale()
            if not stale.refresh_needed:
                print("No stale artists")
            elif stale.artist and stale.refresh_result:
                print(
                    f"Refreshed {stale.artist.name} "
                    f"({stale.artist.days_since_refresh:.0f} days old): "
                    f"{stale.refresh_result.releases_added} new album(s)"
                )
        case "scan":
            summary = reconciler.reconcile_artist(args.artist_id)
            folder = relative_to_root(root, summary.folder_path) if summary.folder_path else "-"
            print(
                f"Folder: {folder or '.'}  scanned: {summary.scanned_folders}  "
                f"owned: {summary.matched_releases}"
            )
        case "scan-library":
            descriptors = reconciler.scan_library()
            artists = sum(1 for folder in descriptors if folder.is_artist_folder)
            print(f"Cached {len(descriptors)} folder(s), {artists} look like artist folders")
        case "detect":
            artist = app.store.get_artist(args.artist_id)
            if artist is None:
                raise SystemExit(f"Error: Artist {args.artist_id} not found")
            folder = app.scanner.detect_artist_folder(artist.name)
            print(relative_to_root(root, folder) if folder else "No folder found")
        case "browse":
            listing = browse_directory(root, args.path)
            if listing is None:
                raise SystemExit("Error: Invalid path: access outside library root is forbidden")
            for name, _relative in listing.directories:
                print(f"{name}/")
        case "link":
            if args.clear:
                reconciler.link_artist_folder(args.artist_id, None)
                print("Link removed")
            elif args.path is None:
                parser.error("link needs a path or --clear")
            elif reconciler.link_artist_folder(args.artist_id, args.path) is None:
                raise SystemExit("Error: Invalid path: must be within library root")
            else:
                print("Linked")
        case "albums":
            artist = app.store.get_artist(args.artist_id)
            if artist is None:
                raise SystemExit(f"Error: Artist {args.artist_id} not found")
            providers = app.settings.search_providers
            for entry in app.store.list_entries(artist.id):
                print(entry_line(entry))
                if entry.ownership_status is OwnershipStatus.MISSING and not entry.is_ignored:
                    for link in search_links(providers, artist.name, entry.title):
                        print(f"        {link.provider}: {link.url}")
            counts = reconciler.ownership_counts(args.artist_id)
            print(f"\n{counts.owned}/{counts.total} owned, {counts.ignored} ignored")
        case "album":
            _apply_album_override(reconciler, args)
        case "doctor":
            report = cmd_doctor.run(app.settings, app)
            for line in report.checks:
                print(line)
            if not report.ok:
                raise SystemExit(1)
        case _:
            parser.error("Unknown command")


def _apply_album_override(reconciler, args: argparse.Namespace) -> None:
    if args.path is not None:
        entry = reconciler.set_folder_path(args.entry_id, args.path)
        if entry is None:
            raise SystemExit("Error: Invalid path: must be within library root")
    elif args.clear_path:
        entry = reconciler.clear_folder_path(args.entry_id)
    elif args.status:
        entry = reconciler.set_ownership(args.entry_id, args.status)
    elif args.clear_override:
        entry = reconciler.clear_override(args.entry_id)
    else:
        entry = reconciler.set_ignored(args.entry_id, bool(args.ignore))
    print(entry_line(entry))


if __name__ == "__main__":  # pragma: no cover
    main()
