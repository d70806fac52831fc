from __future__ import annotations

import logging
import os
import sqlite3
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional

from .models import (
    ArtistRecord,
    CatalogEntry,
    ConflictError,
    FolderDescriptor,
    NotFoundError,
    OwnershipCounts,
    OwnershipStatus,
    ReleaseInfo,
    ValidationError,
)

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS artists (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        natural_key TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        sort_name TEXT,
        disambiguation TEXT,
        linked_folder_path TEXT,
        last_refreshed_at TEXT NOT NULL,
        CHECK (length(trim(name)) > 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS catalog_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        artist_id INTEGER NOT NULL REFERENCES artists(id) ON DELETE CASCADE,
        natural_key TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        release_year INTEGER,
        release_date TEXT,
        disambiguation TEXT,
        ownership_status TEXT NOT NULL DEFAULT 'Missing',
        matched_path TEXT,
        match_confidence REAL,
        is_manual_override INTEGER NOT NULL DEFAULT 0,
        is_ignored INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL,
        CHECK (ownership_status IN ('Owned', 'Missing', 'Ambiguous')),
        CHECK (match_confidence IS NULL OR match_confidence BETWEEN 0 AND 1),
        CHECK (ownership_status != 'Owned' OR (matched_path IS NOT NULL AND is_ignored = 0))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_catalog_artist ON catalog_entries(artist_id)",
    """
    CREATE TABLE IF NOT EXISTS folder_cache (
        folder_path TEXT PRIMARY KEY,
        folder_name TEXT NOT NULL,
        parent_path TEXT NOT NULL,
        is_artist_folder INTEGER NOT NULL DEFAULT 0,
        parsed_year INTEGER,
        parsed_title TEXT,
        scanned_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_folder_parent ON folder_cache(parent_path)",
)

ENTRY_COLUMNS = (
    "id, artist_id, natural_key, title, release_year, release_date, disambiguation, "
    "ownership_status, matched_path, match_confidence, is_manual_override, is_ignored, updated_at"
)
ARTIST_COLUMNS = (
    "id, natural_key, name, sort_name, disambiguation, linked_folder_path, last_refreshed_at"
)
FOLDER_COLUMNS = (
    "folder_path, folder_name, parent_path, is_artist_folder, parsed_year, parsed_title, scanned_at"
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_text(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _path_or_none(value: Optional[str]) -> Optional[Path]:
    return Path(value) if value else None


class LibraryStore:
    """SQLite-backed storage for artists, catalog entries and the folder cache."""

    def __init__(self, path: Path) -> None:
        self.path = path
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        self._conn.execute("PRAGMA foreign_keys = ON")
        for statement in SCHEMA:
            self._conn.execute(statement)
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- artists ---------------------------------------------------------

    def add_artist(
        self,
        natural_key: str,
        name: str,
        sort_name: Optional[str] = None,
        disambiguation: Optional[str] = None,
    ) -> ArtistRecord:
        if not name or not name.strip():
            raise ValidationError("Artist name cannot be empty")
        with self._lock:
            try:
                cursor = self._conn.execute(
                    """
                    INSERT INTO artists(natural_key, name, sort_name, disambiguation, last_refreshed_at)
                    VALUES(?, ?, ?, ?, ?)
                    """,
                    (natural_key, name, sort_name, disambiguation, _to_text(_now())),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ConflictError(f"Artist {natural_key} already exists") from exc
            artist_id = cursor.lastrowid
        return self._require_artist(artist_id)

    def get_artist(self, artist_id: int) -> Optional[ArtistRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {ARTIST_COLUMNS} FROM artists WHERE id = ?", (artist_id,)
            ).fetchone()
        return self._artist_from_row(row) if row else None

    def get_artist_by_key(self, natural_key: str) -> Optional[ArtistRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {ARTIST_COLUMNS} FROM artists WHERE natural_key = ?",
                (natural_key,),
            ).fetchone()
        return self._artist_from_row(row) if row else None

    def list_artists(self) -> list[ArtistRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {ARTIST_COLUMNS} FROM artists ORDER BY name COLLATE NOCASE"
            ).fetchall()
        return [self._artist_from_row(row) for row in rows]

    def set_linked_folder(self, artist_id: int, path: Optional[Path]) -> ArtistRecord:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE artists SET linked_folder_path = ? WHERE id = ?",
                (str(path) if path else None, artist_id),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Artist {artist_id} not found")
        return self._require_artist(artist_id)

    def touch_artist(self, artist_id: int, when: Optional[datetime] = None) -> ArtistRecord:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE artists SET last_refreshed_at = ? WHERE id = ?",
                (_to_text(when or _now()), artist_id),
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Artist {artist_id} not found")
        return self._require_artist(artist_id)

    def find_oldest_artist(self) -> Optional[ArtistRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {ARTIST_COLUMNS} FROM artists ORDER BY last_refreshed_at ASC, id ASC LIMIT 1"
            ).fetchone()
        return self._artist_from_row(row) if row else None

    def delete_artist(self, artist_id: int) -> None:
        """Remove an artist together with its catalog entries."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM artists WHERE id = ?", (artist_id,))
            self._conn.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Artist {artist_id} not found")

    def _require_artist(self, artist_id: int) -> ArtistRecord:
        artist = self.get_artist(artist_id)
        if artist is None:
            raise NotFoundError(f"Artist {artist_id} not found")
        return artist

    @staticmethod
    def _artist_from_row(row: tuple) -> ArtistRecord:
        artist_id, key, name, sort_name, disambiguation, linked, refreshed = row
        return ArtistRecord(
            id=int(artist_id),
            natural_key=key,
            name=name,
            sort_name=sort_name,
            disambiguation=disambiguation,
            linked_folder_path=_path_or_none(linked),
            last_refreshed_at=_from_text(refreshed),
        )

    # -- catalog entries -------------------------------------------------

    def add_entries(self, artist_id: int, releases: Sequence[ReleaseInfo]) -> list[CatalogEntry]:
        for release in releases:
            if not release.title or not release.title.strip():
                raise ValidationError(f"Release {release.natural_key}: title cannot be empty")
        stamp = _to_text(_now())
        ids: list[int] = []
        with self._lock:
            try:
                for release in releases:
                    cursor = self._conn.execute(
                        """
                        INSERT INTO catalog_entries(
                            artist_id, natural_key, title, release_year, release_date,
                            disambiguation, ownership_status, updated_at
                        )
                        VALUES(?, ?, ?, ?, ?, ?, 'Missing', ?)
                        """,
                        (
                            artist_id,
                            release.natural_key,
                            release.title,
                            release.release_year,
                            release.release_date,
                            release.disambiguation,
                            stamp,
                        ),
                    )
                    ids.append(int(cursor.lastrowid))
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise ConflictError("Release already exists in the catalog") from exc
        return [self._require_entry(entry_id) for entry_id in ids]

    def get_entry(self, entry_id: int) -> Optional[CatalogEntry]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {ENTRY_COLUMNS} FROM catalog_entries WHERE id = ?", (entry_id,)
            ).fetchone()
        return self._entry_from_row(row) if row else None

    def list_entries(self, artist_id: int) -> list[CatalogEntry]:
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {ENTRY_COLUMNS} FROM catalog_entries
                WHERE artist_id = ?
                ORDER BY release_year IS NULL, release_year ASC, title COLLATE NOCASE
                """,
                (artist_id,),
            ).fetchall()
        return [self._entry_from_row(row) for row in rows]

    def update_ownership(
        self,
        entry_id: int,
        *,
        status: OwnershipStatus,
        matched_path: Optional[Path],
        confidence: Optional[float],
        manual: Optional[bool] = None,
        automatic: bool = False,
    ) -> Optional[CatalogEntry]:
        """Write an ownership verdict.

        With ``automatic=True`` the row is only written while it is not a
        manual override, checked in the same statement. A skipped write
        returns ``None`` instead of raising.
        """
        if automatic and manual is not None:
            raise ValidationError("Automatic writes cannot change the manual override flag")
        if status is OwnershipStatus.OWNED and matched_path is None:
            raise ValidationError("An owned release needs a matched folder path")
        if confidence is not None and not 0.0 <= confidence <= 1.0:
            raise ValidationError("Match confidence must be between 0 and 1")
        fields = ["ownership_status = ?", "matched_path = ?", "match_confidence = ?", "updated_at = ?"]
        values: list[object] = [
            status.value,
            str(matched_path) if matched_path else None,
            confidence,
            _to_text(_now()),
        ]
        if manual is not None:
            fields.append("is_manual_override = ?")
            values.append(1 if manual else 0)
        if status is OwnershipStatus.OWNED:
            fields.append("is_ignored = 0")
        if not self._update_entry(entry_id, fields, values, only_automatic=automatic):
            return None
        return self._require_entry(entry_id)

    def set_manual_override(self, entry_id: int, manual: bool) -> CatalogEntry:
        self._update_entry(
            entry_id,
            ["is_manual_override = ?", "updated_at = ?"],
            [1 if manual else 0, _to_text(_now())],
        )
        return self._require_entry(entry_id)

    def set_ignored(self, entry_id: int, ignored: bool) -> CatalogEntry:
        try:
            self._update_entry(
                entry_id,
                ["is_ignored = ?", "updated_at = ?"],
                [1 if ignored else 0, _to_text(_now())],
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("An owned release cannot be ignored") from exc
        return self._require_entry(entry_id)

    def count_ownership(self, artist_id: int) -> OwnershipCounts:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT
                    COALESCE(SUM(CASE WHEN is_ignored = 0 THEN 1 ELSE 0 END), 0),
                    COALESCE(SUM(CASE WHEN is_ignored = 0 AND ownership_status = 'Owned' THEN 1 ELSE 0 END), 0),
                    COALESCE(SUM(is_ignored), 0)
                FROM catalog_entries
                WHERE artist_id = ?
                """,
                (artist_id,),
            ).fetchone()
        total, owned, ignored = row
        return OwnershipCounts(total=int(total), owned=int(owned), ignored=int(ignored))

    def _update_entry(
        self,
        entry_id: int,
        fields: list[str],
        values: list[object],
        *,
        only_automatic: bool = False,
    ) -> bool:
        where = "id = ? AND is_manual_override = 0" if only_automatic else "id = ?"
        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"UPDATE catalog_entries SET {', '.join(fields)} WHERE {where}",
                    (*values, entry_id),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise
        if cursor.rowcount == 0:
            if only_automatic:
                return False
            raise NotFoundError(f"Catalog entry {entry_id} not found")
        return True

    def _require_entry(self, entry_id: int) -> CatalogEntry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Catalog entry {entry_id} not found")
        return entry

    @staticmethod
    def _entry_from_row(row: tuple) -> CatalogEntry:
        (
            entry_id,
            artist_id,
            key,
            title,
            year,
            release_date,
            disambiguation,
            status,
            matched_path,
            confidence,
            manual,
            ignored,
            updated_at,
        ) = row
        return CatalogEntry(
            id=int(entry_id),
            artist_id=int(artist_id),
            natural_key=key,
            title=title,
            release_year=year,
            release_date=release_date,
            disambiguation=disambiguation,
            ownership_status=OwnershipStatus(status),
            matched_path=_path_or_none(matched_path),
            match_confidence=float(confidence) if confidence is not None else None,
            is_manual_override=bool(manual),
            is_ignored=bool(ignored),
            updated_at=_from_text(updated_at),
        )

    # -- folder cache ----------------------------------------------------

    def replace_folders(self, root: Path, folders: Sequence[FolderDescriptor]) -> None:
        """Drop every cached descendant of ``root`` and store ``folders`` in its place."""
        prefix = str(root).rstrip("/\\") + os.sep
        with self._lock:
            # substr() rather than LIKE so '%' and '_' in folder names stay literal
            self._conn.execute(
                "DELETE FROM folder_cache WHERE substr(folder_path, 1, ?) = ?",
                (len(prefix), prefix),
            )
            self._conn.executemany(
                f"""
                INSERT INTO folder_cache({FOLDER_COLUMNS})
                VALUES(?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(folder_path) DO UPDATE SET
                    folder_name=excluded.folder_name,
                    parent_path=excluded.parent_path,
                    is_artist_folder=excluded.is_artist_folder,
                    parsed_year=excluded.parsed_year,
                    parsed_title=excluded.parsed_title,
                    scanned_at=excluded.scanned_at
                """,
                [
                    (
                        str(folder.path),
                        folder.name,
                        str(folder.parent_path),
                        1 if folder.is_artist_folder else 0,
                        folder.parsed_year,
                        folder.parsed_title,
                        _to_text(folder.scanned_at),
                    )
                    for folder in folders
                ],
            )
            self._conn.commit()
        logger.debug("Cached %d folder(s) under %s", len(folders), root)

    def list_folders(self, root: Path) -> list[FolderDescriptor]:
        prefix = str(root).rstrip("/\\") + os.sep
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {FOLDER_COLUMNS} FROM folder_cache
                WHERE substr(folder_path, 1, ?) = ?
                ORDER BY folder_path
                """,
                (len(prefix), prefix),
            ).fetchall()
        return [
            FolderDescriptor(
                path=Path(path),
                name=name,
                parent_path=Path(parent),
                is_artist_folder=bool(is_artist),
                parsed_year=year,
                parsed_title=title,
                scanned_at=_from_text(scanned_at),
            )
            for path, name, parent, is_artist, year, title, scanned_at in rows
        ]
