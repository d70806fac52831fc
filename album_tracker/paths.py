"""
Path confinement for everything that touches the library on disk.

Every user-supplied path goes through ``resolve_path`` before it is used.
Rejections return ``None`` so callers can map them onto their own error
responses; only a misconfigured root raises.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional
from urllib.parse import unquote

from .models import DirectoryListing, FilesystemAccessError

logger = logging.getLogger(__name__)

RESERVED_DEVICE_NAMES = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{i}" for i in range(1, 10)}
    | {f"LPT{i}" for i in range(1, 10)}
)
SEGMENT_SPLIT = re.compile(r"[\\/]")
MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _normalize_root(root: str | Path) -> str:
    root_str = os.fspath(root)
    if not os.path.isabs(root_str):
        raise ValueError("Library root must be an absolute path")
    stripped = root_str.rstrip("/\\")
    return stripped or root_str[:1]


def _decode(user_input: str) -> Optional[str]:
    if MALFORMED_ESCAPE.search(user_input):
        return None
    try:
        return unquote(user_input, errors="strict")
    except UnicodeDecodeError:
        return None


def contains_device_name(value: str) -> bool:
    for segment in SEGMENT_SPLIT.split(value):
        stem = segment.split(".", 1)[0].strip().upper()
        if stem in RESERVED_DEVICE_NAMES:
            return True
    return False


def _inside(root: str, candidate: str) -> bool:
    if candidate == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return candidate.startswith(prefix)


def resolve_path(root: str | Path, user_input: str) -> Optional[Path]:
    root_str = _normalize_root(root)

    decoded = _decode(user_input)
    if decoded is None:
        logger.warning("Rejected path with invalid encoding: %r", user_input)
        return None
    if "\x00" in decoded:
        logger.warning("Rejected path containing a null byte: %r", user_input)
        return None
    if contains_device_name(decoded):
        logger.warning("Rejected path naming a reserved device: %r", user_input)
        return None

    resolved = os.path.normpath(os.path.join(root_str, decoded))
    if not _inside(root_str, resolved):
        logger.warning("Blocked path traversal attempt: %r", user_input)
        return None
    return Path(resolved)


def is_within_root(root: str | Path, path: str | Path) -> bool:
    root_str = _normalize_root(root)
    candidate = os.fspath(path)
    if not os.path.isabs(candidate) or "\x00" in candidate:
        return False
    return _inside(root_str, os.path.normpath(candidate))


def relative_to_root(root: str | Path, path: str | Path) -> str:
    rel = os.path.relpath(os.fspath(path), _normalize_root(root))
    return "" if rel == "." else rel


def browse_directory(root: str | Path, user_input: str = "") -> Optional[DirectoryListing]:
    """List the subdirectories of ``user_input`` (relative to ``root``).

    Returns ``None`` when the path is rejected by ``resolve_path``. Missing,
    unreadable or non-directory targets raise ``FilesystemAccessError`` with a
    message that does not reveal the absolute path.
    """
    target = resolve_path(root, user_input)
    if target is None:
        return None
    try:
        if not target.is_dir():
            if target.exists():
                raise FilesystemAccessError("Path is not a directory")
            raise FilesystemAccessError("Directory not found")
        with os.scandir(target) as it:
            names = sorted(
                entry.name for entry in it if entry.is_dir(follow_symlinks=False)
            )
    except PermissionError as exc:
        logger.warning("Permission denied while browsing %r", user_input)
        raise FilesystemAccessError("Permission denied") from exc
    except OSError as exc:
        logger.warning("Cannot browse %r: %s", user_input, exc.strerror)
        raise FilesystemAccessError("Directory not readable") from exc

    parent: Optional[str] = None
    root_str = _normalize_root(root)
    if os.fspath(target) != root_str:
        parent = relative_to_root(root_str, target.parent)
    return DirectoryListing(
        current_path=relative_to_root(root_str, target),
        parent_path=parent,
        directories=[(name, relative_to_root(root_str, target / name)) for name in names],
    )
