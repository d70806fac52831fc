from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

YEAR_PREFIX_PATTERN = re.compile(r"^\[(?P<year>\d{4})\]")
GROUPING_PATTERN = re.compile(r"^=\s*[A-Z0-9]\s*=$")
PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")
WHITESPACE_PATTERN = re.compile(r"\s+")
ARTICLE_PREFIX = "The "
ARTICLE_SUFFIX = ", The"


@dataclass(frozen=True, slots=True)
class ParsedFolder:
    year: Optional[int]
    title: str


def normalize_title(value: str) -> str:
    cleaned = PUNCTUATION_PATTERN.sub("", value.lower())
    cleaned = WHITESPACE_PATTERN.sub(" ", cleaned)
    return cleaned.strip()


def parse_folder_name(name: str) -> ParsedFolder:
    """Split an album folder name of the form ``[YYYY] Title``."""
    match = YEAR_PREFIX_PATTERN.match(name)
    if not match:
        return ParsedFolder(year=None, title=normalize_title(name))
    title = name[match.end() :].strip()
    return ParsedFolder(year=int(match.group("year")), title=normalize_title(title))


def is_artist_folder(name: str) -> bool:
    if YEAR_PREFIX_PATTERN.match(name):
        return False
    # "= A =" style alphabetical grouping directories
    if GROUPING_PATTERN.match(name):
        return False
    if len(name) == 1:
        return False
    return True


def generate_name_variations(artist_name: str) -> list[str]:
    variations = [artist_name]
    if artist_name.startswith(ARTICLE_PREFIX):
        variations.append(f"{artist_name[len(ARTICLE_PREFIX):]}{ARTICLE_SUFFIX}")
    elif artist_name.endswith(ARTICLE_SUFFIX):
        variations.append(f"{ARTICLE_PREFIX}{artist_name[: -len(ARTICLE_SUFFIX)]}")
    # AC/DC is usually stored as AC-DC
    slashless = re.sub(r"[\\/]", "-", artist_name)
    if slashless != artist_name:
        variations.append(slashless)
    return variations
