from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..models import CatalogEntry, OwnershipStatus


@dataclass(frozen=True, slots=True)
class CheckLine:
    label: str
    status: str
    detail: Optional[str] = None

    def render(self) -> str:
        if self.detail:
            return f"{self.label}: {self.status} ({self.detail})"
        return f"{self.label}: {self.status}"


def ok(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "OK", detail).render()


def warning(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "WARNING", detail).render()


def error(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "ERROR", detail).render()


STATUS_MARKS = {
    OwnershipStatus.OWNED: "[x]",
    OwnershipStatus.AMBIGUOUS: "[?]",
    OwnershipStatus.MISSING: "[ ]",
}


def entry_line(entry: CatalogEntry) -> str:
    year = entry.release_year if entry.release_year is not None else "----"
    parts = [f"{entry.id:>5}", STATUS_MARKS[entry.ownership_status], str(year), entry.title]
    if entry.match_confidence is not None and entry.ownership_status is not OwnershipStatus.MISSING:
        parts.append(f"({entry.match_confidence:.0%})")
    if entry.is_manual_override:
        parts.append("[manual]")
    if entry.is_ignored:
        parts.append("[ignored]")
    return " ".join(parts)
