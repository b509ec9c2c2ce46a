"""Tag, colour, and note-field normalisation."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from hexanotes.errors import ValidationError
from hexanotes.note import DEFAULT_COLOR, PALETTE, Attachment

if TYPE_CHECKING:
    from hexanotes.note import Note

# #rgb or #rrggbb
_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")


def parse_tags(raw: str | Iterable[str] | None) -> list[str]:
    """Return tags from a comma-separated string or an iterable (trimmed, de-duped, ordered)."""
    if raw is None:
        return []
    items = raw.split(",") if isinstance(raw, str) else raw
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


def display_tags(note: "Note") -> list[str]:
    """Tags in display order, derived from the note's current tags."""
    return sorted(parse_tags(note.tags), key=str.lower)


def resolve_color(value: str | None) -> str:
    """Map a palette name or raw hex value to the stored hex value."""
    if value is None or not value.strip():
        return DEFAULT_COLOR
    value = value.strip()
    if value.lower() in PALETTE:
        return PALETTE[value.lower()]
    if _HEX_COLOR_RE.match(value):
        return value.lower()
    raise ValidationError(f"Unknown colour: {value!r}", details={"color": value})


def parse_files(raw: Iterable[Attachment | dict[str, Any]] | None) -> list[Attachment]:
    if not raw:
        return []
    return [f if isinstance(f, Attachment) else Attachment.from_dict(f) for f in raw]


def normalise_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate user-supplied note fields and return them in stored form.

    Raises :class:`ValidationError` when the title is empty after trimming
    or the colour is not recognised.
    """
    title = str(fields.get("title") or "").strip()
    if not title:
        raise ValidationError("Title is required", details={"title": fields.get("title")})
    return {
        "title": title,
        "content": str(fields.get("content") or ""),
        "tags": parse_tags(fields.get("tags")),
        "color": resolve_color(fields.get("color")),
        "files": parse_files(fields.get("files")),
    }
