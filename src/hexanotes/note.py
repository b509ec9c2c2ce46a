"""Core Note dataclass and snapshot (de)serialisation."""

from __future__ import annotations

import json
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from hexanotes.errors import CorruptRemoteState

#: Fixed card palette.  The first entry is the default colour.
PALETTE: dict[str, str] = {
    "yellow": "#fef08a",
    "green": "#bbf7d0",
    "blue": "#bfdbfe",
    "pink": "#fbcfe8",
    "purple": "#e9d5ff",
    "orange": "#fed7aa",
}
DEFAULT_COLOR = next(iter(PALETTE.values()))


def new_note_id() -> str:
    """Time-based id with a random suffix so bursts within a millisecond stay unique."""
    return f"{int(time.time() * 1000):x}{secrets.token_hex(4)}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class Attachment:
    """Descriptor of a file uploaded to the remote store."""

    name: str
    mime_type: str
    remote_url: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "mimeType": self.mime_type, "remoteUrl": self.remote_url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        # Older snapshots stored the link under "url".
        url = data.get("remoteUrl") or data.get("url") or ""
        return cls(
            name=str(data.get("name", "")),
            mime_type=str(data.get("mimeType") or "application/octet-stream"),
            remote_url=str(url),
        )


@dataclass
class Note:
    """A single note card."""

    id: str
    title: str
    content: str = ""
    tags: list[str] = field(default_factory=list)
    color: str = DEFAULT_COLOR
    files: list[Attachment] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
            "color": self.color,
            "files": [f.to_dict() for f in self.files],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Note":
        """Build a note from its snapshot form, filling defaults for absent keys.

        Raises ``ValueError`` when ``id`` or ``title`` is missing or empty, or
        when ``tags`` or ``files`` has the wrong shape.
        """
        from hexanotes.parser import parse_tags

        note_id = str(data.get("id") or "").strip()
        title = str(data.get("title") or "").strip()
        if not note_id or not title:
            raise ValueError(f"note entry missing id or title: {data!r}")
        tags = data.get("tags")
        if tags is not None and not isinstance(tags, str):
            if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                raise ValueError(f"note {note_id}: tags must be a string or a list of strings")
        files = data.get("files") or []
        if not isinstance(files, list):
            raise ValueError(f"note {note_id}: files must be a list")
        return cls(
            id=note_id,
            title=title,
            content=str(data.get("content") or ""),
            tags=parse_tags(tags),
            color=str(data.get("color") or DEFAULT_COLOR),
            files=[Attachment.from_dict(f) for f in files if isinstance(f, dict)],
            created_at=str(data.get("createdAt") or data.get("created_at") or utc_now()),
        )


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


def encode_snapshot(notes: list[Note]) -> str:
    """Serialise the whole collection as one JSON array."""
    return json.dumps([n.to_dict() for n in notes], ensure_ascii=False)


def decode_snapshot(raw: str | bytes) -> list[Note]:
    """Parse a snapshot; raise :class:`CorruptRemoteState` unless it is an array of notes."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CorruptRemoteState(f"snapshot is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise CorruptRemoteState(f"snapshot is a {type(data).__name__}, expected an array")
    notes: list[Note] = []
    seen: set[str] = set()
    for entry in data:
        if not isinstance(entry, dict):
            raise CorruptRemoteState("snapshot entry is not an object")
        try:
            note = Note.from_dict(entry)
        except (TypeError, ValueError) as exc:
            raise CorruptRemoteState(str(exc)) from exc
        if note.id in seen:
            raise CorruptRemoteState(f"duplicate note id in snapshot: {note.id}")
        seen.add(note.id)
        notes.append(note)
    return notes
