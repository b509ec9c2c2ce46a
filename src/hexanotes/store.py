"""LocalNoteStore: per-identity DuckDB persistence of the note collection.

Each signed-in identity gets its own database file under ``data_dir`` so
switching accounts on one device never mixes collections.

Usage::

    store = LocalNoteStore.open("ada@example.com", data_dir=Path("~/.hexanotes"))
    store.put(note)
    notes = store.get_all()
    store.remove(note.id)
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path

import duckdb

from hexanotes.errors import NotAuthenticated
from hexanotes.logging import get_logger
from hexanotes.note import Attachment, Note

logger = get_logger(__name__)

_UNSAFE_RE = re.compile(r"[^a-z0-9._-]+")


def store_filename(identity_key: str) -> str:
    """Filesystem-safe database name for *identity_key*."""
    key = identity_key.strip().lower()
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"{_UNSAFE_RE.sub('_', key)[:48]}-{digest}.duckdb"


class LocalNoteStore:
    """DuckDB-backed note table scoped to one identity."""

    def __init__(self, identity_key: str, conn: duckdb.DuckDBPyConnection, path: Path | None = None) -> None:
        self._identity_key = identity_key
        self._path = path
        self.conn = conn
        self._create_schema()

    @classmethod
    def open(cls, identity_key: str | None, data_dir: Path | str | None = None) -> "LocalNoteStore":
        """Open (or create) the store for *identity_key*.

        ``data_dir=None`` opens an in-memory database.
        """
        if not identity_key or not identity_key.strip():
            raise NotAuthenticated("Cannot open a note store without an identity")
        if data_dir is None:
            return cls(identity_key, duckdb.connect(":memory:"))
        data_dir = Path(data_dir).expanduser()
        data_dir.mkdir(parents=True, exist_ok=True)
        path = data_dir / store_filename(identity_key)
        logger.debug("store_opened", identity=identity_key, path=str(path))
        return cls(identity_key, duckdb.connect(str(path)), path)

    @property
    def identity_key(self) -> str:
        return self._identity_key

    @property
    def path(self) -> Path | None:
        return self._path

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_schema(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                id          VARCHAR PRIMARY KEY,
                title       VARCHAR NOT NULL,
                content     TEXT    NOT NULL,
                tags        VARCHAR[],
                color       VARCHAR NOT NULL,
                files       JSON,
                created_at  VARCHAR NOT NULL,
                position    BIGINT  NOT NULL
            )
        """)

    @staticmethod
    def _row(note: Note, position: int) -> tuple:
        return (
            note.id,
            note.title,
            note.content,
            list(note.tags),
            note.color,
            json.dumps([f.to_dict() for f in note.files]),
            note.created_at,
            position,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_all(self) -> list[Note]:
        """Return every stored note in collection order; empty list if none."""
        rows = self.conn.execute(
            "SELECT id, title, content, tags, color, files, created_at FROM notes ORDER BY position"
        ).fetchall()
        notes: list[Note] = []
        for note_id, title, content, tags, color, files, created_at in rows:
            raw_files = json.loads(files) if isinstance(files, str) else (files or [])
            notes.append(
                Note(
                    id=note_id,
                    title=title,
                    content=content,
                    tags=list(tags or []),
                    color=color,
                    files=[Attachment.from_dict(f) for f in raw_files],
                    created_at=created_at,
                )
            )
        return notes

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM notes").fetchone()[0]

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put(self, note: Note) -> None:
        """Upsert *note* by id; new notes go to the end of the collection."""
        if not note.title.strip():
            raise ValueError("refusing to persist a note with an empty title")
        row = self.conn.execute("SELECT position FROM notes WHERE id = ?", [note.id]).fetchone()
        if row is None:
            position = self.conn.execute("SELECT COALESCE(MAX(position) + 1, 0) FROM notes").fetchone()[0]
            self.conn.execute(
                "INSERT INTO notes VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                list(self._row(note, position)),
            )
            return
        self.conn.execute(
            """
            UPDATE notes SET
                title      = ?,
                content    = ?,
                tags       = ?,
                color      = ?,
                files      = ?,
                created_at = ?
            WHERE id = ?
            """,
            list(self._row(note, row[0])[1:7]) + [note.id],
        )

    def put_all(self, notes: list[Note]) -> None:
        """Replace the whole stored collection with *notes* in one transaction."""
        if any(not n.title.strip() for n in notes):
            raise ValueError("refusing to persist a note with an empty title")
        self.conn.execute("BEGIN TRANSACTION")
        try:
            self.conn.execute("DELETE FROM notes")
            if notes:
                self.conn.executemany(
                    "INSERT INTO notes VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [self._row(n, i) for i, n in enumerate(notes)],
                )
        except duckdb.Error:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    def remove(self, note_id: str) -> None:
        """Delete one note; absent ids are ignored."""
        self.conn.execute("DELETE FROM notes WHERE id = ?", [note_id])

    def clear(self) -> None:
        """Drop every note for this identity (used on logout)."""
        self.conn.execute("DELETE FROM notes")
        logger.info("store_cleared", identity=self._identity_key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "LocalNoteStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
