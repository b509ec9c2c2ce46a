"""NoteCollection: the in-memory authority for the active note set."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import replace
from typing import Any

from hexanotes.errors import NotFound
from hexanotes.logging import get_logger
from hexanotes.note import Note, new_note_id, utc_now
from hexanotes.parser import normalise_fields, parse_files
from hexanotes.store import LocalNoteStore

logger = get_logger(__name__)

MutationListener = Callable[[str, Note | None], None]


class NoteQuery:
    """Lazy, restartable view of notes matching a text/tag filter.

    Each iteration re-reads the collection, so a query built before a
    mutation reflects the state at iteration time.
    """

    def __init__(self, source: Callable[[], list[Note]], text: str = "", tag: str | None = None) -> None:
        self._source = source
        self.text = text.strip().lower()
        self.tag = tag

    def matches(self, note: Note) -> bool:
        if self.tag is not None and self.tag not in note.tags:
            return False
        if not self.text:
            return True
        return (
            self.text in note.title.lower()
            or self.text in note.content.lower()
            or self.text in ",".join(note.tags).lower()
        )

    def __iter__(self) -> Iterator[Note]:
        for note in self._source():
            if self.matches(note):
                yield note

    def first(self) -> Note | None:
        return next(iter(self), None)

    def to_list(self) -> list[Note]:
        return list(self)


class NoteCollection:
    """Owns the note list for a session and writes every change through to the local store."""

    def __init__(self, store: LocalNoteStore, on_mutation: MutationListener | None = None) -> None:
        self._store = store
        self._notes: list[Note] = []
        self._on_mutation = on_mutation

    # ------------------------------------------------------------------
    # Load / bulk replace
    # ------------------------------------------------------------------

    def load(self) -> list[Note]:
        """Populate the collection from the local store."""
        self._notes = self._store.get_all()
        logger.debug("collection_loaded", count=len(self._notes))
        return self.notes

    def replace_all(self, notes: list[Note]) -> None:
        """Wholesale replace the collection (remote snapshot wins) and persist it locally.

        Does not notify mutation listeners: the content came from the remote.
        """
        self._notes = [replace(n, tags=list(n.tags), files=list(n.files)) for n in notes]
        self._store.put_all(self._notes)
        logger.info("collection_replaced", count=len(self._notes))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, fields: dict[str, Any]) -> Note:
        """Validate *fields*, append a new note, and persist it."""
        values = normalise_fields(fields)
        note_id = new_note_id()
        while self._index_of(note_id) is not None:
            note_id = new_note_id()
        note = Note(id=note_id, created_at=utc_now(), **values)
        self._store.put(note)
        self._notes.append(note)
        logger.info("note_created", note_id=note.id)
        self._notify("create", note)
        return note

    def update(self, note_id: str, fields: dict[str, Any]) -> Note:
        """Replace title/content/tags/color and append any new files.

        Raises :class:`NotFound` for an unknown id and
        :class:`~hexanotes.errors.ValidationError` for an empty title; the
        collection is unchanged in both cases.
        """
        idx = self._index_of(note_id)
        if idx is None:
            raise NotFound(note_id)
        values = normalise_fields(fields)
        current = self._notes[idx]
        updated = replace(
            current,
            title=values["title"],
            content=values["content"],
            tags=values["tags"],
            color=values["color"],
            files=current.files + values["files"],
        )
        self._store.put(updated)
        self._notes[idx] = updated
        logger.info("note_updated", note_id=note_id, files_added=len(values["files"]))
        self._notify("update", updated)
        return updated

    def append_files(self, note_id: str, files: list[Any]) -> Note:
        """Append attachment descriptors without touching other fields."""
        idx = self._index_of(note_id)
        if idx is None:
            raise NotFound(note_id)
        current = self._notes[idx]
        updated = replace(current, files=current.files + parse_files(files))
        self._store.put(updated)
        self._notes[idx] = updated
        self._notify("update", updated)
        return updated

    def delete(self, note_id: str) -> Note:
        """Remove and return the note so the caller can clean up its attachments."""
        idx = self._index_of(note_id)
        if idx is None:
            raise NotFound(note_id)
        note = self._notes.pop(idx)
        self._store.remove(note_id)
        logger.info("note_deleted", note_id=note_id)
        self._notify("delete", note)
        return note

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @property
    def notes(self) -> list[Note]:
        """A shallow copy of the current notes, in collection order."""
        return list(self._notes)

    def get(self, note_id: str) -> Note:
        idx = self._index_of(note_id)
        if idx is None:
            raise NotFound(note_id)
        return self._notes[idx]

    def query(self, text: str = "", tag: str | None = None) -> NoteQuery:
        """Case-insensitive substring match over title, content, or tag text, optionally restricted to *tag*."""
        return NoteQuery(lambda: list(self._notes), text=text, tag=tag)

    def tags(self) -> dict[str, int]:
        """Tag -> note count across the collection."""
        counts: dict[str, int] = {}
        for note in self._notes:
            for tag in note.tags:
                counts[tag] = counts.get(tag, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, note_id: object) -> bool:
        return isinstance(note_id, str) and self._index_of(note_id) is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _index_of(self, note_id: str) -> int | None:
        for i, note in enumerate(self._notes):
            if note.id == note_id:
                return i
        return None

    def _notify(self, kind: str, note: Note | None) -> None:
        if self._on_mutation is not None:
            self._on_mutation(kind, note)

    def set_listener(self, listener: MutationListener | None) -> None:
        self._on_mutation = listener
