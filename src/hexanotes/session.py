"""NotesSession: one signed-in identity's store, collection, and sync wiring.

Usage::

    tokens = StaticTokenProvider(access_token)
    mirror = DriveMirror(tokens, settings)
    session = NotesSession("ada@example.com", mirror, settings)
    await session.start()                 # local load, then remote pull

    note = session.create_note({"title": "Shopping", "tags": "home"})
    await session.delete_note(note.id)    # also cleans up attachments
    await session.logout()                # flush, clear local data
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from hexanotes.collection import NoteCollection, NoteQuery
from hexanotes.config import Settings
from hexanotes.errors import AuthExpired, NotesError
from hexanotes.logging import get_logger
from hexanotes.note import Note
from hexanotes.store import LocalNoteStore
from hexanotes.sync.base import NoteMirror, PullResult
from hexanotes.sync.coordinator import SyncCoordinator, SyncPolicy
from hexanotes.sync.debounce import Sleep

logger = get_logger(__name__)


class NotesSession:
    def __init__(
        self,
        identity_key: str | None,
        mirror: NoteMirror,
        settings: Settings | None = None,
        *,
        policy: SyncPolicy | None = None,
        in_memory: bool = False,
        sleep: Sleep | None = None,
        on_warning: Callable[[NotesError], None] | None = None,
        on_auth_expired: Callable[[AuthExpired], None] | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.identity_key = identity_key
        self.mirror = mirror
        self._in_memory = in_memory
        self._policy = policy or (
            SyncPolicy.INTERVAL if self.settings.sync_interval_seconds > 0 else SyncPolicy.DEBOUNCED
        )
        self._sleep = sleep
        self._on_warning = on_warning
        self._on_auth_expired = on_auth_expired

        self.store: LocalNoteStore | None = None
        self.collection: NoteCollection | None = None
        self.sync: SyncCoordinator | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> PullResult:
        """Open the local store, load it, then pull the remote snapshot."""
        self.store = LocalNoteStore.open(
            self.identity_key,
            None if self._in_memory else self.settings.data_dir,
        )
        self.collection = NoteCollection(self.store)
        self.collection.load()
        self.sync = SyncCoordinator(
            self.collection,
            self.mirror,
            policy=self._policy,
            debounce_seconds=self.settings.debounce_seconds,
            interval_seconds=self.settings.sync_interval_seconds,
            sleep=self._sleep,
            on_warning=self._on_warning,
            on_auth_expired=self._on_auth_expired,
        )
        logger.info("session_started", identity=self.identity_key, local_count=len(self.collection))
        result = await self.sync.pull()
        self.sync.start()
        return result

    async def close(self) -> None:
        """Push outstanding changes and release the local store."""
        try:
            if self.sync is not None:
                await self.sync.stop()
                await self.sync.flush()
        finally:
            if self.store is not None:
                self.store.close()
            await self.mirror.aclose()
        logger.info("session_closed", identity=self.identity_key)

    async def logout(self) -> None:
        """Flush, then erase this identity's local notes."""
        try:
            if self.sync is not None:
                await self.sync.stop()
                await self.sync.flush()
        finally:
            if self.store is not None:
                self.store.clear()
                self.store.close()
            await self.mirror.aclose()
        self.collection = None
        self.sync = None
        logger.info("session_logged_out", identity=self.identity_key)

    def _require(self) -> tuple[NoteCollection, SyncCoordinator]:
        if self.collection is None or self.sync is None:
            raise RuntimeError("NotesSession.start() has not been awaited")
        return self.collection, self.sync

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def create_note(self, fields: dict[str, Any]) -> Note:
        collection, _ = self._require()
        return collection.create(fields)

    def update_note(self, note_id: str, fields: dict[str, Any]) -> Note:
        collection, _ = self._require()
        return collection.update(note_id, fields)

    async def delete_note(self, note_id: str) -> Note:
        """Delete the note, then best-effort remove its remote attachments."""
        collection, sync = self._require()
        note = collection.delete(note_id)
        if note.files:
            await sync.remove_attachments(note)
        return note

    async def attach(self, note_id: str, name: str, mime_type: str, data: bytes) -> Note:
        """Upload *data* and append its descriptor to the note.

        Raises the remote error when the upload fails; the note is unchanged.
        """
        collection, _ = self._require()
        collection.get(note_id)
        attachment = await self.mirror.upload_attachment(name, mime_type, data)
        return collection.append_files(note_id, [attachment])

    def search(self, text: str = "", tag: str | None = None) -> NoteQuery:
        collection, _ = self._require()
        return collection.query(text, tag)

    @property
    def notes(self) -> list[Note]:
        collection, _ = self._require()
        return collection.notes
