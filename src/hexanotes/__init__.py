"""hexanotes: local-first note collection with cloud mirror sync."""

from hexanotes.collection import NoteCollection, NoteQuery
from hexanotes.config import Settings, load_settings
from hexanotes.errors import (
    AuthExpired,
    CorruptRemoteState,
    NotAuthenticated,
    NotesError,
    NotFound,
    RemoteUnavailable,
    ValidationError,
)
from hexanotes.note import PALETTE, Attachment, Note
from hexanotes.session import NotesSession
from hexanotes.store import LocalNoteStore

__all__ = [
    "PALETTE",
    "Attachment",
    "AuthExpired",
    "CorruptRemoteState",
    "LocalNoteStore",
    "NotAuthenticated",
    "Note",
    "NoteCollection",
    "NoteQuery",
    "NotesError",
    "NotesSession",
    "NotFound",
    "RemoteUnavailable",
    "Settings",
    "ValidationError",
    "load_settings",
]
