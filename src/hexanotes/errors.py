"""Error taxonomy shared by the store, collection, and sync layers.

Validation and not-found errors are raised synchronously to the caller.
Remote errors (``AuthExpired``, ``RemoteUnavailable``, ``CorruptRemoteState``)
are raised by the mirror adapters and caught at the sync coordinator.
"""

from __future__ import annotations


class NotesError(Exception):
    """Base exception for all hexanotes errors."""

    def __init__(self, message: str, code: str = "SYS_INTERNAL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class ValidationError(NotesError):
    """Raised when note fields fail validation (e.g. an empty title)."""

    def __init__(self, message: str = "Validation failed", details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message, code="VAL_VALIDATION_ERROR")


class NotFound(NotesError):
    """Raised when an operation targets an unknown note id."""

    def __init__(self, note_id: str) -> None:
        self.note_id = note_id
        super().__init__(f"Note not found: {note_id}", code="RES_NOT_FOUND")


class NotAuthenticated(NotesError):
    """Raised when a local store is opened without a signed-in identity."""

    def __init__(self, message: str = "No signed-in identity") -> None:
        super().__init__(message, code="AUTH_MISSING_IDENTITY")


class AuthExpired(NotesError):
    """Raised when the remote credential is missing or has expired."""

    def __init__(self, message: str = "Authentication expired") -> None:
        super().__init__(message, code="AUTH_EXPIRED")


class RemoteUnavailable(NotesError):
    """Raised when the remote service cannot be reached or rejects a call."""

    def __init__(self, message: str = "Remote service unavailable") -> None:
        super().__init__(message, code="SYS_REMOTE_UNAVAILABLE")


class CorruptRemoteState(NotesError):
    """Raised when a remote snapshot does not decode to an array of notes."""

    def __init__(self, message: str = "Remote snapshot is corrupt") -> None:
        super().__init__(message, code="SYS_CORRUPT_REMOTE")


class ConfigError(NotesError):
    """Raised when settings cannot be loaded."""

    def __init__(self, message: str = "Invalid configuration") -> None:
        super().__init__(message, code="SYS_CONFIG_ERROR")
