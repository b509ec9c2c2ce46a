"""Mirror protocols and tagged results shared by the sync backends."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar, Union, runtime_checkable

from hexanotes.errors import NotesError
from hexanotes.note import Attachment, Note

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Tagged results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Found(Generic[T]):
    handle: T


@dataclass(frozen=True)
class Missing:
    name: str = ""


Lookup = Union[Found[T], Missing]


@dataclass(frozen=True)
class SnapshotOk:
    notes: list[Note]


@dataclass(frozen=True)
class SnapshotCorrupt:
    reason: str


SnapshotRead = Union[SnapshotOk, SnapshotCorrupt]


class PullStatus(enum.Enum):
    RESTORED = "restored"
    EMPTY = "empty"
    CORRUPT = "corrupt"
    UNAVAILABLE = "unavailable"
    AUTH_EXPIRED = "auth_expired"


@dataclass
class PullResult:
    """Outcome of pulling the remote collection.

    ``source`` names the location the notes came from (``"primary"`` or
    ``"legacy"`` for the object mirror, ``"table"`` for the row mirror).
    """

    status: PullStatus
    notes: list[Note] = field(default_factory=list)
    source: str | None = None
    error: NotesError | None = None

    @property
    def restored(self) -> bool:
        return self.status is PullStatus.RESTORED


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class NoteMirror(Protocol):
    """Interface the sync coordinator drives.

    Implementations (object mirror, row mirror) raise
    :class:`~hexanotes.errors.AuthExpired` or
    :class:`~hexanotes.errors.RemoteUnavailable` on failure.
    """

    async def push(self, notes: list[Note]) -> None:
        """Make the remote reflect *notes*."""
        ...

    async def pull(self) -> PullResult:
        """Fetch the remote collection.  Absence is ``PullStatus.EMPTY``, never an error."""
        ...

    async def upload_attachment(self, name: str, mime_type: str, data: bytes) -> Attachment:
        """Store a binary payload and return its descriptor."""
        ...

    async def delete_attachment(self, attachment: Attachment) -> None:
        """Remove a previously uploaded payload."""
        ...

    async def aclose(self) -> None: ...


# ---------------------------------------------------------------------------
# Per-note changes (row mirrors)
# ---------------------------------------------------------------------------


class ChangeKind(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Change:
    """One collection mutation.  For ``DELETE`` *note* is the removed note."""

    kind: ChangeKind
    note: Note

    @property
    def note_id(self) -> str:
        return self.note.id


def merge_changes(earlier: Change | None, later: Change) -> Change:
    """Fold two pending changes to the same note into one.

    A create stays a create so the row is inserted with the latest fields.
    A delete always survives: deleting a row that was never inserted is a
    no-op remotely, while dropping it could orphan a row whose insert
    already landed.
    """
    if earlier is None or later.kind is ChangeKind.DELETE:
        return later
    if earlier.kind is ChangeKind.CREATE:
        return Change(ChangeKind.CREATE, later.note)
    return Change(ChangeKind.UPDATE, later.note)


@runtime_checkable
class ChangeMirror(NoteMirror, Protocol):
    """A mirror that stores one record per note and applies mutations one by one.

    The coordinator sends it each pending :class:`Change` instead of the
    whole collection; ``push`` is only used to re-seed a corrupt remote.
    """

    async def apply_change(self, change: Change) -> None: ...
