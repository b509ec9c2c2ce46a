"""Remote mirrors and the sync coordinator."""

from hexanotes.sync.auth import CallbackTokenProvider, StaticTokenProvider, TokenProvider
from hexanotes.sync.base import (
    Change,
    ChangeKind,
    ChangeMirror,
    Found,
    Missing,
    NoteMirror,
    PullResult,
    PullStatus,
    SnapshotCorrupt,
    SnapshotOk,
)
from hexanotes.sync.coordinator import ChangeJournal, SyncCoordinator, SyncPolicy, SyncState
from hexanotes.sync.debounce import Debouncer
from hexanotes.sync.drive import DriveMirror
from hexanotes.sync.table import TableMirror

__all__ = [
    "CallbackTokenProvider",
    "Change",
    "ChangeJournal",
    "ChangeKind",
    "ChangeMirror",
    "Debouncer",
    "DriveMirror",
    "Found",
    "Missing",
    "NoteMirror",
    "PullResult",
    "PullStatus",
    "SnapshotCorrupt",
    "SnapshotOk",
    "StaticTokenProvider",
    "SyncCoordinator",
    "SyncPolicy",
    "SyncState",
    "TableMirror",
    "TokenProvider",
]
