"""SyncCoordinator: decides when the note collection is pushed to or pulled from a mirror.

State machine
-------------
IDLE ──mutation──▶ PENDING_PUSH ──delay elapsed──▶ PUSHING ──▶ IDLE
IDLE ──session start──▶ PULLING ──▶ IDLE

* Mutations during the debounce window restart the timer.
* A push requested while one is in flight does not start a second upload;
  it marks exactly one follow-up push, run with the latest collection once
  the in-flight push completes.
* Snapshot mirrors receive the whole collection on every push.  Row mirrors
  (:class:`~hexanotes.sync.base.ChangeMirror`) receive only the changes
  recorded since the last successful push, one per note.
* Remote errors stop here.  They are logged, stored on ``last_error``, and
  passed to the optional ``on_warning`` / ``on_auth_expired`` callbacks.
  Local state is never rolled back.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable

from hexanotes.collection import NoteCollection
from hexanotes.errors import AuthExpired, CorruptRemoteState, NotesError, RemoteUnavailable
from hexanotes.logging import get_logger
from hexanotes.note import Note
from hexanotes.sync.base import (
    Change,
    ChangeKind,
    ChangeMirror,
    NoteMirror,
    PullResult,
    PullStatus,
    merge_changes,
)
from hexanotes.sync.debounce import Debouncer, Sleep

logger = get_logger(__name__)


class SyncPolicy(enum.Enum):
    IMMEDIATE = "immediate"
    DEBOUNCED = "debounced"
    INTERVAL = "interval"


class SyncState(enum.Enum):
    IDLE = "idle"
    PENDING_PUSH = "pending_push"
    PUSHING = "pushing"
    PULLING = "pulling"


class ChangeJournal:
    """Pending per-note changes, at most one per note id, in first-seen order."""

    def __init__(self) -> None:
        self._pending: dict[str, Change] = {}

    def record(self, change: Change) -> None:
        self._pending[change.note_id] = merge_changes(self._pending.get(change.note_id), change)

    def drain(self) -> list[Change]:
        changes = list(self._pending.values())
        self._pending.clear()
        return changes

    def restore(self, changes: list[Change]) -> None:
        """Put back changes that were not applied, ahead of anything recorded since."""
        newer = self._pending
        self._pending = {c.note_id: c for c in changes}
        for change in newer.values():
            self.record(change)

    def clear(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)


class SyncCoordinator:
    def __init__(
        self,
        collection: NoteCollection,
        mirror: NoteMirror,
        *,
        policy: SyncPolicy = SyncPolicy.DEBOUNCED,
        debounce_seconds: float = 1.5,
        interval_seconds: float = 0.0,
        heal_on_corrupt: bool = True,
        sleep: Sleep | None = None,
        on_warning: Callable[[NotesError], None] | None = None,
        on_auth_expired: Callable[[AuthExpired], None] | None = None,
    ) -> None:
        self._collection = collection
        self._mirror = mirror
        self.policy = policy
        self.interval_seconds = interval_seconds
        self.heal_on_corrupt = heal_on_corrupt
        self._sleep = sleep or asyncio.sleep
        self._on_warning = on_warning
        self._on_auth_expired = on_auth_expired
        self._debouncer = Debouncer(debounce_seconds, self.push, sleep=self._sleep)

        self._state = SyncState.IDLE
        self._dirty = False
        self._inflight: asyncio.Future | None = None
        self._followup = False
        self._interval_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self.last_error: NotesError | None = None
        self.push_count = 0
        self.journal = ChangeJournal() if isinstance(mirror, ChangeMirror) else None

        collection.set_listener(self.notify_mutation)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        if self._state in (SyncState.PUSHING, SyncState.PULLING):
            return self._state
        if self._debouncer.pending:
            return SyncState.PENDING_PUSH
        return SyncState.IDLE

    @property
    def dirty(self) -> bool:
        """True when local changes have not yet reached the mirror."""
        return self._dirty

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def notify_mutation(self, kind: str, note: Note | None = None) -> None:
        """Collection listener: mark dirty and schedule a push per the policy."""
        self._dirty = True
        if self.journal is not None and note is not None:
            self.journal.record(Change(ChangeKind(kind), note))
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("mutation_without_loop", kind=kind)
            return
        if self.policy is SyncPolicy.DEBOUNCED:
            self._debouncer.schedule()
        elif self.policy is SyncPolicy.IMMEDIATE:
            self._spawn(self.push())

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def start(self) -> None:
        """Start the periodic push task (``INTERVAL`` policy only)."""
        if self.policy is not SyncPolicy.INTERVAL or self.interval_seconds <= 0:
            return
        if self._interval_task is None or self._interval_task.done():
            self._interval_task = asyncio.get_running_loop().create_task(self._interval_loop())

    async def _interval_loop(self) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            if self._dirty:
                await self.push()

    async def stop(self) -> None:
        """Cancel timers; an in-flight push is left to finish."""
        self._debouncer.cancel_pending()
        if self._interval_task is not None:
            self._interval_task.cancel()
            try:
                await self._interval_task
            except asyncio.CancelledError:
                pass
            self._interval_task = None

    async def flush(self) -> bool:
        """Push outstanding changes now, waiting for any in-flight push."""
        self._debouncer.cancel_pending()
        if self._inflight is not None or self._dirty:
            return await self.push()
        return True

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def push(self) -> bool:
        """Send local changes to the mirror; return whether the last attempt succeeded."""
        if self._inflight is not None:
            self._followup = True
            return await asyncio.shield(self._inflight)

        self._inflight = asyncio.get_running_loop().create_future()
        ok = False
        try:
            while True:
                self._followup = False
                self._dirty = False
                self._state = SyncState.PUSHING
                if self.journal is not None:
                    ok = await self._push_changes()
                else:
                    ok = await self._push_snapshot(self._collection.notes)
                if not ok:
                    self._dirty = True
                if not self._followup:
                    break
                logger.debug("push_followup")
        finally:
            self._state = SyncState.IDLE
            inflight, self._inflight = self._inflight, None
            inflight.set_result(ok)
        return ok

    async def _push_snapshot(self, notes: list[Note]) -> bool:
        try:
            await self._mirror.push(notes)
        except (NotesError, KeyError, TypeError, ValueError) as exc:
            self._push_failed(exc)
            return False
        self.push_count += 1
        self.last_error = None
        logger.info("push_completed", count=len(notes))
        return True

    async def _push_changes(self) -> bool:
        changes = self.journal.drain()
        for i, change in enumerate(changes):
            try:
                await self._mirror.apply_change(change)
            except (NotesError, KeyError, TypeError, ValueError) as exc:
                self.journal.restore(changes[i:])
                self._push_failed(exc)
                return False
        self.push_count += 1
        self.last_error = None
        logger.info("changes_pushed", count=len(changes))
        return True

    def _push_failed(self, exc: Exception) -> None:
        if isinstance(exc, AuthExpired):
            self._auth_expired(exc)
        elif isinstance(exc, NotesError):
            self._warn("push_failed", exc)
        else:
            self._warn("push_failed", RemoteUnavailable(f"Unexpected remote response: {exc}"))

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull(self) -> PullResult:
        """Fetch the remote collection; on success it replaces the local one.

        Corrupt, unavailable, or missing remote state leaves the local
        collection untouched.  With ``heal_on_corrupt`` a corrupt remote is
        overwritten by the local notes when there are any.
        """
        self._state = SyncState.PULLING
        try:
            result = await self._mirror.pull()
        except AuthExpired as exc:
            self._auth_expired(exc)
            result = PullResult(PullStatus.AUTH_EXPIRED, error=exc)
        except RemoteUnavailable as exc:
            self._warn("pull_failed", exc)
            result = PullResult(PullStatus.UNAVAILABLE, error=exc)
        except CorruptRemoteState as exc:
            result = PullResult(PullStatus.CORRUPT, error=exc)
        except (KeyError, TypeError, ValueError) as exc:
            err = RemoteUnavailable(f"Unexpected remote response: {exc}")
            self._warn("pull_failed", err)
            result = PullResult(PullStatus.UNAVAILABLE, error=err)
        finally:
            self._state = SyncState.IDLE

        if result.status is PullStatus.RESTORED:
            self._debouncer.cancel_pending()
            self._collection.replace_all(result.notes)
            self._dirty = False
            if self.journal is not None:
                self.journal.clear()
        elif result.status is PullStatus.CORRUPT:
            self._warn("pull_corrupt", result.error or CorruptRemoteState())
            if self.heal_on_corrupt and len(self._collection):
                logger.info("healing_remote_snapshot", count=len(self._collection))
                if self.journal is not None:
                    # Row mirrors only see changes; re-seed them with every local note.
                    await self._push_snapshot(self._collection.notes)
                else:
                    await self.push()
        return result

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def remove_attachments(self, note: Note) -> int:
        """Best-effort delete of *note*'s remote files; returns how many were removed."""
        removed = 0
        for attachment in note.files:
            try:
                await self._mirror.delete_attachment(attachment)
            except NotesError as exc:
                logger.warning(
                    "attachment_delete_failed",
                    note_id=note.id,
                    attachment=attachment.name,
                    error=exc.message,
                )
                continue
            removed += 1
        return removed

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _warn(self, event: str, exc: NotesError) -> None:
        self.last_error = exc
        logger.warning(event, error=exc.message, code=exc.code)
        if self._on_warning is not None:
            self._on_warning(exc)

    def _auth_expired(self, exc: AuthExpired) -> None:
        self.last_error = exc
        logger.warning("remote_auth_expired", error=exc.message, auth_expired=True)
        if self._on_auth_expired is not None:
            self._on_auth_expired(exc)
