"""Row-mirror backend: one row per note in a PostgREST table (e.g. Supabase).

Every query is filtered by ``owner_id = <identity>``; listing is ordered by
``created_at`` descending.  Attachments go through the storage object API of
the same service.

Collection mutations reach the table one row at a time through
:meth:`TableMirror.apply_change`; rows are never removed except by an
explicit note delete.

Expected table columns: ``id, title, content, tags text[], color, files jsonb,
owner_id, created_at``.
"""

from __future__ import annotations

import secrets
from typing import Any
from urllib.parse import quote

import httpx

from hexanotes.config import Settings
from hexanotes.errors import CorruptRemoteState, RemoteUnavailable
from hexanotes.logging import get_logger
from hexanotes.note import Attachment, Note
from hexanotes.sync.auth import TokenProvider
from hexanotes.sync.base import Change, ChangeKind, PullResult, PullStatus
from hexanotes.sync.http import send

logger = get_logger(__name__)


def note_to_row(note: Note, owner_id: str) -> dict[str, Any]:
    return {
        "id": note.id,
        "title": note.title,
        "content": note.content,
        "tags": list(note.tags),
        "color": note.color,
        "files": [f.to_dict() for f in note.files],
        "owner_id": owner_id,
        "created_at": note.created_at,
    }


def row_to_note(row: dict[str, Any]) -> Note:
    if not isinstance(row, dict):
        raise CorruptRemoteState(f"row is a {type(row).__name__}, expected an object")
    try:
        return Note.from_dict(row)
    except (TypeError, ValueError) as exc:
        raise CorruptRemoteState(str(exc)) from exc


class TableMirror:
    """Per-row note mirror backed by a PostgREST endpoint."""

    def __init__(
        self,
        tokens: TokenProvider,
        owner_id: str,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or Settings()
        if not self._settings.table_url:
            raise RemoteUnavailable("No table_url configured for the row mirror")
        self._tokens = tokens
        self._owner_id = owner_id
        base = self._settings.table_url.rstrip("/")
        self._rows_url = f"{base}/rest/v1/{self._settings.table_name}"
        self._storage_url = f"{base}/storage/v1/object"
        self._client = client or httpx.AsyncClient(
            timeout=self._settings.timeout,
            headers={"apikey": self._settings.table_key},
        )

    def _owner_filter(self) -> dict[str, str]:
        return {"owner_id": f"eq.{self._owner_id}"}

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    async def list_rows(self) -> list[dict[str, Any]]:
        r = await send(
            self._client,
            self._tokens,
            "GET",
            self._rows_url,
            params={"select": "*", **self._owner_filter(), "order": "created_at.desc"},
        )
        rows = r.json()
        if not isinstance(rows, list):
            raise CorruptRemoteState("row listing is not an array")
        return rows

    async def insert_row(self, note: Note) -> None:
        await send(
            self._client,
            self._tokens,
            "POST",
            self._rows_url,
            json=note_to_row(note, self._owner_id),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def update_row(self, note: Note) -> None:
        row = note_to_row(note, self._owner_id)
        for key in ("id", "owner_id", "created_at"):
            row.pop(key)
        await send(
            self._client,
            self._tokens,
            "PATCH",
            self._rows_url,
            params={"id": f"eq.{note.id}", **self._owner_filter()},
            json=row,
            headers={"Prefer": "return=minimal"},
        )

    async def delete_row(self, note_id: str) -> None:
        await send(
            self._client,
            self._tokens,
            "DELETE",
            self._rows_url,
            params={"id": f"eq.{note_id}", **self._owner_filter()},
        )

    # ------------------------------------------------------------------
    # NoteMirror
    # ------------------------------------------------------------------

    async def apply_change(self, change: Change) -> None:
        """Map one collection mutation onto the matching row call."""
        if change.kind is ChangeKind.CREATE:
            await self.insert_row(change.note)
        elif change.kind is ChangeKind.UPDATE:
            await self.update_row(change.note)
        else:
            await self.delete_row(change.note_id)
        logger.debug("row_change_applied", kind=change.kind.value, note_id=change.note_id)

    async def push(self, notes: list[Note]) -> None:
        """Upsert every note.  Rows missing from *notes* are left alone."""
        if not notes:
            return
        await send(
            self._client,
            self._tokens,
            "POST",
            self._rows_url,
            json=[note_to_row(n, self._owner_id) for n in notes],
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug("rows_pushed", count=len(notes))

    async def pull(self) -> PullResult:
        rows = await self.list_rows()
        try:
            notes = [row_to_note(r) for r in rows]
        except CorruptRemoteState as exc:
            logger.warning("rows_corrupt", reason=exc.message)
            return PullResult(PullStatus.CORRUPT, error=exc)
        if not notes:
            return PullResult(PullStatus.EMPTY)
        logger.info("rows_pulled", count=len(notes))
        return PullResult(PullStatus.RESTORED, notes=notes, source="table")

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def _object_path(self, name: str) -> str:
        return f"{quote(self._owner_id, safe='')}/{secrets.token_hex(4)}-{quote(name, safe='')}"

    async def upload_attachment(self, name: str, mime_type: str, data: bytes) -> Attachment:
        bucket = self._settings.attachment_bucket
        path = self._object_path(name)
        await send(
            self._client,
            self._tokens,
            "POST",
            f"{self._storage_url}/{bucket}/{path}",
            content=data,
            headers={"Content-Type": mime_type},
        )
        url = f"{self._storage_url}/public/{bucket}/{path}"
        logger.info("attachment_uploaded", name=name, path=path, size=len(data))
        return Attachment(name=name, mime_type=mime_type, remote_url=url)

    async def delete_attachment(self, attachment: Attachment) -> None:
        bucket = self._settings.attachment_bucket
        prefix = f"{self._storage_url}/public/{bucket}/"
        if not attachment.remote_url.startswith(prefix):
            raise RemoteUnavailable(f"Attachment is not in bucket {bucket!r}: {attachment.remote_url}")
        path = attachment.remote_url[len(prefix):]
        await send(
            self._client,
            self._tokens,
            "DELETE",
            f"{self._storage_url}/{bucket}/{path}",
            allow_404=True,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "TableMirror":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
