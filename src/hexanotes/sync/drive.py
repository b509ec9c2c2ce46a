"""Object-mirror backend: one JSON snapshot file inside one folder of a Drive-style file store.

The whole collection lives in ``<container_name>/<snapshot_name>``.  Reads
fall back to ``<legacy_container_name>/<legacy_snapshot_name>`` so snapshots
written by earlier releases are still restored.

REST calls used (paths relative to ``drive_api_url`` / ``drive_upload_url``)
----------------------------------------------------------------------------
GET    /files?q=...                       – find a folder or file by name
POST   /files                             – create folder / file metadata
PATCH  {upload}/files/{id}?uploadType=media – overwrite file content
GET    /files/{id}?alt=media              – download file content
DELETE /files/{id}                        – delete an attachment

Each call carries ``Authorization: Bearer <token>`` from the token provider.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar
from urllib.parse import parse_qs, urlparse

import httpx

from hexanotes.config import Settings
from hexanotes.errors import CorruptRemoteState, RemoteUnavailable
from hexanotes.logging import get_logger
from hexanotes.note import Attachment, Note, decode_snapshot, encode_snapshot
from hexanotes.sync.auth import TokenProvider
from hexanotes.sync.base import (
    Found,
    Lookup,
    Missing,
    PullResult,
    PullStatus,
    SnapshotCorrupt,
    SnapshotOk,
    SnapshotRead,
)
from hexanotes.sync.http import send

logger = get_logger(__name__)

FOLDER_MIME = "application/vnd.google-apps.folder"
SNAPSHOT_MIME = "application/json"
DOWNLOAD_URL = "https://drive.google.com/uc?id={file_id}&export=download"

T = TypeVar("T")


@dataclass(frozen=True)
class DriveHandle:
    id: str
    name: str


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class ContainerGone(RemoteUnavailable):
    """A cached folder handle no longer points at a live folder."""


def attachment_file_id(attachment: Attachment) -> str | None:
    """Recover the file id from a download URL built by :meth:`DriveMirror.upload_attachment`."""
    ids = parse_qs(urlparse(attachment.remote_url).query).get("id")
    return ids[0] if ids else None


class DriveMirror:
    """Snapshot mirror backed by a Drive-style REST API."""

    def __init__(
        self,
        tokens: TokenProvider,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._tokens = tokens
        self._api = self._settings.drive_api_url.rstrip("/")
        self._upload = self._settings.drive_upload_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=self._settings.timeout)
        self._containers: dict[str, DriveHandle] = {}
        self._container_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def _find(self, query: str) -> DriveHandle | None:
        r = await send(
            self._client,
            self._tokens,
            "GET",
            f"{self._api}/files",
            params={"q": query, "fields": "files(id,name)", "spaces": "drive", "pageSize": 10},
        )
        body = r.json()
        files = body.get("files") if isinstance(body, dict) else None
        if not isinstance(files, list) or not all(isinstance(f, dict) for f in files):
            raise RemoteUnavailable(f"Unexpected file listing for query {query!r}")
        if not files:
            return None
        # Duplicate names are possible after concurrent first-time creation; use the first.
        return DriveHandle(id=files[0]["id"], name=files[0]["name"])

    async def find_container(self, name: str) -> Lookup[DriveHandle]:
        """Return the folder named *name* without creating it."""
        if name in self._containers:
            return Found(self._containers[name])
        handle = await self._find(f"name='{_quote(name)}' and mimeType='{FOLDER_MIME}' and trashed=false")
        if handle is None:
            return Missing(name)
        self._containers[name] = handle
        return Found(handle)

    async def ensure_container(self, name: str) -> DriveHandle:
        """Return the folder named *name*, creating it when absent."""
        async with self._container_lock:
            found = await self.find_container(name)
            if isinstance(found, Found):
                return found.handle
            r = await send(
                self._client,
                self._tokens,
                "POST",
                f"{self._api}/files",
                params={"fields": "id,name"},
                json={"name": name, "mimeType": FOLDER_MIME},
            )
            data = r.json()
            handle = DriveHandle(id=data["id"], name=data.get("name", name))
            self._containers[name] = handle
            logger.info("container_created", container=name, container_id=handle.id)
            return handle

    def forget_container(self, name: str) -> None:
        """Drop the cached handle for *name* so the next lookup asks the remote."""
        self._containers.pop(name, None)

    async def _check_container(self, container: DriveHandle) -> None:
        """Raise :class:`ContainerGone` when *container* was deleted or trashed."""
        r = await send(
            self._client,
            self._tokens,
            "GET",
            f"{self._api}/files/{container.id}",
            params={"fields": "id,trashed"},
            allow_404=True,
        )
        if r.status_code == 404:
            raise ContainerGone(f"Folder {container.name!r} ({container.id}) no longer exists")
        meta = r.json()
        if isinstance(meta, dict) and meta.get("trashed"):
            raise ContainerGone(f"Folder {container.name!r} ({container.id}) is in the trash")

    async def _in_primary_container(self, action: Callable[[DriveHandle], Awaitable[T]]) -> T:
        """Run *action* in the primary folder, recreating the folder once if it vanished."""
        name = self._settings.container_name
        container = await self.ensure_container(name)
        try:
            return await action(container)
        except ContainerGone as exc:
            logger.warning("container_gone", container=name, container_id=container.id, reason=exc.message)
            self.forget_container(name)
            container = await self.ensure_container(name)
            return await action(container)

    async def find_object(self, container: DriveHandle, name: str) -> Lookup[DriveHandle]:
        """Return the file *name* inside *container*, or :class:`Missing`."""
        handle = await self._find(f"name='{_quote(name)}' and '{container.id}' in parents and trashed=false")
        return Found(handle) if handle is not None else Missing(name)

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def _create_file(self, container: DriveHandle, name: str, mime_type: str) -> DriveHandle:
        r = await send(
            self._client,
            self._tokens,
            "POST",
            f"{self._api}/files",
            params={"fields": "id,name"},
            json={"name": name, "parents": [container.id], "mimeType": mime_type},
            allow_404=True,
        )
        if r.status_code == 404:
            raise ContainerGone(f"Folder {container.name!r} ({container.id}) no longer exists")
        data = r.json()
        return DriveHandle(id=data["id"], name=data.get("name", name))

    async def _write_content(self, handle: DriveHandle, data: bytes, mime_type: str) -> None:
        await send(
            self._client,
            self._tokens,
            "PATCH",
            f"{self._upload}/files/{handle.id}",
            params={"uploadType": "media"},
            headers={"Content-Type": mime_type},
            content=data,
        )

    async def write_snapshot(self, container: DriveHandle, name: str, notes: list[Note]) -> DriveHandle:
        """Overwrite the snapshot *name* in *container*, creating it first if needed.

        Raises :class:`ContainerGone` when *container* was deleted or trashed.
        """
        found = await self.find_object(container, name)
        if isinstance(found, Found):
            handle = found.handle
        else:
            await self._check_container(container)
            handle = await self._create_file(container, name, SNAPSHOT_MIME)
        await self._write_content(handle, encode_snapshot(notes).encode("utf-8"), SNAPSHOT_MIME)
        logger.debug("snapshot_written", container=container.name, snapshot=name, count=len(notes))
        return handle

    async def read_snapshot(self, handle: DriveHandle) -> SnapshotRead:
        r = await send(
            self._client,
            self._tokens,
            "GET",
            f"{self._api}/files/{handle.id}",
            params={"alt": "media"},
        )
        try:
            return SnapshotOk(decode_snapshot(r.content))
        except CorruptRemoteState as exc:
            return SnapshotCorrupt(exc.message)

    async def load_snapshot(self, container: DriveHandle, name: str) -> list[Note] | None:
        """Read and decode *name*; ``None`` when absent, :class:`CorruptRemoteState` when undecodable."""
        found = await self.find_object(container, name)
        if isinstance(found, Missing):
            return None
        result = await self.read_snapshot(found.handle)
        if isinstance(result, SnapshotCorrupt):
            raise CorruptRemoteState(result.reason)
        return result.notes

    # ------------------------------------------------------------------
    # NoteMirror
    # ------------------------------------------------------------------

    async def push(self, notes: list[Note]) -> None:
        async def write(container: DriveHandle) -> None:
            await self.write_snapshot(container, self._settings.snapshot_name, notes)

        await self._in_primary_container(write)

    async def _read_location(self, container_name: str, snapshot_name: str) -> SnapshotRead | None:
        container = await self.find_container(container_name)
        if isinstance(container, Missing):
            return None
        found = await self.find_object(container.handle, snapshot_name)
        if isinstance(found, Missing):
            return None
        return await self.read_snapshot(found.handle)

    async def pull(self) -> PullResult:
        """Read the primary snapshot, falling back to the legacy location."""
        s = self._settings
        locations = [
            ("primary", s.container_name, s.snapshot_name),
            ("legacy", s.legacy_container_name, s.legacy_snapshot_name),
        ]
        corrupt: SnapshotCorrupt | None = None
        for source, container_name, snapshot_name in locations:
            result = await self._read_location(container_name, snapshot_name)
            if result is None:
                continue
            if isinstance(result, SnapshotOk):
                logger.info("snapshot_pulled", source=source, count=len(result.notes))
                return PullResult(PullStatus.RESTORED, notes=result.notes, source=source)
            logger.warning("snapshot_corrupt", source=source, reason=result.reason)
            corrupt = corrupt or result
        if corrupt is not None:
            return PullResult(PullStatus.CORRUPT, error=CorruptRemoteState(corrupt.reason))
        logger.info("snapshot_not_found")
        return PullResult(PullStatus.EMPTY)

    async def upload_attachment(self, name: str, mime_type: str, data: bytes) -> Attachment:
        """Upload *data* as a new file in the primary folder."""

        async def create(container: DriveHandle) -> DriveHandle:
            return await self._create_file(container, name, mime_type)

        handle = await self._in_primary_container(create)
        await self._write_content(handle, data, mime_type)
        logger.info("attachment_uploaded", name=name, file_id=handle.id, size=len(data))
        return Attachment(name=name, mime_type=mime_type, remote_url=DOWNLOAD_URL.format(file_id=handle.id))

    async def delete_attachment(self, attachment: Attachment) -> None:
        file_id = attachment_file_id(attachment)
        if file_id is None:
            raise RemoteUnavailable(f"Cannot resolve file id from {attachment.remote_url!r}")
        r = await send(self._client, self._tokens, "DELETE", f"{self._api}/files/{file_id}", allow_404=True)
        if r.status_code == 404:
            logger.debug("attachment_already_gone", file_id=file_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "DriveMirror":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
