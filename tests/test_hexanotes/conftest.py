"""Shared fixtures: a controllable clock, an in-process mirror, and fake remote services.

The fake Drive and PostgREST services are plain request handlers wired into
``httpx.MockTransport`` so the real mirror code runs end-to-end without a
network.
"""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from urllib.parse import unquote

import httpx
import pytest

from hexanotes.collection import NoteCollection
from hexanotes.config import Settings
from hexanotes.errors import NotesError
from hexanotes.note import Attachment, Note
from hexanotes.store import LocalNoteStore
from hexanotes.sync.auth import StaticTokenProvider
from hexanotes.sync.base import PullResult, PullStatus
from hexanotes.sync.drive import DriveMirror
from hexanotes.sync.table import TableMirror

TOKEN = "test-token"


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Replacement for ``asyncio.sleep`` whose time only moves on :meth:`advance`."""

    def __init__(self) -> None:
        self.now = 0.0
        self._sleepers: list[tuple[float, asyncio.Future]] = []

    async def sleep(self, delay: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.now + delay, fut))
        await fut

    @property
    def sleeping(self) -> int:
        return sum(1 for _, fut in self._sleepers if not fut.done())

    async def advance(self, seconds: float) -> None:
        await settle()
        self.now += seconds
        remaining = []
        for deadline, fut in self._sleepers:
            if fut.done():
                continue
            if deadline <= self.now:
                fut.set_result(None)
            else:
                remaining.append((deadline, fut))
        self._sleepers = remaining
        await settle()


# ---------------------------------------------------------------------------
# In-process mirror
# ---------------------------------------------------------------------------


class FakeMirror:
    """Records pushes; pull results and failures are set by the test."""

    def __init__(self) -> None:
        self.pushes: list[list[dict]] = []
        self.pull_result = PullResult(PullStatus.EMPTY)
        self.push_error: NotesError | None = None
        self.pull_error: NotesError | None = None
        self.gate: asyncio.Event | None = None
        self.deleted: list[Attachment] = []
        self.fail_delete: set[str] = set()
        self.uploads: list[tuple[str, str, bytes]] = []
        self.closed = False

    async def push(self, notes: list[Note]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.push_error is not None:
            raise self.push_error
        self.pushes.append([n.to_dict() for n in notes])

    async def pull(self) -> PullResult:
        if self.pull_error is not None:
            raise self.pull_error
        return self.pull_result

    async def upload_attachment(self, name: str, mime_type: str, data: bytes) -> Attachment:
        self.uploads.append((name, mime_type, data))
        return Attachment(name=name, mime_type=mime_type, remote_url=f"https://files.test/{name}")

    async def delete_attachment(self, attachment: Attachment) -> None:
        from hexanotes.errors import RemoteUnavailable

        if attachment.name in self.fail_delete:
            raise RemoteUnavailable(f"cannot delete {attachment.name}")
        self.deleted.append(attachment)

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fake Drive
# ---------------------------------------------------------------------------

_NAME_RE = re.compile(r"name='((?:[^'\\]|\\.)*)'")
_PARENT_RE = re.compile(r"'([^']+)' in parents")
_FOLDER = "application/vnd.google-apps.folder"


class FakeDrive:
    """Minimal Drive v3 file store: folders, files, trash, media upload/download."""

    def __init__(self, token: str = TOKEN) -> None:
        self.token = token
        self.files: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_status: int | None = None
        self._seq = 0

    def _new_id(self) -> str:
        self._seq += 1
        return f"file{self._seq}"

    def _add(self, name: str, mime_type: str, parents: list[str], content: bytes = b"") -> str:
        file_id = self._new_id()
        self.files[file_id] = {
            "name": name,
            "mimeType": mime_type,
            "parents": parents,
            "content": content,
            "trashed": False,
        }
        return file_id

    def add_folder(self, name: str) -> str:
        return self._add(name, _FOLDER, [])

    def add_file(self, folder_id: str, name: str, content: bytes) -> str:
        return self._add(name, "application/json", [folder_id], content)

    def trash(self, file_id: str) -> None:
        """Move a file to the trash; children of a trashed folder are trashed too."""
        self.files[file_id]["trashed"] = True
        for f in self.files.values():
            if file_id in f["parents"]:
                f["trashed"] = True

    def remove(self, file_id: str) -> None:
        """Delete a file outright, with its children."""
        del self.files[file_id]
        self.files = {fid: f for fid, f in self.files.items() if file_id not in f["parents"]}

    def find(self, name: str, parent: str | None = None) -> str | None:
        for file_id, f in self.files.items():
            if f["trashed"]:
                continue
            if f["name"] == name and (parent is None or parent in f["parents"]):
                return file_id
        return None

    def folders(self, name: str) -> list[str]:
        return [fid for fid, f in self.files.items() if f["name"] == name and f["mimeType"] == _FOLDER]

    def content_of(self, folder: str, name: str) -> bytes:
        folder_id = self.find(folder)
        assert folder_id is not None
        file_id = self.find(name, folder_id)
        assert file_id is not None
        return self.files[file_id]["content"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": "invalid_token"})
        if self.fail_status is not None:
            return httpx.Response(self.fail_status)

        path = request.url.path
        if path == "/drive/v3/files" and request.method == "GET":
            q = request.url.params["q"]
            name = _NAME_RE.search(q).group(1).replace("\\'", "'").replace("\\\\", "\\")
            parent = _PARENT_RE.search(q)
            hits = [
                {"id": fid, "name": f["name"]}
                for fid, f in self.files.items()
                if f["name"] == name
                and (parent is None or parent.group(1) in f["parents"])
                and (f"mimeType='{_FOLDER}'" not in q or f["mimeType"] == _FOLDER)
                and ("trashed=false" not in q or not f["trashed"])
            ]
            return httpx.Response(200, json={"files": hits})
        if path == "/drive/v3/files" and request.method == "POST":
            meta = json.loads(request.content)
            parents = meta.get("parents", [])
            if any(p not in self.files for p in parents):
                return httpx.Response(404, json={"error": "parent not found"})
            file_id = self._add(meta["name"], meta.get("mimeType", ""), parents)
            return httpx.Response(200, json={"id": file_id, "name": meta["name"]})
        if path.startswith("/upload/drive/v3/files/") and request.method == "PATCH":
            file_id = path.rsplit("/", 1)[1]
            if file_id not in self.files:
                return httpx.Response(404)
            self.files[file_id]["content"] = request.content
            return httpx.Response(200, json={"id": file_id})
        if path.startswith("/drive/v3/files/"):
            file_id = path.rsplit("/", 1)[1]
            if file_id not in self.files:
                return httpx.Response(404)
            f = self.files[file_id]
            if request.method == "GET" and request.url.params.get("alt") == "media":
                return httpx.Response(200, content=f["content"])
            if request.method == "GET":
                return httpx.Response(200, json={"id": file_id, "name": f["name"], "trashed": f["trashed"]})
            if request.method == "DELETE":
                del self.files[file_id]
                return httpx.Response(204)
        return httpx.Response(400, json={"error": f"unhandled {request.method} {path}"})


# ---------------------------------------------------------------------------
# Fake PostgREST
# ---------------------------------------------------------------------------


class FakeTable:
    """In-memory PostgREST table plus storage bucket."""

    def __init__(self, token: str = TOKEN) -> None:
        self.token = token
        self.rows: list[dict] = []
        self.objects: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        # Statuses returned, one per request, before normal handling resumes.
        self.failures: list[int] = []

    def _matches(self, row: dict, params: httpx.QueryParams) -> bool:
        owner = params.get("owner_id")
        if owner is not None and row["owner_id"] != owner.removeprefix("eq."):
            return False
        id_filter = params.get("id")
        if id_filter is None:
            return True
        if id_filter.startswith("eq."):
            return row["id"] == id_filter[3:]
        raise AssertionError(f"unsupported filter {id_filter}")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401)
        if self.failures:
            return httpx.Response(self.failures.pop(0))
        path = request.url.path
        params = request.url.params

        if path == "/rest/v1/notes":
            if request.method == "GET":
                rows = [r for r in self.rows if self._matches(r, params)]
                rows.sort(key=lambda r: r["created_at"], reverse=True)
                return httpx.Response(200, json=rows)
            if request.method == "POST":
                body = json.loads(request.content)
                incoming = body if isinstance(body, list) else [body]
                merge = "merge-duplicates" in request.headers.get("Prefer", "")
                for row in incoming:
                    existing = next((r for r in self.rows if r["id"] == row["id"]), None)
                    if existing is not None and not merge:
                        return httpx.Response(409)
                    if existing is not None:
                        existing.update(row)
                    else:
                        self.rows.append(dict(row))
                return httpx.Response(201)
            if request.method == "PATCH":
                body = json.loads(request.content)
                for row in self.rows:
                    if self._matches(row, params):
                        row.update(body)
                return httpx.Response(204)
            if request.method == "DELETE":
                self.rows = [r for r in self.rows if not self._matches(r, params)]
                return httpx.Response(204)

        prefix = "/storage/v1/object/attachments/"
        if path.startswith(prefix):
            key = unquote(path[len(prefix):])
            if request.method == "POST":
                self.objects[key] = request.content
                return httpx.Response(200, json={"Key": key})
            if request.method == "DELETE":
                if key not in self.objects:
                    return httpx.Response(404)
                del self.objects[key]
                return httpx.Response(200)
        return httpx.Response(400)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path / "data", table_url="https://db.test", table_key="anon")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def mirror() -> FakeMirror:
    return FakeMirror()


@pytest.fixture()
def store() -> LocalNoteStore:
    s = LocalNoteStore.open("ada@example.com")
    yield s
    s.close()


@pytest.fixture()
def collection(store: LocalNoteStore) -> NoteCollection:
    return NoteCollection(store)


@pytest.fixture()
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture()
def drive_mirror(drive: FakeDrive, settings: Settings) -> DriveMirror:
    client = httpx.AsyncClient(transport=httpx.MockTransport(drive.handler))
    return DriveMirror(StaticTokenProvider(TOKEN), settings, client=client)


@pytest.fixture()
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture()
def table_mirror(table: FakeTable, settings: Settings) -> TableMirror:
    client = httpx.AsyncClient(transport=httpx.MockTransport(table.handler))
    return TableMirror(StaticTokenProvider(TOKEN), "owner-1", settings, client=client)
