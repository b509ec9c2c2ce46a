"""Tests for hexanotes.sync.drive.DriveMirror against an in-memory Drive."""

import json

import pytest

from hexanotes.errors import AuthExpired, CorruptRemoteState, RemoteUnavailable
from hexanotes.note import Attachment, Note, encode_snapshot
from hexanotes.sync.base import Found, Missing, PullStatus, SnapshotCorrupt, SnapshotOk
from hexanotes.sync.drive import DriveMirror, attachment_file_id


def _notes() -> list[Note]:
    return [
        Note(id="a", title="Alpha", content="one", tags=["x"]),
        Note(id="b", title="Beta", files=[Attachment("f.txt", "text/plain", "https://x/f")]),
    ]


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------


class TestContainers:
    @pytest.mark.asyncio
    async def test_ensure_creates_once(self, drive, drive_mirror: DriveMirror):
        first = await drive_mirror.ensure_container("HexaNotes")
        second = await drive_mirror.ensure_container("HexaNotes")
        assert first == second
        folders = [f for f in drive.files.values() if f["name"] == "HexaNotes"]
        assert len(folders) == 1

    @pytest.mark.asyncio
    async def test_ensure_reuses_existing(self, drive, drive_mirror: DriveMirror):
        folder_id = drive.add_folder("HexaNotes")
        handle = await drive_mirror.ensure_container("HexaNotes")
        assert handle.id == folder_id

    @pytest.mark.asyncio
    async def test_find_container_missing(self, drive_mirror: DriveMirror):
        assert isinstance(await drive_mirror.find_container("Nope"), Missing)

    @pytest.mark.asyncio
    async def test_push_recreates_deleted_folder(self, drive, drive_mirror: DriveMirror):
        await drive_mirror.push(_notes())
        drive.remove(drive.find("HexaNotes"))
        await drive_mirror.push(_notes()[:1])
        assert len(drive.folders("HexaNotes")) == 1
        assert [n["id"] for n in json.loads(drive.content_of("HexaNotes", "notes.json"))] == ["a"]

    @pytest.mark.asyncio
    async def test_push_leaves_trashed_folder(self, drive, drive_mirror: DriveMirror):
        await drive_mirror.push(_notes())
        trashed = drive.find("HexaNotes")
        drive.trash(trashed)
        await drive_mirror.push(_notes()[:1])
        live = drive.find("HexaNotes")
        assert live is not None and live != trashed
        assert [n["id"] for n in json.loads(drive.content_of("HexaNotes", "notes.json"))] == ["a"]

    @pytest.mark.asyncio
    async def test_upload_recreates_deleted_folder(self, drive, drive_mirror: DriveMirror):
        await drive_mirror.ensure_container("HexaNotes")
        drive.remove(drive.find("HexaNotes"))
        attachment = await drive_mirror.upload_attachment("a.txt", "text/plain", b"x")
        file_id = attachment_file_id(attachment)
        assert drive.files[file_id]["parents"] == [drive.find("HexaNotes")]

    @pytest.mark.asyncio
    async def test_name_with_quote(self, drive, drive_mirror: DriveMirror):
        folder_id = drive.add_folder("Ada's notes")
        found = await drive_mirror.find_container("Ada's notes")
        assert isinstance(found, Found)
        assert found.handle.id == folder_id


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_write_creates_then_overwrites(self, drive, drive_mirror: DriveMirror):
        container = await drive_mirror.ensure_container("HexaNotes")
        await drive_mirror.write_snapshot(container, "notes.json", _notes())
        await drive_mirror.write_snapshot(container, "notes.json", _notes()[:1])
        files = [f for f in drive.files.values() if f["name"] == "notes.json"]
        assert len(files) == 1
        assert [n["id"] for n in json.loads(files[0]["content"])] == ["a"]

    @pytest.mark.asyncio
    async def test_snapshot_contains_attachments(self, drive, drive_mirror: DriveMirror):
        await drive_mirror.push(_notes())
        data = json.loads(drive.content_of("HexaNotes", "notes.json"))
        assert data[1]["files"] == [{"name": "f.txt", "mimeType": "text/plain", "remoteUrl": "https://x/f"}]

    @pytest.mark.asyncio
    async def test_find_object_missing(self, drive_mirror: DriveMirror):
        container = await drive_mirror.ensure_container("HexaNotes")
        assert isinstance(await drive_mirror.find_object(container, "notes.json"), Missing)

    @pytest.mark.asyncio
    async def test_read_round_trip(self, drive_mirror: DriveMirror):
        notes = _notes()
        container = await drive_mirror.ensure_container("HexaNotes")
        handle = await drive_mirror.write_snapshot(container, "notes.json", notes)
        result = await drive_mirror.read_snapshot(handle)
        assert isinstance(result, SnapshotOk)
        assert result.notes == notes

    @pytest.mark.asyncio
    async def test_read_corrupt(self, drive, drive_mirror: DriveMirror):
        folder = drive.add_folder("HexaNotes")
        drive.add_file(folder, "notes.json", b'{"not": "an array"}')
        container = await drive_mirror.ensure_container("HexaNotes")
        found = await drive_mirror.find_object(container, "notes.json")
        assert isinstance(await drive_mirror.read_snapshot(found.handle), SnapshotCorrupt)
        with pytest.raises(CorruptRemoteState):
            await drive_mirror.load_snapshot(container, "notes.json")

    @pytest.mark.asyncio
    async def test_load_snapshot_absent(self, drive_mirror: DriveMirror):
        container = await drive_mirror.ensure_container("HexaNotes")
        assert await drive_mirror.load_snapshot(container, "notes.json") is None


# ---------------------------------------------------------------------------
# pull()
# ---------------------------------------------------------------------------


class TestPull:
    @pytest.mark.asyncio
    async def test_nothing_anywhere(self, drive_mirror: DriveMirror):
        result = await drive_mirror.pull()
        assert result.status is PullStatus.EMPTY
        assert result.notes == []

    @pytest.mark.asyncio
    async def test_primary(self, drive_mirror: DriveMirror):
        await drive_mirror.push(_notes())
        result = await drive_mirror.pull()
        assert result.status is PullStatus.RESTORED
        assert result.source == "primary"
        assert [n.id for n in result.notes] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_legacy_fallback(self, drive, drive_mirror: DriveMirror):
        legacy = drive.add_folder("NotesApp")
        drive.add_file(legacy, "notes_backup.json", encode_snapshot([Note(id="old", title="Legacy")]).encode())
        result = await drive_mirror.pull()
        assert result.restored
        assert result.source == "legacy"
        assert [n.title for n in result.notes] == ["Legacy"]

    @pytest.mark.asyncio
    async def test_primary_folder_without_file_uses_legacy(self, drive, drive_mirror: DriveMirror):
        drive.add_folder("HexaNotes")
        legacy = drive.add_folder("NotesApp")
        drive.add_file(legacy, "notes_backup.json", b"[]")
        result = await drive_mirror.pull()
        assert result.source == "legacy"
        assert result.notes == []

    @pytest.mark.asyncio
    async def test_primary_wins_over_legacy(self, drive, drive_mirror: DriveMirror):
        legacy = drive.add_folder("NotesApp")
        drive.add_file(legacy, "notes_backup.json", encode_snapshot([Note(id="old", title="Legacy")]).encode())
        await drive_mirror.push([Note(id="new", title="Current")])
        result = await drive_mirror.pull()
        assert result.source == "primary"

    @pytest.mark.asyncio
    async def test_corrupt_primary_falls_back_to_legacy(self, drive, drive_mirror: DriveMirror):
        primary = drive.add_folder("HexaNotes")
        drive.add_file(primary, "notes.json", b"garbage")
        legacy = drive.add_folder("NotesApp")
        drive.add_file(legacy, "notes_backup.json", encode_snapshot([Note(id="old", title="Legacy")]).encode())
        result = await drive_mirror.pull()
        assert result.source == "legacy"

    @pytest.mark.asyncio
    async def test_corrupt_everywhere(self, drive, drive_mirror: DriveMirror):
        primary = drive.add_folder("HexaNotes")
        drive.add_file(primary, "notes.json", b"garbage")
        result = await drive_mirror.pull()
        assert result.status is PullStatus.CORRUPT
        assert isinstance(result.error, CorruptRemoteState)


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


class TestAttachments:
    @pytest.mark.asyncio
    async def test_upload_and_delete(self, drive, drive_mirror: DriveMirror):
        attachment = await drive_mirror.upload_attachment("pic.png", "image/png", b"\x89PNG")
        assert attachment.name == "pic.png"
        assert attachment.mime_type == "image/png"
        file_id = attachment_file_id(attachment)
        assert drive.files[file_id]["content"] == b"\x89PNG"
        await drive_mirror.delete_attachment(attachment)
        assert file_id not in drive.files

    @pytest.mark.asyncio
    async def test_delete_already_gone(self, drive_mirror: DriveMirror):
        gone = Attachment("x", "text/plain", "https://drive.google.com/uc?id=missing&export=download")
        await drive_mirror.delete_attachment(gone)

    @pytest.mark.asyncio
    async def test_delete_foreign_url(self, drive_mirror: DriveMirror):
        with pytest.raises(RemoteUnavailable):
            await drive_mirror.delete_attachment(Attachment("x", "text/plain", "https://elsewhere/x"))


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_rejected_token_is_auth_expired(self, drive, drive_mirror: DriveMirror):
        drive.token = "rotated"
        with pytest.raises(AuthExpired):
            await drive_mirror.push(_notes())
        # The provider dropped the token, so the next call fails without a request.
        sent = len(drive.requests)
        with pytest.raises(AuthExpired):
            await drive_mirror.pull()
        assert len(drive.requests) == sent

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, drive, drive_mirror: DriveMirror):
        drive.fail_status = 503
        with pytest.raises(RemoteUnavailable):
            await drive_mirror.pull()

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self, settings):
        import httpx

        from hexanotes.sync.auth import StaticTokenProvider

        def offline(request):
            raise httpx.ConnectError("offline", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(offline))
        mirror = DriveMirror(StaticTokenProvider("t"), settings, client=client)
        with pytest.raises(RemoteUnavailable):
            await mirror.push([])
        await mirror.aclose()

    @pytest.mark.asyncio
    async def test_redirect_loop_is_unavailable(self, settings):
        import httpx

        from hexanotes.sync.auth import StaticTokenProvider

        def looping(request):
            raise httpx.TooManyRedirects("loop", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(looping))
        mirror = DriveMirror(StaticTokenProvider("t"), settings, client=client)
        with pytest.raises(RemoteUnavailable):
            await mirror.pull()
        with pytest.raises(RemoteUnavailable):
            await mirror.push(_notes())
        await mirror.aclose()

    @pytest.mark.asyncio
    async def test_listing_not_an_object_is_unavailable(self, settings):
        import httpx

        from hexanotes.sync.auth import StaticTokenProvider

        def odd_listing(request):
            return httpx.Response(200, json=["x"])

        client = httpx.AsyncClient(transport=httpx.MockTransport(odd_listing))
        mirror = DriveMirror(StaticTokenProvider("t"), settings, client=client)
        with pytest.raises(RemoteUnavailable):
            await mirror.pull()
        await mirror.aclose()
