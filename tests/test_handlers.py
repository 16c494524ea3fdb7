"""Tests for the upload, download and push handlers."""

import asyncio

import pytest

from resumexfer.errors import StorageIOError
from resumexfer.file.storage import Chunk
from resumexfer.transfer.codec import MAX_OFFSET, Status, TransferRequest


def upload(file_id, offset, payload):
    return TransferRequest(command="upload", file_id=file_id, offset=offset, payload=payload)


def download(file_id, offset=0):
    return TransferRequest(command="download", file_id=file_id, offset=offset)


def push(file_id, offset=0):
    return TransferRequest(command="push", file_id=file_id, offset=offset)


class TestUploadHandler:
    """Write-at-offset uploads and progress bookkeeping."""

    @pytest.mark.asyncio
    async def test_repeated_chunk_is_idempotent(self, handlers, protocol, storage_dir, progress):
        data = b"x" * 100

        await handlers.handle_upload(upload("a.bin", 0, data), protocol)
        await handlers.handle_upload(upload("a.bin", 0, data), protocol)

        assert (storage_dir / "a.bin").read_bytes() == data
        assert [r.offset for r in protocol.responses] == [100, 100]
        assert all(r.status == Status.SUCCESS for r in protocol.responses)
        assert progress.get("a.bin") == 100

    @pytest.mark.asyncio
    async def test_resume_reports_cumulative_length(self, handlers, protocol, storage_dir):
        first = bytes(range(100))
        second = bytes(range(150))

        await handlers.handle_upload(upload("a.bin", 0, first), protocol)
        await handlers.handle_upload(upload("a.bin", 100, second), protocol)

        assert (storage_dir / "a.bin").read_bytes() == first + second
        assert [r.offset for r in protocol.responses] == [100, 250]

    @pytest.mark.asyncio
    async def test_rewrite_inside_file_reports_high_water_mark(self, handlers, protocol, storage_dir):
        await handlers.handle_upload(upload("a.bin", 0, b"a" * 300), protocol)
        await handlers.handle_upload(upload("a.bin", 10, b"b" * 20), protocol)

        content = (storage_dir / "a.bin").read_bytes()
        assert len(content) == 300
        assert content[10:30] == b"b" * 20
        assert protocol.responses[-1].offset == 300

    @pytest.mark.asyncio
    async def test_out_of_order_chunks(self, handlers, protocol, storage_dir):
        await handlers.handle_upload(upload("a.bin", 5, b"world"), protocol)
        await handlers.handle_upload(upload("a.bin", 0, b"hello"), protocol)

        assert (storage_dir / "a.bin").read_bytes() == b"helloworld"
        assert [r.offset for r in protocol.responses] == [10, 10]

    @pytest.mark.asyncio
    async def test_empty_payload_creates_file_without_writing(self, handlers, protocol, storage_dir):
        await handlers.handle_upload(upload("empty.bin", 0, b""), protocol)

        assert (storage_dir / "empty.bin").read_bytes() == b""
        assert protocol.responses[0].status == Status.SUCCESS
        assert protocol.responses[0].offset == 0

    @pytest.mark.asyncio
    async def test_ack_has_no_payload(self, handlers, protocol):
        await handlers.handle_upload(upload("a.bin", 0, b"abc"), protocol)

        assert protocol.responses[0].payload is None
        assert protocol.responses[0].message == "Upload completed"

    @pytest.mark.asyncio
    async def test_missing_payload_is_an_error(self, handlers, protocol, storage_dir):
        await handlers.handle_upload(upload("a.bin", 0, None), protocol)

        assert len(protocol.responses) == 1
        assert protocol.responses[0].status == Status.ERROR
        assert not (storage_dir / "a.bin").exists()

    @pytest.mark.asyncio
    async def test_io_failure_leaves_progress_untouched(self, handlers, protocol, progress, monkeypatch):
        await handlers.handle_upload(upload("a.bin", 0, b"abc"), protocol)

        async def failing_write(file_id, offset, data):
            raise StorageIOError(file_id, OSError(28, "No space left on device"))

        monkeypatch.setattr(handlers.storage, 'write_at', failing_write)
        await handlers.handle_upload(upload("a.bin", 3, b"def"), protocol)

        error = protocol.responses[-1]
        assert error.status == Status.ERROR
        assert error.message == "Upload failed: No space left on device"
        assert error.payload is None
        assert progress.get("a.bin") == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("file_id", ["../escape", "sub/file", "..", "a\\b"])
    async def test_unsafe_file_id_rejected(self, handlers, protocol, tmp_path, file_id):
        await handlers.handle_upload(upload(file_id, 0, b"abc"), protocol)

        assert protocol.responses[0].status == Status.ERROR
        assert protocol.responses[0].message == "invalid file id"
        assert not (tmp_path / "escape").exists()

    @pytest.mark.asyncio
    async def test_concurrent_uploads_same_file(self, handlers, protocol, storage_dir, progress):
        chunks = [(i * 1000, bytes([i]) * 1000) for i in range(20)]

        await asyncio.gather(*(
            handlers.handle_upload(upload("same.bin", offset, data), protocol)
            for offset, data in chunks
        ))

        content = (storage_dir / "same.bin").read_bytes()
        assert len(content) == 20000
        for offset, data in chunks:
            assert content[offset:offset + 1000] == data
        assert progress.get("same.bin") == 20000
        # Acks come back in lock order, so lengths never go down
        offsets = [r.offset for r in protocol.responses]
        assert offsets == sorted(offsets)


class TestDownloadHandler:
    """Single-chunk reads with the separate completion response."""

    @pytest.mark.asyncio
    async def test_exact_chunk_file_then_complete(self, handlers, protocol, make_stored_file):
        data = make_stored_file("f.bin", 8192)

        await handlers.handle_download(download("f.bin", 0), protocol)

        chunk, done = protocol.responses
        assert chunk.status == Status.SUCCESS
        assert chunk.payload == data
        assert chunk.offset == 8192
        assert done.status == Status.SUCCESS
        assert done.payload is None
        assert done.offset == 8192
        assert done.message == "Download complete"

    @pytest.mark.asyncio
    async def test_middle_chunk_has_no_completion(self, handlers, protocol, make_stored_file):
        data = make_stored_file("f.bin", 20000)

        await handlers.handle_download(download("f.bin", 0), protocol)

        assert len(protocol.responses) == 1
        assert protocol.responses[0].payload == data[:8192]
        assert protocol.responses[0].offset == 8192

    @pytest.mark.asyncio
    async def test_last_partial_chunk(self, handlers, protocol, make_stored_file):
        data = make_stored_file("f.bin", 20000)

        await handlers.handle_download(download("f.bin", 16384), protocol)

        chunk, done = protocol.responses
        assert chunk.payload == data[16384:]
        assert chunk.offset == 20000
        assert done.offset == 20000

    @pytest.mark.asyncio
    async def test_offset_at_end(self, handlers, protocol, make_stored_file):
        make_stored_file("f.bin", 500)

        await handlers.handle_download(download("f.bin", 500), protocol)

        chunk, done = protocol.responses
        assert chunk.payload == b""
        assert chunk.offset == 500
        assert done.payload is None
        assert done.offset == 500

    @pytest.mark.asyncio
    async def test_offset_past_end(self, handlers, protocol, make_stored_file):
        make_stored_file("f.bin", 500)

        await handlers.handle_download(download("f.bin", 9000), protocol)

        chunk, done = protocol.responses
        assert chunk.payload == b""
        assert chunk.offset == 9000
        assert done.offset == 500

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [2 ** 50, MAX_OFFSET])
    async def test_offset_beyond_seekable_range(self, handlers, protocol, make_stored_file, offset):
        make_stored_file("f.bin", 500)

        await handlers.handle_download(download("f.bin", offset), protocol)

        chunk, done = protocol.responses
        assert chunk.status == Status.SUCCESS
        assert chunk.payload == b""
        assert chunk.offset == offset
        assert done.status == Status.SUCCESS
        assert done.message == "Download complete"
        assert done.offset == 500

    @pytest.mark.asyncio
    @pytest.mark.parametrize("file_id", ["../escape", "sub/file"])
    async def test_unsafe_file_id_rejected(self, handlers, protocol, file_id):
        await handlers.handle_download(download(file_id, 0), protocol)

        assert len(protocol.responses) == 1
        assert protocol.responses[0].status == Status.ERROR
        assert protocol.responses[0].message == "invalid file id"

    @pytest.mark.asyncio
    async def test_empty_file(self, handlers, protocol, make_stored_file):
        make_stored_file("empty.bin", 0)

        await handlers.handle_download(download("empty.bin", 0), protocol)

        chunk, done = protocol.responses
        assert chunk.payload == b""
        assert done.offset == 0

    @pytest.mark.asyncio
    async def test_missing_file(self, handlers, protocol):
        await handlers.handle_download(download("nope.bin", 0), protocol)

        assert len(protocol.responses) == 1
        assert protocol.responses[0].status == Status.ERROR
        assert protocol.responses[0].message == "File not found"


class TestPushHandler:
    """Whole-file streaming without a completion marker."""

    @pytest.mark.asyncio
    async def test_push_streams_whole_file(self, handlers, protocol, make_stored_file):
        data = make_stored_file("f.bin", 20000)

        await handlers.handle_push(push("f.bin"), protocol)

        assert [len(r.payload) for r in protocol.responses] == [8192, 8192, 3616]
        assert [r.offset for r in protocol.responses] == [8192, 16384, 20000]
        assert b"".join(r.payload for r in protocol.responses) == data
        assert all(r.status == Status.SUCCESS for r in protocol.responses)
        assert all(r.message == "File chunk" for r in protocol.responses)

    @pytest.mark.asyncio
    async def test_push_ignores_offset(self, handlers, protocol, make_stored_file):
        data = make_stored_file("f.bin", 100)

        await handlers.handle_push(push("f.bin", offset=50), protocol)

        assert len(protocol.responses) == 1
        assert protocol.responses[0].payload == data

    @pytest.mark.asyncio
    async def test_push_exact_multiple_has_no_trailing_empty_chunk(self, handlers, protocol, make_stored_file):
        make_stored_file("f.bin", 16384)

        await handlers.handle_push(push("f.bin"), protocol)

        assert [len(r.payload) for r in protocol.responses] == [8192, 8192]

    @pytest.mark.asyncio
    async def test_push_empty_file_sends_nothing(self, handlers, protocol, make_stored_file):
        make_stored_file("empty.bin", 0)

        await handlers.handle_push(push("empty.bin"), protocol)

        assert protocol.responses == []

    @pytest.mark.asyncio
    async def test_push_missing_file(self, handlers, protocol):
        await handlers.handle_push(push("nope.bin"), protocol)

        assert len(protocol.responses) == 1
        assert protocol.responses[0].status == Status.ERROR
        assert protocol.responses[0].message == "File not found"

    @pytest.mark.asyncio
    async def test_push_unsafe_file_id(self, handlers, protocol):
        await handlers.handle_push(push("../etc/passwd"), protocol)

        assert len(protocol.responses) == 1
        assert protocol.responses[0].message == "invalid file id"

    @pytest.mark.asyncio
    async def test_read_error_mid_stream(self, handlers, protocol, monkeypatch):
        async def broken_chunks(file_id, start=0):
            yield Chunk(data=b"a" * 8192, position=8192, length=20000)
            raise StorageIOError(file_id, OSError(5, "Input/output error"))

        monkeypatch.setattr(handlers.storage, 'iter_chunks', broken_chunks)

        await handlers.handle_push(push("f.bin"), protocol)

        chunk, error = protocol.responses
        assert chunk.status == Status.SUCCESS
        assert len(chunk.payload) == 8192
        assert error.status == Status.ERROR
        assert error.message == "Push failed: Input/output error"


class TestStats:

    @pytest.mark.asyncio
    async def test_counts_bytes_both_ways(self, handlers, protocol):
        await handlers.handle_upload(upload("a.bin", 0, b"x" * 10), protocol)
        await handlers.handle_download(download("a.bin", 0), protocol)

        stats = handlers.get_stats()
        assert stats['bytes_received'] == 10
        assert stats['bytes_served'] == 10
        assert stats['tracked_files'] == 1
