"""
Transfer Client

Design Decision: Resume Strategy
================================

Options Considered:
1. Client keeps its own progress file
   - Survives client restarts, but can disagree with the server

2. Ask the server / look at the local file
   - Uploads: an empty upload at offset 0 returns the server's length
   - Downloads: the local partial file's size is the resume offset

Decision: Option 2, no client-side state

Learning the remote length:
A download at an offset past the end returns an empty chunk followed by the
completion response, whose offset is the file length. The same "fence"
request sent right after a push marks where the pushed stream ends, since
responses on a connection come back in request order.
"""

import asyncio
import os
import time
import logging
from pathlib import Path
from typing import Callable, Optional, Tuple
from dataclasses import dataclass, field

import aiofiles

from .codec import Command, TransferRequest, TransferResponse
from .protocol import (
    TransferProtocol, connect_to_server, MAX_FRAME_SIZE, MSG_DOWNLOAD_COMPLETE,
)
from ..file.storage import CHUNK_SIZE

logger = logging.getLogger(__name__)

# Past the end of any file we expect to serve, and below every common
# filesystem's maximum seek position
FENCE_OFFSET = 2 ** 40


class TransferFailed(Exception):
    """The server answered with an Error response, or went away."""

    def __init__(self, message: str, response: Optional[TransferResponse] = None):
        super().__init__(message)
        self.message = message
        self.response = response


@dataclass
class TransferProgress:
    """Track progress of one file transfer."""
    file_id: str
    total_bytes: Optional[int] = None
    transferred_bytes: int = 0
    resumed_from: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def progress_percent(self) -> float:
        """Progress as percentage."""
        if not self.total_bytes:
            return 100.0 if self.total_bytes == 0 else 0.0
        return self.transferred_bytes / self.total_bytes * 100

    @property
    def elapsed_seconds(self) -> float:
        """Time elapsed since start."""
        return time.time() - self.start_time


# Progress callback type
ProgressCallback = Callable[[TransferProgress], None]


def _is_completion(response: TransferResponse) -> bool:
    return (response.ok and response.payload is None
            and response.message == MSG_DOWNLOAD_COMPLETE)


def _open_or_create(path, flags):
    return os.open(path, flags | os.O_CREAT, 0o644)


class TransferClient:
    """
    Client for a transfer server.

    One connection per client; requests are issued one at a time.
    """

    def __init__(self, host: str, port: int,
                 chunk_size: int = CHUNK_SIZE,
                 timeout: float = 30.0,
                 max_frame_size: int = MAX_FRAME_SIZE):
        self.host = host
        self.port = port
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.max_frame_size = max_frame_size
        self.protocol: Optional[TransferProtocol] = None
        # A download chunk may be followed by a completion notice
        self._completion_pending = False

    async def connect(self):
        """Open the connection."""
        self.protocol = await connect_to_server(
            self.host, self.port,
            timeout=self.timeout,
            max_frame_size=self.max_frame_size
        )
        logger.debug(f"Connected to {self.host}:{self.port}")

    async def close(self):
        """Close the connection."""
        if self.protocol:
            await self.protocol.close()
            self.protocol = None
        self._completion_pending = False

    async def __aenter__(self) -> 'TransferClient':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # === Low-level operations ===

    async def send(self, command: Command, file_id: str,
                   offset: int = 0, payload: Optional[bytes] = None):
        """Send one request."""
        if self.protocol is None:
            raise ConnectionError("Not connected")

        request = TransferRequest(
            command=command.value, file_id=file_id,
            offset=offset, payload=payload
        )
        await self.protocol.send_request(request)

    async def receive(self) -> TransferResponse:
        """
        Receive one response.

        Raises:
            TransferFailed: on an Error response or a closed connection
        """
        if self.protocol is None:
            raise ConnectionError("Not connected")

        while True:
            response = await asyncio.wait_for(
                self.protocol.receive_response(),
                timeout=self.timeout
            )
            if response is None:
                raise TransferFailed("Connection closed by server")

            if self._completion_pending:
                self._completion_pending = False
                if _is_completion(response):
                    continue
            break

        if not response.ok:
            raise TransferFailed(response.message, response)
        return response

    async def upload_chunk(self, file_id: str, offset: int, data: bytes) -> int:
        """
        Write data at an offset on the server.

        Returns:
            Server file length after the write
        """
        await self.send(Command.UPLOAD, file_id, offset, data)
        response = await self.receive()
        return response.offset

    async def remote_size(self, file_id: str) -> int:
        """Length of a file on the server."""
        await self.send(Command.DOWNLOAD, file_id, FENCE_OFFSET)
        await self.receive()
        done = await self.receive()
        return done.offset

    async def download_chunk(self, file_id: str, offset: int) -> Tuple[bytes, int]:
        """
        Read one chunk from the server.

        Whether a completion notice follows depends on the file's length
        when the server reads it, so it is skipped by the next receive()
        if it shows up.

        Returns:
            (data, position after the chunk)
        """
        await self.send(Command.DOWNLOAD, file_id, offset)
        response = await self.receive()
        self._completion_pending = True
        return response.payload or b'', response.offset

    # === File operations ===

    async def upload_file(self, path: Path, file_id: Optional[str] = None,
                          progress_callback: ProgressCallback = None) -> int:
        """
        Upload a local file, resuming from what the server already has.

        Returns:
            Server file length when done
        """
        path = Path(path)
        file_id = file_id or path.name
        local_size = path.stat().st_size

        # An empty write reports the current length without changing it
        remote_length = await self.upload_chunk(file_id, 0, b'')
        offset = min(remote_length, local_size)

        progress = TransferProgress(
            file_id=file_id, total_bytes=local_size,
            transferred_bytes=offset, resumed_from=offset
        )
        if offset:
            logger.info(f"Resuming upload of {file_id} at {offset:,} bytes")

        async with aiofiles.open(path, 'rb') as f:
            await f.seek(offset)
            while offset < local_size:
                data = await f.read(self.chunk_size)
                if not data:
                    break
                remote_length = await self.upload_chunk(file_id, offset, data)
                offset += len(data)

                progress.transferred_bytes = offset
                if progress_callback:
                    progress_callback(progress)

        logger.info(f"Uploaded {file_id} ({remote_length:,} bytes on server)")
        return remote_length

    async def download_file(self, file_id: str, output_path: Path,
                            progress_callback: ProgressCallback = None) -> Path:
        """
        Download a file, resuming from the local partial file.

        Returns:
            Path to the downloaded file
        """
        output_path = Path(output_path)
        size = await self.remote_size(file_id)

        offset = output_path.stat().st_size if output_path.exists() else 0
        if offset > size:
            logger.warning(f"Local {output_path} is larger than remote, starting over")
            offset = 0
            output_path.unlink()

        progress = TransferProgress(
            file_id=file_id, total_bytes=size,
            transferred_bytes=offset, resumed_from=offset
        )
        if offset:
            logger.info(f"Resuming download of {file_id} at {offset:,} bytes")

        async with aiofiles.open(output_path, 'r+b', opener=_open_or_create) as f:
            await f.seek(offset)
            # Read until the server has nothing more, the file may have grown
            while True:
                data, position = await self.download_chunk(file_id, offset)
                if not data:
                    break
                await f.write(data)
                offset = position

                progress.transferred_bytes = offset
                progress.total_bytes = max(size, offset)
                if progress_callback:
                    progress_callback(progress)

        logger.info(f"Downloaded {file_id} to {output_path}")
        return output_path

    async def push_file(self, file_id: str, output_path: Path,
                        progress_callback: ProgressCallback = None) -> Path:
        """
        Have the server push a file and write it to output_path.

        The push has no completion response, so a fence request is queued
        right behind it. On an Error response the connection is closed,
        since the fence's responses are still in flight.

        Returns:
            Path to the received file
        """
        output_path = Path(output_path)

        await self.send(Command.PUSH, file_id)
        await self.send(Command.DOWNLOAD, file_id, FENCE_OFFSET)

        progress = TransferProgress(file_id=file_id)

        try:
            async with aiofiles.open(output_path, 'wb') as f:
                while True:
                    response = await self.receive()

                    # Fence reply: empty chunk, then completion with the length
                    if response.offset == FENCE_OFFSET and not response.payload:
                        done = await self.receive()
                        progress.total_bytes = done.offset
                        break

                    await f.write(response.payload or b'')
                    progress.transferred_bytes = response.offset
                    if progress_callback:
                        progress_callback(progress)
        except TransferFailed:
            await self.close()
            raise

        if progress.transferred_bytes != progress.total_bytes:
            raise TransferFailed(
                f"Push ended at {progress.transferred_bytes} of {progress.total_bytes} bytes"
            )

        if progress_callback:
            progress_callback(progress)

        logger.info(f"Received pushed file {file_id} ({progress.total_bytes:,} bytes)")
        return output_path
