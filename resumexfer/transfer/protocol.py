"""
File Transfer Protocol

Design Decision: Framing
========================

Options Considered:
1. Raw stream, one record per receive call
   - What the old server did
   - Breaks as soon as TCP splits or coalesces records

2. Delimiter-separated records (newline)
   - Simple, but JSON can't carry raw newlines inside strings safely
     without relying on the encoder

3. Length-prefixed records
   - Unambiguous, bounded reads
   - Need to handle framing ourselves

Decision: 4-byte big-endian length prefix + JSON record
- Records are JSON text, payload bytes are base64 inside the record
- Oversized frames close the connection instead of allocating

Frame Format:
```
+----------------+---------------------------+
| Length (4B)    | Record (UTF-8 JSON)       |
+----------------+---------------------------+
```
"""

import asyncio
import struct
import logging
from typing import Dict, Optional, Tuple, TYPE_CHECKING

from .codec import (
    TransferRequest, TransferResponse,
    encode_request, encode_response, decode_response,
)
from ..file.storage import Chunk

if TYPE_CHECKING:
    from .dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

LENGTH_PREFIX = struct.Struct('>I')

MAX_FRAME_SIZE = 16 * 1024 * 1024  # 16MB

# Response messages
MSG_CHUNK = "File chunk"
MSG_DOWNLOAD_COMPLETE = "Download complete"
MSG_UPLOAD_COMPLETE = "Upload completed"


def frame(record: bytes) -> bytes:
    """Prefix a record with its length."""
    return LENGTH_PREFIX.pack(len(record)) + record


async def read_frame(reader: asyncio.StreamReader,
                     max_size: int = MAX_FRAME_SIZE) -> Optional[bytes]:
    """
    Read one record from a stream.

    Returns:
        Record bytes, or None if the peer closed the stream

    Raises:
        ValueError: if the announced length exceeds max_size
    """
    try:
        length_bytes = await reader.readexactly(LENGTH_PREFIX.size)
        length = LENGTH_PREFIX.unpack(length_bytes)[0]

        if length > max_size:
            raise ValueError(f"Frame too large: {length}")

        return await reader.readexactly(length) if length > 0 else b''

    except asyncio.IncompleteReadError:
        return None


class TransferProtocol:
    """
    One framed connection.

    Used by both ends: the server sends responses on it, the client sends
    requests and reads responses.
    """

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter,
                 max_frame_size: int = MAX_FRAME_SIZE):
        self.reader = reader
        self.writer = writer
        self.max_frame_size = max_frame_size
        self._closed = False

    @property
    def remote_address(self) -> Tuple[str, int]:
        """Get remote peer address."""
        return self.writer.get_extra_info('peername')

    async def send(self, record: bytes):
        """Send a record."""
        if self._closed:
            raise ConnectionError("Connection closed")

        self.writer.write(frame(record))
        await self.writer.drain()

    async def receive(self) -> Optional[bytes]:
        """Receive a record, None once the peer is gone."""
        if self._closed:
            return None
        return await read_frame(self.reader, self.max_frame_size)

    async def close(self):
        """Close the connection."""
        if not self._closed:
            self._closed = True
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except ConnectionError:
                pass

    # === Server side ===

    async def send_response(self, response: TransferResponse):
        """Send a response record."""
        await self.send(encode_response(response))

    async def send_chunk(self, chunk: Chunk):
        """Send a data chunk; offset is the read position after it."""
        await self.send_response(
            TransferResponse.success(MSG_CHUNK, chunk.position, chunk.data)
        )

    async def send_complete(self, length: int):
        """Send the download completion notice."""
        await self.send_response(
            TransferResponse.success(MSG_DOWNLOAD_COMPLETE, length)
        )

    async def send_ack(self, length: int):
        """Acknowledge an upload write."""
        await self.send_response(
            TransferResponse.success(MSG_UPLOAD_COMPLETE, length)
        )

    async def send_error(self, message: str):
        """Send an error response."""
        await self.send_response(TransferResponse.error(message))

    # === Client side ===

    async def send_request(self, request: TransferRequest):
        """Send a request record."""
        await self.send(encode_request(request))

    async def receive_response(self) -> Optional[TransferResponse]:
        """
        Receive a response record.

        Returns:
            The response, or None if the server closed the connection
        """
        record = await self.receive()
        if record is None:
            return None
        return decode_response(record)


class TransferServer:
    """
    TCP server for transfer requests.

    Reads framed records and hands each one to the dispatcher. Records on one
    connection are handled in order, so responses come back in request order.
    """

    def __init__(self, dispatcher: 'CommandDispatcher',
                 host: str = '0.0.0.0', port: int = 8899,
                 max_frame_size: int = MAX_FRAME_SIZE):
        self.dispatcher = dispatcher
        self.host = host
        self.port = port
        self.max_frame_size = max_frame_size
        self.server: Optional[asyncio.AbstractServer] = None
        self._connections: Dict[asyncio.Task, TransferProtocol] = {}
        self._running = False

    async def start(self):
        """Start the transfer server."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.port
        )
        self._running = True

        addr = self.server.sockets[0].getsockname()
        # Pick up the real port when bound to port 0
        self.port = addr[1]
        logger.info(f"Transfer server listening on {addr[0]}:{addr[1]}")

    async def stop(self):
        """Stop the transfer server and drop open connections."""
        self._running = False
        if self.server:
            self.server.close()

            # Closing the transport ends each read loop with EOF
            for protocol in list(self._connections.values()):
                protocol.writer.close()
            if self._connections:
                await asyncio.gather(*list(self._connections), return_exceptions=True)

            await self.server.wait_closed()
            self.server = None
            logger.info("Transfer server stopped")

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        task = asyncio.current_task()
        protocol = TransferProtocol(reader, writer, self.max_frame_size)
        self._connections[task] = protocol

        peer = protocol.remote_address
        logger.debug(f"New transfer connection from {peer}")

        try:
            while self._running:
                record = await protocol.receive()
                if record is None:
                    break

                await self.dispatcher.dispatch(record, protocol)

        except ValueError as e:
            logger.warning(f"Dropping connection from {peer}: {e}")
        except ConnectionError as e:
            logger.debug(f"Connection from {peer} lost: {e}")
        finally:
            self._connections.pop(task, None)
            await protocol.close()
            logger.debug(f"Connection closed: {peer}")


async def connect_to_server(host: str, port: int,
                            timeout: float = 10.0,
                            max_frame_size: int = MAX_FRAME_SIZE) -> TransferProtocol:
    """
    Connect to a transfer server.

    Raises:
        OSError: if the connection can't be made
        asyncio.TimeoutError: if connecting takes longer than timeout
    """
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port),
        timeout=timeout
    )
    return TransferProtocol(reader, writer, max_frame_size)
