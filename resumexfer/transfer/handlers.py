"""
Transfer Handlers

Upload, download and push. Each handler answers its own request; failures
become Error responses here and never reach the connection loop.
"""

import logging
from contextlib import aclosing

from .codec import Command, TransferRequest
from .dispatcher import CommandDispatcher
from .protocol import TransferProtocol
from ..errors import FileNotFoundInStorage, InvalidFileIdError, TransferError
from ..file.storage import FileStorage
from ..file.progress import ProgressTable

logger = logging.getLogger(__name__)


class TransferHandlers:
    """
    Serves uploads, downloads and pushes against a FileStorage.

    Upload progress is committed to the shared ProgressTable.
    """

    def __init__(self, storage: FileStorage, progress: ProgressTable):
        self.storage = storage
        self.progress = progress

        # Statistics
        self.chunks_received = 0
        self.bytes_received = 0
        self.chunks_served = 0
        self.bytes_served = 0

    def register(self, dispatcher: CommandDispatcher):
        """Register handlers with the dispatcher."""
        dispatcher.set_handler(Command.UPLOAD, self.handle_upload)
        dispatcher.set_handler(Command.DOWNLOAD, self.handle_download)
        dispatcher.set_handler(Command.PUSH, self.handle_push)

    async def handle_upload(self, request: TransferRequest,
                            protocol: TransferProtocol):
        """
        Write a chunk at the requested offset.

        Acknowledges with the file length after the write, which can be
        larger than offset + len(payload) if the file was already longer.
        """
        file_id = request.file_id

        if request.payload is None:
            await protocol.send_error("Upload failed: missing payload")
            return

        try:
            self.storage.file_path(file_id)
        except InvalidFileIdError as e:
            logger.warning(f"Rejected upload to {file_id!r}")
            await protocol.send_error(e.message)
            return

        try:
            async with self.progress.lock(file_id):
                length = await self.storage.write_at(file_id, request.offset, request.payload)
                self.progress.commit(file_id, length)
        except TransferError as e:
            logger.warning(f"Upload of {file_id!r} failed: {e.message}")
            await protocol.send_error(f"Upload failed: {e.message}")
            return

        self.chunks_received += 1
        self.bytes_received += len(request.payload)
        logger.debug(f"Wrote {len(request.payload)} bytes to {file_id!r} @ {request.offset}, length {length}")

        await protocol.send_ack(length)

    async def handle_download(self, request: TransferRequest,
                              protocol: TransferProtocol):
        """
        Send one chunk from the requested offset.

        When that chunk reaches end-of-file a separate completion response
        follows it.
        """
        file_id = request.file_id

        try:
            async with aclosing(self.storage.iter_chunks(file_id, request.offset)) as chunks:
                chunk = await anext(chunks)
        except (FileNotFoundInStorage, InvalidFileIdError) as e:
            logger.debug(f"Download of {file_id!r} rejected: {e.message}")
            await protocol.send_error(e.message)
            return
        except TransferError as e:
            logger.warning(f"Download of {file_id!r} failed: {e.message}")
            await protocol.send_error(f"Download failed: {e.message}")
            return

        await protocol.send_chunk(chunk)
        self.chunks_served += 1
        self.bytes_served += len(chunk.data)

        if chunk.at_end:
            await protocol.send_complete(chunk.length)
            logger.debug(f"Download of {file_id!r} complete ({chunk.length} bytes)")

    async def handle_push(self, request: TransferRequest,
                          protocol: TransferProtocol):
        """
        Stream the whole file from byte 0 without waiting for the client.

        No completion response is sent. A read error part way through sends
        one Error response and stops.
        """
        file_id = request.file_id
        sent = 0

        try:
            async with aclosing(self.storage.iter_chunks(file_id)) as chunks:
                async for chunk in chunks:
                    if not chunk.data:
                        break
                    await protocol.send_chunk(chunk)
                    sent += len(chunk.data)
                    self.chunks_served += 1
                    self.bytes_served += len(chunk.data)
        except (FileNotFoundInStorage, InvalidFileIdError) as e:
            logger.debug(f"Push of {file_id!r} rejected: {e.message}")
            await protocol.send_error(e.message)
            return
        except TransferError as e:
            logger.warning(f"Push of {file_id!r} failed after {sent} bytes: {e.message}")
            await protocol.send_error(f"Push failed: {e.message}")
            return

        logger.info(f"File {file_id} pushed to {protocol.remote_address} ({sent:,} bytes)")

    def get_stats(self) -> dict:
        """Get handler statistics."""
        return {
            'chunks_received': self.chunks_received,
            'bytes_received': self.bytes_received,
            'chunks_served': self.chunks_served,
            'bytes_served': self.bytes_served,
            'tracked_files': len(self.progress),
        }
