"""
File Transfer Server - Main Controller

Wires the components together:
- File storage (flat directory)
- Progress table, seeded from files already on disk
- Command dispatcher with the upload/download/push handlers
- TCP transfer server
"""

import logging
from typing import Optional

from .config import Config
from .file import FileStorage, ProgressTable
from .transfer import CommandDispatcher, TransferHandlers, TransferServer

logger = logging.getLogger(__name__)


class FileTransferServer:
    """
    A complete resumable file-transfer server.

    - start(): bind and begin accepting connections
    - stop(): close the listener and drop open connections
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize the server.

        Args:
            config: Server configuration (uses defaults if not provided)
        """
        self.config = config or Config()

        self.storage = FileStorage(self.config.storage_dir, self.config.chunk_size)
        self.progress = ProgressTable()

        self.dispatcher = CommandDispatcher()
        self.handlers = TransferHandlers(self.storage, self.progress)
        self.handlers.register(self.dispatcher)

        self.transfer = TransferServer(
            self.dispatcher,
            host=self.config.host,
            port=self.config.port,
            max_frame_size=self.config.max_frame_size
        )

        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        """Bound port (the real one once started with port 0)."""
        return self.transfer.port

    async def start(self):
        """Start serving."""
        if self._running:
            return

        seeded = self.progress.seed(self.storage.file_sizes())

        await self.transfer.start()
        self._running = True

        logger.info("File transfer server started")
        logger.info(f"  Address: {self.config.host}:{self.port}")
        logger.info(f"  Storage: {self.storage.storage_dir}")
        logger.info(f"  Resumable files: {seeded}")

    async def stop(self):
        """Stop serving."""
        if not self._running:
            return

        self._running = False
        await self.transfer.stop()

        stats = self.handlers.get_stats()
        logger.info(f"File transfer server stopped. Received {stats['bytes_received']:,} bytes, "
                    f"served {stats['bytes_served']:,} bytes")

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            'running': self._running,
            'address': f"{self.config.host}:{self.port}",
            'handlers': self.handlers.get_stats(),
            'storage': self.storage.get_stats(),
        }

