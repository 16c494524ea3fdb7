"""
Transfer Progress Table

Tracks the last committed write length per file id so clients can resume
uploads. Shared by every connection; writers for the same file id serialize
on a per-file lock, writers for different ids never wait on each other.
"""

import asyncio
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ProgressTable:
    """
    file id -> last committed write length.

    Entries live for the life of the process. They can be rebuilt from file
    sizes on disk with ``seed``.
    """

    def __init__(self):
        self._entries: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, file_id: str) -> asyncio.Lock:
        """Get the write lock for a file id."""
        # No await between lookup and insert, so this is atomic on the loop
        lock = self._locks.get(file_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[file_id] = lock
        return lock

    def get(self, file_id: str) -> Optional[int]:
        """Last committed length, or None if never written."""
        return self._entries.get(file_id)

    def commit(self, file_id: str, length: int):
        """Record the length after a successful write.

        Callers must hold ``lock(file_id)``.
        """
        self._entries[file_id] = length

    def seed(self, sizes: Dict[str, int]) -> int:
        """
        Add entries for files not tracked yet.

        Returns:
            Number of entries added
        """
        added = 0
        for file_id, size in sizes.items():
            if file_id not in self._entries:
                self._entries[file_id] = size
                added += 1
        return added

    def snapshot(self) -> Dict[str, int]:
        """Copy of all entries."""
        return dict(self._entries)

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
