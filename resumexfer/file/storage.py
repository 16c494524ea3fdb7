"""
File Storage

Design Decision: Storage Layout
===============================

Options Considered:
1. Single flat directory, file id is the file name
   - What clients already expect, easy to inspect
   - Client-supplied names must be sanitized

2. Content-addressed layout (hash-named files)
   - Safe names for free
   - Breaks resume: the hash isn't known until the upload is finished

Decision: Flat directory with sanitized names
- A file id that isn't a plain file name (separators, "..", NUL, too long)
  is rejected instead of being resolved
- Files are written in place at client-supplied offsets, so no temp/rename
  step

Storage Layout:
```
ServerFiles/
├── report.pdf
└── backup.tar
```

All reads go through ``iter_chunks``: Download pulls one chunk from it,
Push drains it.
"""

import os
import logging
from pathlib import Path
from typing import AsyncIterator, Dict
from dataclasses import dataclass

import aiofiles

from ..errors import FileNotFoundInStorage, InvalidFileIdError, StorageIOError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192  # 8KB per chunk response

# Longest name most filesystems accept
MAX_FILE_ID_BYTES = 255

_FORBIDDEN_CHARS = ('/', '\\', '\0')


def _open_or_create(path, flags):
    """Opener for read-write without truncation, creating the file if needed."""
    return os.open(path, flags | os.O_CREAT, 0o644)


@dataclass
class Chunk:
    """One read from a stored file."""
    data: bytes
    position: int  # read position after this chunk
    length: int    # file length when it was opened

    @property
    def at_end(self) -> bool:
        return self.position >= self.length


class FileStorage:
    """
    Flat directory of transferable files.

    Provides:
    - File id validation and path resolution
    - Write-at-offset for uploads
    - Chunked reads from an offset for downloads/pushes
    """

    def __init__(self, storage_dir: Path, chunk_size: int = CHUNK_SIZE):
        """
        Initialize file storage.

        Args:
            storage_dir: Directory holding all stored files
            chunk_size: Bytes per chunk for reads
        """
        self.storage_dir = Path(storage_dir)
        self.chunk_size = chunk_size

        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def file_path(self, file_id: str) -> Path:
        """
        Resolve a file id to its path.

        Raises:
            InvalidFileIdError: if the id isn't a plain file name
        """
        if not file_id or file_id in ('.', '..'):
            raise InvalidFileIdError(file_id)
        if any(c in file_id for c in _FORBIDDEN_CHARS):
            raise InvalidFileIdError(file_id)
        try:
            encoded = file_id.encode('utf-8')
        except UnicodeEncodeError:
            raise InvalidFileIdError(file_id) from None
        if len(encoded) > MAX_FILE_ID_BYTES:
            raise InvalidFileIdError(file_id)

        return self.storage_dir / file_id

    async def write_at(self, file_id: str, offset: int, data: bytes) -> int:
        """
        Write data at an offset, creating the file if needed.

        Existing bytes past the written range are kept.

        Returns:
            File length after the write
        """
        path = self.file_path(file_id)

        try:
            async with aiofiles.open(path, 'r+b', opener=_open_or_create) as f:
                await f.seek(offset)
                await f.write(data)
                await f.flush()
                return await f.seek(0, os.SEEK_END)
        except OSError as e:
            raise StorageIOError(file_id, e) from e

    async def iter_chunks(self, file_id: str, start: int = 0) -> AsyncIterator[Chunk]:
        """
        Read a file in chunks, starting at ``start``.

        Always yields at least one chunk (empty when ``start`` is at or past
        the end). Stops after the chunk that reaches end-of-file. The file
        stays open while iterating, so callers that stop early must close
        the generator (``contextlib.aclosing``).

        Raises:
            FileNotFoundInStorage: if the file doesn't exist
            StorageIOError: on read failure
        """
        path = self.file_path(file_id)

        try:
            async with aiofiles.open(path, 'rb') as f:
                length = await f.seek(0, os.SEEK_END)

                # Offsets past the end can exceed what lseek accepts
                if start >= length:
                    yield Chunk(data=b'', position=start, length=length)
                    return

                position = await f.seek(start)

                while True:
                    data = await f.read(self.chunk_size)
                    position += len(data)
                    chunk = Chunk(data=data, position=position, length=length)

                    yield chunk

                    if chunk.at_end or not data:
                        return
        except FileNotFoundError:
            raise FileNotFoundInStorage(file_id) from None
        except OSError as e:
            raise StorageIOError(file_id, e) from e

    def file_sizes(self) -> Dict[str, int]:
        """Sizes of all stored files, keyed by file id."""
        sizes = {}
        with os.scandir(self.storage_dir) as entries:
            for entry in entries:
                if entry.is_file():
                    sizes[entry.name] = entry.stat().st_size
        return sizes

    def get_stats(self) -> dict:
        """Get storage statistics."""
        sizes = self.file_sizes()
        return {
            'files': len(sizes),
            'bytes': sum(sizes.values()),
            'storage_dir': str(self.storage_dir),
        }
