"""
File Module - Storage and Progress Tracking

Handles on-disk files and upload progress for the transfer server.
"""

from .storage import FileStorage, Chunk, CHUNK_SIZE
from .progress import ProgressTable

__all__ = [
    'FileStorage',
    'Chunk',
    'CHUNK_SIZE',
    'ProgressTable',
]
