"""Resumable File Transfer Server

Clients upload, download or have the server push a file over a persistent
TCP connection. Transfers are tracked by byte offset so an interrupted
transfer picks up where it stopped.
"""

from .config import Config, load_config
from .server import FileTransferServer

__version__ = "0.1.0"

__all__ = [
    'Config',
    'load_config',
    'FileTransferServer',
]
