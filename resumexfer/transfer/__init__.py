"""
Transfer Module - Upload/Download/Push over TCP

Record codec, framing, command dispatch and the transfer handlers.
"""

from .codec import Command, Status, TransferRequest, TransferResponse
from .protocol import TransferProtocol, TransferServer, connect_to_server
from .dispatcher import CommandDispatcher
from .handlers import TransferHandlers
from .client import TransferClient, TransferFailed

__all__ = [
    'Command',
    'Status',
    'TransferRequest',
    'TransferResponse',
    'TransferProtocol',
    'TransferServer',
    'connect_to_server',
    'CommandDispatcher',
    'TransferHandlers',
    'TransferClient',
    'TransferFailed',
]
