"""
Command Dispatcher

Decodes each inbound record and routes it to the handler registered for its
command. Every record gets exactly one handler call or exactly one Error
response; nothing a handler raises (other than losing the connection) gets
past this point.
"""

import logging
from typing import Awaitable, Callable, Dict

from .codec import Command, TransferRequest, decode_request
from .protocol import TransferProtocol
from ..errors import DecodeError, TransferError, UnknownCommandError

logger = logging.getLogger(__name__)

# Type for request handlers
RequestHandler = Callable[[TransferRequest, TransferProtocol], Awaitable[None]]


class CommandDispatcher:
    """Routes decoded requests to command handlers."""

    def __init__(self):
        self._handlers: Dict[Command, RequestHandler] = {}

    def on_command(self, command: Command):
        """Decorator to register a command handler."""
        def decorator(handler: RequestHandler):
            self._handlers[command] = handler
            return handler
        return decorator

    def set_handler(self, command: Command, handler: RequestHandler):
        """Set a command handler."""
        self._handlers[command] = handler

    async def dispatch(self, record: bytes, protocol: TransferProtocol):
        """Handle one inbound record."""
        try:
            request = decode_request(record)
        except DecodeError as e:
            logger.debug(f"Invalid request from {protocol.remote_address}: {e.reason}")
            await protocol.send_error(e.message)
            return

        try:
            command = Command(request.command)
        except ValueError:
            command = None

        handler = self._handlers.get(command) if command is not None else None
        if handler is None:
            error = UnknownCommandError(request.command)
            logger.warning(f"Unknown command {request.command!r} from {protocol.remote_address}")
            await protocol.send_error(error.message)
            return

        logger.debug(f"{command.value} {request.file_id!r} @ {request.offset}")

        try:
            await handler(request, protocol)
        except ConnectionError:
            raise
        except TransferError as e:
            await protocol.send_error(e.message)
        except Exception as e:
            logger.exception(f"Unhandled error in {command.value} handler")
            await protocol.send_error(f"internal error: {e}")
