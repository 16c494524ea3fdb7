"""
Transfer Errors

Every failure a handler can hit maps to one of these. The ``message`` is
what the client sees in the Error response, so keep it short and readable.
"""


class TransferError(Exception):
    """Base class for failures reported back to the client."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DecodeError(TransferError):
    """Inbound record is not a valid request."""

    def __init__(self, reason: str = ''):
        super().__init__("invalid request")
        self.reason = reason


class UnknownCommandError(TransferError):
    """Request carries a command tag we don't handle."""

    def __init__(self, command: str = ''):
        super().__init__("unknown command")
        self.command = command


class InvalidFileIdError(TransferError):
    """File id can't be used as a flat file name."""

    def __init__(self, file_id: str):
        super().__init__("invalid file id")
        self.file_id = file_id


class FileNotFoundInStorage(TransferError):
    """Download/push target doesn't exist."""

    def __init__(self, file_id: str):
        super().__init__("File not found")
        self.file_id = file_id


class StorageIOError(TransferError):
    """Disk read/write failed."""

    def __init__(self, file_id: str, error: OSError):
        super().__init__(error.strerror or str(error))
        self.file_id = file_id
        self.error = error
