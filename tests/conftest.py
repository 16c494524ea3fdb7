"""Shared pytest fixtures for all tests."""

import os
from unittest.mock import MagicMock

import pytest

from resumexfer.file import FileStorage, ProgressTable
from resumexfer.transfer import CommandDispatcher, TransferHandlers, TransferProtocol
from resumexfer.transfer.codec import decode_response


class RecordingProtocol(TransferProtocol):
    """
    Server-side protocol that records responses instead of writing them.

    Records still go through the real encoder and are decoded back, so tests
    see exactly what a client would.
    """

    def __init__(self):
        writer = MagicMock()
        writer.get_extra_info.return_value = ('127.0.0.1', 50000)
        super().__init__(reader=MagicMock(), writer=writer)
        self.responses = []

    async def send(self, record: bytes):
        self.responses.append(decode_response(record))


@pytest.fixture
def storage_dir(tmp_path):
    """
    Create an empty storage directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to the storage directory
    """
    path = tmp_path / 'ServerFiles'
    path.mkdir()
    return path


@pytest.fixture
def storage(storage_dir):
    return FileStorage(storage_dir)


@pytest.fixture
def progress():
    return ProgressTable()


@pytest.fixture
def handlers(storage, progress):
    return TransferHandlers(storage, progress)


@pytest.fixture
def dispatcher(handlers):
    dispatcher = CommandDispatcher()
    handlers.register(dispatcher)
    return dispatcher


@pytest.fixture
def protocol():
    return RecordingProtocol()


@pytest.fixture
def make_stored_file(storage_dir):
    """
    Factory writing a file of random bytes into storage.

    Returns:
        Function (name, size) -> bytes written
    """
    def _make(name: str, size: int) -> bytes:
        data = os.urandom(size)
        (storage_dir / name).write_bytes(data)
        return data
    return _make
