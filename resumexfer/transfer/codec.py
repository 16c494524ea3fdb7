"""
Record Codec

Design Decision: Record Encoding
================================

Options Considered:
1. Binary header + raw payload (like a chunk protocol)
   - Compact, no payload inflation
   - Clients written against the existing wire format can't talk to us

2. JSON records with base64 payload
   - Text-safe, trivially debuggable
   - ~33% payload overhead

Decision: JSON records with base64 payload
- Field names match the existing wire format (Command/FileName/Offset/Data
  and Status/Message/Offset/Data)
- Pydantic does the validation, so a malformed record never reaches a
  handler

Request:
```
{"Command": "upload", "FileName": "a.bin", "Offset": 0, "Data": "aGVsbG8="}
```

Response:
```
{"Status": "success", "Message": "File chunk", "Offset": 8192, "Data": "..."}
```
"""

import base64
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from ..errors import DecodeError

logger = logging.getLogger(__name__)

# Offsets are int64 on the wire
MAX_OFFSET = 2 ** 63 - 1


class Command(str, Enum):
    """Request command tags."""
    UPLOAD = "upload"
    DOWNLOAD = "download"
    PUSH = "push"


class Status(str, Enum):
    """Response status."""
    SUCCESS = "success"
    ERROR = "error"


def _payload_from_wire(value):
    if value is None or isinstance(value, bytes):
        return value
    if isinstance(value, bytearray):
        return bytes(value)
    if not isinstance(value, str):
        raise ValueError("Data must be a base64 string")
    # binascii.Error is a ValueError, pydantic reports it as a validation error
    return base64.b64decode(value, validate=True)


def _payload_to_wire(value: Optional[bytes]) -> Optional[str]:
    if value is None:
        return None
    return base64.b64encode(value).decode('ascii')


class TransferRequest(BaseModel):
    """A client request.

    ``command`` stays a plain string here: an unrecognized tag is a valid
    record that the dispatcher answers with "unknown command", not a decode
    failure.
    """
    model_config = ConfigDict(populate_by_name=True)

    command: str = Field(alias='Command')
    file_id: str = Field(alias='FileName', min_length=1)
    offset: int = Field(default=0, alias='Offset', ge=0, le=MAX_OFFSET)
    payload: Optional[bytes] = Field(default=None, alias='Data')

    @field_validator('payload', mode='before')
    @classmethod
    def _decode_payload(cls, value):
        return _payload_from_wire(value)

    @field_serializer('payload')
    def _encode_payload(self, value: Optional[bytes]) -> Optional[str]:
        return _payload_to_wire(value)


class TransferResponse(BaseModel):
    """A server response."""
    model_config = ConfigDict(populate_by_name=True)

    status: Status = Field(alias='Status')
    message: str = Field(default='', alias='Message')
    offset: int = Field(default=0, alias='Offset')
    payload: Optional[bytes] = Field(default=None, alias='Data')

    @field_validator('payload', mode='before')
    @classmethod
    def _decode_payload(cls, value):
        return _payload_from_wire(value)

    @field_serializer('payload')
    def _encode_payload(self, value: Optional[bytes]) -> Optional[str]:
        return _payload_to_wire(value)

    @classmethod
    def success(cls, message: str, offset: int,
                payload: Optional[bytes] = None) -> 'TransferResponse':
        return cls(status=Status.SUCCESS, message=message,
                   offset=offset, payload=payload)

    @classmethod
    def error(cls, message: str, offset: int = 0) -> 'TransferResponse':
        return cls(status=Status.ERROR, message=message, offset=offset)

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCESS


# === Server side ===

def decode_request(data: bytes) -> TransferRequest:
    """
    Decode an inbound record.

    Raises:
        DecodeError: if the record isn't a valid request
    """
    try:
        return TransferRequest.model_validate_json(data)
    except ValidationError as e:
        logger.debug(f"Rejected record: {e.error_count()} validation error(s)")
        raise DecodeError(str(e)) from e


def encode_response(response: TransferResponse) -> bytes:
    """Encode a response record."""
    return response.model_dump_json(by_alias=True).encode('utf-8')


# === Client side ===

def encode_request(request: TransferRequest) -> bytes:
    """Encode a request record."""
    return request.model_dump_json(by_alias=True).encode('utf-8')


def decode_response(data: bytes) -> TransferResponse:
    """
    Decode a response record.

    Raises:
        DecodeError: if the record isn't a valid response
    """
    try:
        return TransferResponse.model_validate_json(data)
    except ValidationError as e:
        raise DecodeError(str(e)) from e
