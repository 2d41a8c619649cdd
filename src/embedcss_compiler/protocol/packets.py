"""Packet definitions for the stdio protocol.

A packet is one protocol message: an id, a direction and a payload value.
Requests and responses share the id space of the side that issued the
request, so a response always carries the id of the request it answers.

Wire format:
    frame   := length:u32 payload:u8[length]
    payload := header:u32 value
    header  := (id << 1) | direction     # 0 = request, 1 = response

Example (host asks the worker to compile):
    Packet(id=7, direction=REQUEST,
           payload={"Command": "compile", "Args": StringList([source, options])})
    Packet(id=7, direction=RESPONSE,
           payload={"Code": "...", "Styles": "..."})
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import DecodeError, EncodeError
from .values import StringList, Value, decode_value, encode_value_into

_U32 = struct.Struct("<I")

# Ids live in the upper 31 bits of the header
MAX_PACKET_ID = 2**31 - 1


class Direction(IntEnum):
    """Packet direction, stored in the low bit of the header."""

    REQUEST = 0
    RESPONSE = 1


def encode_header(packet_id: int, direction: Direction) -> int:
    """Combine an id and a direction into one header word."""
    if not 0 <= packet_id <= MAX_PACKET_ID:
        raise EncodeError(f"packet id out of range: {packet_id}")
    return (packet_id << 1) | int(direction)


def decode_header(header: int) -> tuple[int, Direction]:
    """Split a header word into (id, direction)."""
    return header >> 1, Direction(header & 1)


@dataclass(frozen=True)
class Packet:
    """One protocol message."""

    id: int
    direction: Direction
    payload: Value = None

    @property
    def is_request(self) -> bool:
        return self.direction is Direction.REQUEST

    @classmethod
    def request(cls, packet_id: int, payload: Value) -> Packet:
        return cls(id=packet_id, direction=Direction.REQUEST, payload=payload)

    @classmethod
    def response_to(cls, request: Packet, payload: Value) -> Packet:
        """Build the response for ``request``, reusing its id."""
        return cls(id=request.id, direction=Direction.RESPONSE, payload=payload)

    def describe(self) -> str:
        """Short description for debug logging."""
        kind = "request" if self.is_request else "response"
        if isinstance(self.payload, dict) and "Command" in self.payload:
            return f"{kind} id={self.id} command={self.payload['Command']!r}"
        return f"{kind} id={self.id}"


class Request(BaseModel):
    """Application-level request carried in a request packet's payload.

    Wire form: ``{"Command": "compile", "Args": ["...", "..."]}``
    """

    # Inbound payloads are validated by wire name only; keys are case-sensitive
    model_config = ConfigDict(frozen=True)

    command: str = Field(alias="Command")
    args: list[str] = Field(alias="Args")

    @classmethod
    def create(cls, command: str, args: list[str] | None = None) -> Request:
        return cls.model_validate({"Command": command, "Args": list(args or [])})

    def to_value(self) -> dict[str, Any]:
        """Payload value for a request packet."""
        return {"Command": self.command, "Args": StringList(self.args)}

    def arg(self, index: int, default: str | None = None) -> str | None:
        """Get a positional argument with optional default."""
        if index < len(self.args):
            return self.args[index]
        return default


def error_response(message: str) -> dict[str, Any]:
    """Payload of an error response."""
    return {"Error": True, "Msg": message}


def is_error_response(payload: Value) -> bool:
    """Check whether a response payload signals an error."""
    return isinstance(payload, dict) and payload.get("Error") is True


def encode_packet(packet: Packet) -> bytes:
    """Encode a packet as a complete frame, length prefix included.

    Raises:
        EncodeError: If the payload is not encodable. No bytes are produced.
    """
    out = bytearray(4)  # length, patched below
    out += _U32.pack(encode_header(packet.id, packet.direction))
    encode_value_into(out, packet.payload)
    _U32.pack_into(out, 0, len(out) - 4)
    return bytes(out)


def decode_packet(frame: bytes | bytearray | memoryview) -> Packet:
    """Decode a frame payload (length prefix already stripped).

    Raises:
        DecodeError: If the payload is malformed.
    """
    if len(frame) < 4:
        raise DecodeError(f"packet too short for header: {len(frame)} bytes")
    (header,) = _U32.unpack_from(frame, 0)
    packet_id, direction = decode_header(header)
    payload = decode_value(memoryview(frame)[4:])
    return Packet(id=packet_id, direction=direction, payload=payload)
