"""Binary stdio protocol layer.

Defines the request/response protocol spoken between the compiler worker and
the host process that spawned it.

Key concepts:
- Values: a closed, recursively composable set of payload types
- Packets: id + direction + payload, framed with a u32 length prefix
- Correlation: a response carries the id of the request it answers
- Router: dispatches inbound requests, delivers inbound responses
"""

from .errors import (
    CommandError,
    DecodeError,
    EncodeError,
    ProtocolError,
    ShutdownRequested,
    TransportClosedError,
    UnexpectedResponseError,
)
from .framing import FrameReader
from .packets import (
    Direction,
    Packet,
    Request,
    decode_packet,
    encode_packet,
    error_response,
    is_error_response,
)
from .router import CommandFunc, Continuation, PacketRouter
from .values import StringList, TypeKind, Value, decode_value, encode_value

__all__ = [
    # Values
    "Value",
    "TypeKind",
    "StringList",
    "encode_value",
    "decode_value",
    # Packets
    "Direction",
    "Packet",
    "Request",
    "encode_packet",
    "decode_packet",
    "error_response",
    "is_error_response",
    # Framing
    "FrameReader",
    # Routing
    "PacketRouter",
    "CommandFunc",
    "Continuation",
    # Errors
    "ProtocolError",
    "EncodeError",
    "DecodeError",
    "UnexpectedResponseError",
    "TransportClosedError",
    "CommandError",
    "ShutdownRequested",
]
