"""Exception types for the stdio protocol layer.

Per-packet problems (bad request payload, unknown command, handler failure)
never surface as exceptions outside the router: they become error responses.
The exceptions below are the ones callers have to care about.
"""

from __future__ import annotations


class ProtocolError(Exception):
    """Base class for protocol failures."""


class EncodeError(ProtocolError):
    """A value outside the closed set of wire types was passed to the encoder.

    This is a programming error. Nothing is written when it is raised.
    """


class DecodeError(ProtocolError):
    """A packet could not be decoded (unknown tag, truncation, trailing bytes)."""


class UnexpectedResponseError(ProtocolError):
    """A response arrived for an id with no pending continuation."""

    def __init__(self, packet_id: int) -> None:
        super().__init__(f"unexpected response for id {packet_id}")
        self.packet_id = packet_id


class TransportClosedError(ProtocolError):
    """The worker process or its pipes are gone."""


class ShutdownRequested(Exception):
    """Raised from a command handler to stop the service without replying."""

    def __init__(self, exit_code: int = 0, reason: str = "shutdown requested") -> None:
        super().__init__(reason)
        self.exit_code = exit_code
        self.reason = reason


class CommandError(Exception):
    """Expected failure of a command, reported to the caller as an error response."""
