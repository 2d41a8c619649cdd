"""Transport layer.

Runs the binary protocol over the worker's stdin/stdout: outbound send
queue and writer, inbound frame reading and dispatch, heartbeat and process
lifecycle.
"""

from .stdio import EXIT_FAILURE, EXIT_OK, StdioService

__all__ = [
    "StdioService",
    "EXIT_OK",
    "EXIT_FAILURE",
]
