"""Host SDK - drive the compiler worker from Python.

Spawns the worker as a subprocess and exchanges binary packets with it over
stdio, answering its heartbeat pings.
"""

from .client import ClientConfig, CompilerClient

__all__ = [
    "ClientConfig",
    "CompilerClient",
]
