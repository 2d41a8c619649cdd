"""embedcss compiler worker.

A long-running subprocess that a bundler spawns to compile css`` template
literals. The host drives it through a binary request/response protocol on
stdin/stdout.
"""

__version__ = "0.1.0"
