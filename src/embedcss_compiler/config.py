"""Worker configuration.

Settings come from dataclass defaults, overridden by environment variables,
overridden in turn by command line options.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

ENV_PREFIX = "EMBEDCSS_"

DEFAULT_HEARTBEAT_INTERVAL = 2.0
DEFAULT_READ_CHUNK_SIZE = 16 * 1024
DEFAULT_MAX_CONCURRENCY = 32

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class WorkerConfig:
    """Configuration for the compiler worker.

    Attributes:
        heartbeat_interval: Seconds between pings to the host. The worker
            exits if a ping is still unanswered at the next tick.
            Zero or less disables the heartbeat.
        read_chunk_size: Maximum bytes requested per read from stdin.
        max_concurrency: Maximum command handlers running at once
            (0 = unbounded).
        debug: Log every packet to stderr.
    """

    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    debug: bool = False

    def __post_init__(self) -> None:
        """Validate the configuration."""
        if self.read_chunk_size <= 0:
            raise ValueError("read_chunk_size must be positive")
        if self.max_concurrency < 0:
            raise ValueError("max_concurrency cannot be negative")

    @property
    def heartbeat_enabled(self) -> bool:
        return self.heartbeat_interval > 0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WorkerConfig:
        """Build a configuration from EMBEDCSS_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Raises:
            ValueError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        config = cls()

        if (raw := env.get(f"{ENV_PREFIX}HEARTBEAT_INTERVAL")) is not None:
            config.heartbeat_interval = _parse(raw, float, "HEARTBEAT_INTERVAL")
        if (raw := env.get(f"{ENV_PREFIX}READ_CHUNK_SIZE")) is not None:
            config.read_chunk_size = _parse(raw, int, "READ_CHUNK_SIZE")
        if (raw := env.get(f"{ENV_PREFIX}MAX_CONCURRENCY")) is not None:
            config.max_concurrency = _parse(raw, int, "MAX_CONCURRENCY")
        if (raw := env.get(f"{ENV_PREFIX}DEBUG")) is not None:
            config.debug = _parse_bool(raw, "DEBUG")

        config.__post_init__()
        return config


def _parse(raw: str, kind: type, name: str) -> float | int:
    try:
        return kind(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}") from e


def _parse_bool(raw: str, name: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}")
