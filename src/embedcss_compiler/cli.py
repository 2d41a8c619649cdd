"""embedcss compiler worker CLI.

Started by the bundler plugin as a subprocess. Speaks the binary protocol on
stdin/stdout and logs to stderr.

Usage:
    embedcss-compiler                           # Run the worker
    embedcss-compiler --debug                   # Log every packet to stderr
    embedcss-compiler --heartbeat-interval 5    # Ping the host every 5s
    python -m embedcss_compiler                 # Same as embedcss-compiler
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import click

from .compiler import register_commands
from .config import WorkerConfig
from .transport import StdioService

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    """Send logs to stderr; stdout carries the protocol."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


async def run_worker(config: WorkerConfig) -> int:
    """Run the compiler worker until it stops.

    Returns:
        The process exit status.
    """
    service = StdioService(config)
    register_commands(service.router)
    logger.debug("starting service")
    return await service.run()


@click.command()
@click.option("--debug", is_flag=True, help="Log every packet to stderr")
@click.option(
    "--heartbeat-interval",
    type=float,
    default=None,
    help="Seconds between pings to the host (0 disables the heartbeat)",
)
def main(debug: bool, heartbeat_interval: float | None) -> None:
    """embedcss compiler worker.

    Reads length-prefixed binary packets from stdin and writes responses to
    stdout. Exits with status 0 on the `exit` command or end of input, 1 on
    I/O failure or when the host stops answering pings.
    """
    try:
        config = WorkerConfig.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    if debug:
        config.debug = True
    if heartbeat_interval is not None:
        config.heartbeat_interval = heartbeat_interval

    configure_logging(config.debug)

    # On Windows, ensure binary mode for stdin/stdout
    if sys.platform == "win32":
        import msvcrt

        msvcrt.setmode(sys.stdin.fileno(), os.O_BINARY)
        msvcrt.setmode(sys.stdout.fileno(), os.O_BINARY)

    exit_code = asyncio.run(run_worker(config))

    # Handler or writer threads may still be blocked; do not wait for them
    logging.shutdown()
    os._exit(exit_code)


if __name__ == "__main__":
    main()
