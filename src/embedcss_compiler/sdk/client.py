"""Host-side client for the compiler worker.

Launches the worker as a subprocess and speaks the binary protocol over its
stdin/stdout, the way a bundler plugin does:
- answers the worker's `ping` requests so it does not exit
- correlates compile responses by request id
- sends `exit` and waits for the process on close

Usage:
    async with CompilerClient() as client:
        result = await client.compile(source, unique_class_names=True)
        print(result.code, result.styles)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any

from ..compiler import COMPILE_COMMAND, CompileError, CompileResult, CompilerOptions
from ..protocol import (
    DecodeError,
    FrameReader,
    Packet,
    Request,
    TransportClosedError,
    Value,
    decode_packet,
    encode_packet,
    error_response,
    is_error_response,
)

logger = logging.getLogger(__name__)


def _default_command() -> list[str]:
    return [sys.executable, "-m", "embedcss_compiler"]


@dataclass
class ClientConfig:
    """Configuration for CompilerClient.

    Attributes:
        command: Worker command line
        working_directory: CWD for the worker
        env: Extra environment variables for the worker
        timeout: Seconds to wait for each response
        close_timeout: Seconds to wait for the worker to exit before killing it
        read_chunk_size: Maximum bytes per read from the worker's stdout
    """

    command: list[str] = field(default_factory=_default_command)
    working_directory: str | None = None
    env: dict[str, str] | None = None
    timeout: float = 10.0
    close_timeout: float = 10.0
    read_chunk_size: int = 16 * 1024


class CompilerClient:
    """Drives a compiler worker subprocess."""

    def __init__(self, config: ClientConfig | None = None) -> None:
        self.config = config or ClientConfig()
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[Value]] = {}
        self._next_id = 1
        self._write_lock = asyncio.Lock()
        self._pings_answered = 0

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pings_answered(self) -> int:
        """Number of heartbeat pings answered so far."""
        return self._pings_answered

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Launch the worker."""
        if self._process is not None:
            return

        env = None
        if self.config.env:
            env = {**os.environ, **self.config.env}

        self._process = await asyncio.create_subprocess_exec(
            *self.config.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.config.working_directory,
            env=env,
        )
        self._reader_task = asyncio.create_task(self._read_loop())
        self._stderr_task = asyncio.create_task(self._read_stderr())
        command = " ".join(self.config.command)
        logger.info(f"Launched compiler worker: {command} (pid={self._process.pid})")

    async def close(self) -> int | None:
        """Ask the worker to exit and wait for it.

        Returns:
            The worker's exit status (None if it was never started).
        """
        process = self._process
        if process is None:
            return None

        if process.returncode is None:
            with contextlib.suppress(TransportClosedError, OSError):
                exit_request = Request.create("exit").to_value()
                await self._send(Packet.request(self._allocate_id(), exit_request))
            try:
                await asyncio.wait_for(process.wait(), timeout=self.config.close_timeout)
            except TimeoutError:
                logger.warning(f"Compiler worker did not exit, killing it (pid={process.pid})")
                process.kill()
                await process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._fail_pending(TransportClosedError("compiler worker closed"))
        self._process = None
        logger.info(f"Compiler worker exited with status {process.returncode}")
        return process.returncode

    async def __aenter__(self) -> CompilerClient:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # =========================================================================
    # Requests
    # =========================================================================

    async def compile(self, code: str, unique_class_names: bool = True) -> CompileResult:
        """Compile one module.

        Raises:
            CompileError: If the worker reports an error
            TimeoutError: If the worker does not answer in time
        """
        options = CompilerOptions(unique_class_names=unique_class_names)
        value = await self.request(COMPILE_COMMAND, [code, options.model_dump_json(by_alias=True)])
        if is_error_response(value):
            raise CompileError(value.get("Msg", "unknown error"))
        return CompileResult.model_validate(value)

    async def request(
        self,
        command: str,
        args: list[str] | None = None,
        timeout: float | None = None,
    ) -> Value:
        """Send a request and wait for the response payload."""
        if not self.is_running:
            raise TransportClosedError("compiler worker is not running")

        packet_id = self._allocate_id()
        future: asyncio.Future[Value] = asyncio.get_running_loop().create_future()
        self._pending[packet_id] = future
        try:
            await self._send(Packet.request(packet_id, Request.create(command, args).to_value()))
            return await asyncio.wait_for(future, timeout or self.config.timeout)
        finally:
            self._pending.pop(packet_id, None)

    def _allocate_id(self) -> int:
        packet_id = self._next_id
        self._next_id += 1
        return packet_id

    async def _send(self, packet: Packet) -> None:
        if not self._process or not self._process.stdin:
            raise TransportClosedError("compiler worker is not running")
        frame = encode_packet(packet)
        async with self._write_lock:
            self._process.stdin.write(frame)
            await self._process.stdin.drain()

    # =========================================================================
    # Reading
    # =========================================================================

    async def _read_loop(self) -> None:
        if not self._process or not self._process.stdout:
            raise TransportClosedError("compiler worker is not running")

        frames = FrameReader()
        try:
            while True:
                chunk = await self._process.stdout.read(self.config.read_chunk_size)
                if not chunk:
                    break
                frames.feed(chunk)
                for payload in frames.frames():
                    await self._receive(payload)
        finally:
            self._fail_pending(TransportClosedError("compiler worker exited"))

    async def _receive(self, payload: bytes) -> None:
        try:
            packet = decode_packet(payload)
        except DecodeError as e:
            logger.warning(f"Failed to decode packet from compiler worker: {e}")
            return

        if packet.is_request:
            await self._answer(packet)
            return

        future = self._pending.get(packet.id)
        if future is None:
            logger.warning(f"Response for unknown request id {packet.id}")
        elif not future.done():
            future.set_result(packet.payload)

    async def _answer(self, packet: Packet) -> None:
        command = packet.payload.get("Command") if isinstance(packet.payload, dict) else None
        if command == "ping":
            self._pings_answered += 1
            response = Packet.response_to(packet, None)
        else:
            message = f"no handler for command: {command}"
            response = Packet.response_to(packet, error_response(message))
        with contextlib.suppress(TransportClosedError, OSError):
            await self._send(response)

    async def _read_stderr(self) -> None:
        if not self._process or not self._process.stderr:
            return
        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            logger.debug(f"[compiler stderr] {line.decode('utf-8', errors='replace').rstrip()}")

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
