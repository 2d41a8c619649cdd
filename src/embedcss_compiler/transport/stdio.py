"""stdio service for the compiler worker.

The host spawns the worker as a subprocess and talks to it through binary
frames on stdin/stdout. stderr is free for logging.

Tasks run by StdioService:
- reader: feeds stdin chunks to a FrameReader, spawns one dispatch task per
  complete frame
- dispatch: decodes a packet and routes it (request -> handler -> response,
  response -> pending continuation)
- writer: the only code that touches stdout; drains the send queue in order.
  Writes happen on a dedicated thread so that a host that stops reading
  cannot stall the event loop (and with it the heartbeat)
- heartbeat: pings the host every interval, stops the worker if the previous
  ping is still unanswered

Exit statuses:
    0  `exit` command, or end of input with no partial frame
    1  write failure, read failure, truncated input, missed heartbeat,
       response with no matching request
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Coroutine
from concurrent.futures import ThreadPoolExecutor
from typing import Any, BinaryIO

from ..config import WorkerConfig
from ..protocol import (
    CommandFunc,
    Continuation,
    DecodeError,
    EncodeError,
    FrameReader,
    Packet,
    PacketRouter,
    Request,
    ShutdownRequested,
    UnexpectedResponseError,
    Value,
    decode_packet,
    encode_packet,
    error_response,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class StdioService:
    """Binary request/response service over stdin/stdout.

    Usage:
        service = StdioService(WorkerConfig.from_env())
        service.register("compile", compile_command)
        exit_code = await service.run()   # until `exit`, EOF or a fatal error

    Commands must be registered before run(); the command table is frozen
    once the service starts reading. `exit` and `ping` are built in.

    Streams can be injected for embedding and tests:
        reader = asyncio.StreamReader()
        service = StdioService(config, reader=reader, output=io.BytesIO())

    send(), send_request() and request() must be called from the event loop
    thread.
    """

    def __init__(
        self,
        config: WorkerConfig | None = None,
        *,
        reader: asyncio.StreamReader | None = None,
        output: BinaryIO | None = None,
        router: PacketRouter | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Worker settings (default: WorkerConfig())
            reader: Input stream (default: stdin, connected in run())
            output: Binary output stream (default: sys.stdout.buffer)
            router: Packet router (default: a new one sized from config)
        """
        self._config = config or WorkerConfig()
        self._reader = reader
        self._output = output or sys.stdout.buffer
        self.router = router or PacketRouter(max_concurrency=self._config.max_concurrency)

        self._outbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._inflight: set[asyncio.Task[None]] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._stopped = asyncio.Event()
        self._write_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="embedcss-writer"
        )
        self._exit_code = EXIT_OK
        self._running = False

        # Built-in commands, registered before any input is accepted
        self.router.register("exit", self._exit_command)
        self.router.register("ping", self._ping_command)

    @property
    def config(self) -> WorkerConfig:
        return self._config

    @property
    def exit_code(self) -> int:
        return self._exit_code

    @property
    def is_running(self) -> bool:
        return self._running

    def register(self, name: str, handler: CommandFunc) -> None:
        """Register a command handler. See PacketRouter.register()."""
        self.router.register(name, handler)

    def command(self, name: str) -> Callable[[CommandFunc], CommandFunc]:
        """Decorator form of register()."""
        return self.router.command(name)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> int:
        """Serve until `exit`, end of input or a fatal error.

        Returns:
            The process exit status.
        """
        if self._running:
            raise RuntimeError("service is already running")
        self._running = True
        self.router.freeze()

        try:
            reader = self._reader or await self._connect_stdin()
            self._start_task(self._write_loop(), "writer")
            if self._config.heartbeat_enabled:
                self._start_task(self._heartbeat_loop(), "heartbeat")
            self._start_task(self._read_loop(reader), "reader")
            logger.debug(f"Service started (commands: {', '.join(self.router.commands)})")

            await self._stopped.wait()
        finally:
            await self._cancel_tasks()
            # A write or handler stuck in a thread must not hold up the exit
            self._write_executor.shutdown(wait=False, cancel_futures=True)
            self.router.close()
            self._running = False

        return self._exit_code

    def shutdown(self, exit_code: int = EXIT_OK, reason: str = "shutdown requested") -> None:
        """Stop the service. run() returns ``exit_code``.

        Only the first call has an effect.
        """
        if self._stopped.is_set():
            return
        self._exit_code = exit_code
        if exit_code == EXIT_OK:
            logger.debug(f"Shutting down: {reason}")
        else:
            logger.error(f"Shutting down (exit status {exit_code}): {reason}")
        self._stopped.set()

    async def _connect_stdin(self) -> asyncio.StreamReader:
        """Set up a non-blocking reader on stdin."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
        return reader

    def _start_task(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{task.get_name()} task failed", exc_info=exc)
            self.shutdown(EXIT_FAILURE, f"{task.get_name()} task failed: {exc!r}")

    async def _cancel_tasks(self) -> None:
        # In-flight requests are abandoned, not drained
        tasks = [*self._tasks, *self._inflight]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _drain(self) -> None:
        """Wait for in-flight dispatches and queued frames."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self._outbox.join()

    # =========================================================================
    # Built-in commands
    # =========================================================================

    async def _exit_command(self, request: Request) -> Value:
        raise ShutdownRequested(EXIT_OK, "exit command received")

    async def _ping_command(self, request: Request) -> Value:
        return {}

    # =========================================================================
    # Outbound
    # =========================================================================

    def send(self, packet: Packet) -> None:
        """Queue a packet for the writer.

        Raises:
            EncodeError: If the payload cannot be encoded. Nothing is queued.
        """
        frame = encode_packet(packet)
        self._outbox.put_nowait(frame)
        logger.debug(f"Packet queued: {packet.describe()} ({len(frame)} bytes)")

    def send_request(self, request: Request, on_response: Continuation) -> int:
        """Send a request to the host; ``on_response`` gets the reply payload.

        Returns:
            The id assigned to the request.
        """
        packet_id = self.router.expect_response(on_response)
        try:
            self.send(Packet.request(packet_id, request.to_value()))
        except EncodeError:
            self.router.discard_pending(packet_id)
            raise
        return packet_id

    async def request(
        self,
        command: str,
        args: list[str] | None = None,
        timeout: float | None = None,
    ) -> Value:
        """Send a request to the host and wait for the reply payload.

        Raises:
            TimeoutError: If no reply arrives within ``timeout`` seconds. A
                late reply is dropped.
        """
        future: asyncio.Future[Value] = asyncio.get_running_loop().create_future()

        def on_response(value: Value) -> None:
            if not future.done():
                future.set_result(value)

        packet_id = self.send_request(Request.create(command, args), on_response)
        try:
            return await asyncio.wait_for(future, timeout)
        except (TimeoutError, asyncio.CancelledError):
            self.router.abandon(packet_id)
            raise

    async def _write_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            frame = await self._outbox.get()
            try:
                await loop.run_in_executor(self._write_executor, self._write_frame, frame)
            except (OSError, ValueError) as e:
                # Broken pipe: the host is gone
                self.shutdown(EXIT_FAILURE, f"failed to write output: {e}")
                return
            finally:
                self._outbox.task_done()

    def _write_frame(self, frame: bytes) -> None:
        self._output.write(frame)
        self._output.flush()

    async def _heartbeat_loop(self) -> None:
        interval = self._config.heartbeat_interval
        while True:
            answered = False

            def on_pong(value: Value) -> None:
                nonlocal answered
                answered = True

            self.send_request(Request.create("ping"), on_pong)
            await asyncio.sleep(interval)
            if not answered:
                self.shutdown(EXIT_FAILURE, f"host did not answer ping within {interval}s")
                return

    # =========================================================================
    # Inbound
    # =========================================================================

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        frames = FrameReader()
        chunk_size = self._config.read_chunk_size

        while True:
            try:
                chunk = await reader.read(chunk_size)
            except Exception as e:
                self.shutdown(EXIT_FAILURE, f"failed to read input: {e}")
                return
            if not chunk:
                break
            frames.feed(chunk)
            for payload in frames.frames():
                self._dispatch(payload)

        if frames.pending:
            self.shutdown(
                EXIT_FAILURE, f"input ended inside a frame ({frames.pending} bytes pending)"
            )
            return

        logger.debug("stdin closed, draining")
        await self._drain()
        self.shutdown(EXIT_OK, "end of input")

    def _dispatch(self, payload: bytes) -> None:
        task = asyncio.create_task(self._receive(payload))
        self._inflight.add(task)
        task.add_done_callback(self._on_dispatch_done)

    def _on_dispatch_done(self, task: asyncio.Task[None]) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Dispatch task failed", exc_info=task.exception())

    async def _receive(self, payload: bytes) -> None:
        try:
            packet = decode_packet(payload)
        except DecodeError as e:
            # No trustworthy id to answer
            logger.warning(f"Dropping undecodable packet ({len(payload)} bytes): {e}")
            return

        logger.debug(f"Packet received: {packet.describe()}")

        try:
            response = await self.router.route(packet)
        except ShutdownRequested as e:
            self.shutdown(e.exit_code, e.reason)
            return
        except UnexpectedResponseError as e:
            self.shutdown(EXIT_FAILURE, str(e))
            return

        if response is not None:
            self._send_response(response)

    def _send_response(self, response: Packet) -> None:
        try:
            self.send(response)
        except EncodeError as e:
            logger.exception(f"Handler returned an unencodable value (id={response.id})")
            self.send(Packet.response_to(response, error_response(f"invalid response value: {e}")))
