"""Packet Router - command dispatch and response correlation.

Decides, per decoded packet, whether it is a request to dispatch to a
registered command handler or a response to deliver to the continuation
that is waiting for it.

Shared state and how it is guarded:
- Command table: filled before the service starts, frozen afterwards.
- Pending table and id counter: guarded by one lock. Lookup and removal of
  a pending continuation happen in one critical section, so a response is
  delivered at most once.
- Abandoned ids: requests whose caller gave up waiting. A late reply to one
  of them is dropped instead of being treated as a protocol violation.

The lock is a threading.Lock rather than an asyncio.Lock: synchronous
handlers run on worker threads and may issue requests of their own, and the
critical sections never await.

Synchronous handlers run on a thread pool owned by the router, not on the
loop's default executor, so that close() can abandon them at shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import inspect
import logging
import threading
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from pydantic import ValidationError

from .errors import CommandError, ProtocolError, ShutdownRequested, UnexpectedResponseError
from .packets import MAX_PACKET_ID, Packet, Request, error_response
from .values import Value

logger = logging.getLogger(__name__)

# Handlers return the response value or raise. Plain functions run on a
# worker thread; coroutine functions run on the event loop.
CommandFunc = Callable[[Request], Value] | Callable[[Request], Awaitable[Value]]

# Invoked once with the response payload
Continuation = Callable[[Value], None]

PARSE_ERROR_MESSAGE = "unable to parse the request"

# Abandoned ids remembered for late replies; older ones are forgotten
MAX_ABANDONED = 1024


class PacketRouter:
    """Routes inbound packets to command handlers or pending continuations.

    Usage:
        router = PacketRouter(max_concurrency=32)
        router.register("compile", compile_command)
        router.freeze()

        response = await router.route(packet)   # None for inbound responses
        if response is not None:
            transport.send(response)

    Outbound requests:
        packet_id = router.expect_response(on_response)
        transport.send(Packet.request(packet_id, request.to_value()))
    """

    def __init__(self, max_concurrency: int | None = None) -> None:
        """Initialize the router.

        Args:
            max_concurrency: Upper bound on handlers running at once.
                None or 0 means unbounded.
        """
        self._commands: dict[str, CommandFunc] = {}
        self._frozen = False
        self._pending: dict[int, Continuation] = {}
        self._next_id = 1
        self._abandoned: OrderedDict[int, None] = OrderedDict()
        self._lock = threading.Lock()
        self._slots = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrency or None, thread_name_prefix="embedcss-handler"
        )

    # =========================================================================
    # Command table
    # =========================================================================

    def register(self, name: str, handler: CommandFunc) -> None:
        """Register a command handler.

        Raises:
            RuntimeError: If the table is already frozen.
            ValueError: If a handler is already registered under ``name``.
        """
        if self._frozen:
            raise RuntimeError(f"cannot register command {name!r}: command table is frozen")
        if not callable(handler):
            raise ValueError(f"handler for command {name!r} must be callable")
        if name in self._commands:
            raise ValueError(f"command already registered: {name}")
        self._commands[name] = handler
        logger.debug(f"Registered command: {name}")

    def command(self, name: str) -> Callable[[CommandFunc], CommandFunc]:
        """Decorator form of register()."""

        def decorator(handler: CommandFunc) -> CommandFunc:
            self.register(name, handler)
            return handler

        return decorator

    def freeze(self) -> None:
        """Make the command table read-only."""
        self._frozen = True

    @property
    def commands(self) -> list[str]:
        """Registered command names, sorted."""
        return sorted(self._commands)

    # =========================================================================
    # Pending responses
    # =========================================================================

    def next_id(self) -> int:
        """Allocate a request id."""
        with self._lock:
            return self._allocate_id_locked()

    def expect_response(self, on_response: Continuation) -> int:
        """Allocate an id and register the continuation for its response."""
        with self._lock:
            packet_id = self._allocate_id_locked()
            self._pending[packet_id] = on_response
            return packet_id

    def discard_pending(self, packet_id: int) -> bool:
        """Forget a pending continuation. Returns True if one was registered."""
        with self._lock:
            return self._pending.pop(packet_id, None) is not None

    def abandon(self, packet_id: int) -> None:
        """Stop waiting for a reply. A late reply is dropped, not fatal."""
        with self._lock:
            if self._pending.pop(packet_id, None) is None:
                return
            self._abandoned[packet_id] = None
            while len(self._abandoned) > MAX_ABANDONED:
                self._abandoned.popitem(last=False)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _allocate_id_locked(self) -> int:
        # Wraps after 2**31 - 1 ids, skipping any still pending or abandoned
        while True:
            packet_id = self._next_id
            self._next_id = packet_id + 1 if packet_id < MAX_PACKET_ID else 1
            if packet_id not in self._pending and packet_id not in self._abandoned:
                return packet_id

    # =========================================================================
    # Routing
    # =========================================================================

    async def route(self, packet: Packet) -> Packet | None:
        """Route one decoded packet.

        Returns:
            The response packet for an inbound request, None for an inbound
            response.

        Raises:
            UnexpectedResponseError: If a response matches neither a pending nor
                an abandoned request.
            ShutdownRequested: If a handler asked the service to stop.
        """
        if packet.is_request:
            return await self._dispatch(packet)
        self._resolve(packet)
        return None

    def _resolve(self, packet: Packet) -> None:
        with self._lock:
            on_response = self._pending.pop(packet.id, None)
            late = on_response is None and packet.id in self._abandoned
            if late:
                del self._abandoned[packet.id]
        if late:
            logger.debug(f"Dropping late response for abandoned id {packet.id}")
            return
        if on_response is None:
            raise UnexpectedResponseError(packet.id)
        try:
            on_response(packet.payload)
        except Exception:
            logger.exception(f"Error in response continuation for id {packet.id}")

    async def _dispatch(self, packet: Packet) -> Packet:
        try:
            request = Request.model_validate(packet.payload)
        except ValidationError as e:
            logger.warning(
                f"Malformed request (id={packet.id}): {e.error_count()} validation errors"
            )
            return Packet.response_to(packet, error_response(PARSE_ERROR_MESSAGE))

        handler = self._commands.get(request.command)
        if handler is None:
            logger.debug(f"No handler for command: {request.command} (id={packet.id})")
            return Packet.response_to(
                packet, error_response(f"no handler for command: {request.command}")
            )

        logger.debug(f"Handling command: {request.command} (id={packet.id})")
        try:
            result = await self._invoke(handler, request)
        except ShutdownRequested:
            raise
        except (CommandError, ProtocolError) as e:
            logger.debug(f"Command {request.command} failed (id={packet.id}): {e}")
            return Packet.response_to(packet, error_response(str(e)))
        except Exception as e:
            logger.exception(f"Error handling command {request.command} (id={packet.id}): {e}")
            return Packet.response_to(packet, error_response(str(e) or type(e).__name__))

        return Packet.response_to(packet, result)

    async def _invoke(self, handler: CommandFunc, request: Request) -> Any:
        slots = self._slots if self._slots is not None else contextlib.nullcontext()
        async with slots:
            if inspect.iscoroutinefunction(handler):
                return await handler(request)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, functools.partial(handler, request))

    def close(self) -> None:
        """Abandon handler threads: queued calls are cancelled, running ones are not joined."""
        self._executor.shutdown(wait=False, cancel_futures=True)
