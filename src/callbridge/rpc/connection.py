"""
Connection: one bridge link. Owns the reader task, the pending-call table and the write path.

Incoming requests are served in their own tasks, so a handler may call back into the peer
(and the peer into us again) while the reader keeps routing frames. Responses are matched
to waiting callers by correlation id, never by arrival order.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from contextvars import ContextVar
from enum import Enum
from typing import Any, Coroutine, Sequence

from callbridge.core.config import BridgeConfig
from callbridge.errors import (
    BridgeConnectionError,
    CallTimeoutError,
    DecodeError,
    EncodeError,
    FrameTooLargeError,
    HandlerError,
    ProtocolError,
    RemoteError,
)
from callbridge.rpc.dispatcher import Dispatcher
from callbridge.rpc.protocol import CallRequest, CallResponse, Cast, parse_message
from callbridge.terms.codec import decode_all, encode
from callbridge.transport.protocol import Transport

logger = logging.getLogger(__name__)

_current: ContextVar[Connection] = ContextVar("callbridge_connection")
_names = itertools.count(1)
_DEFAULT: Any = object()


def current_connection() -> Connection:
    """Connection serving the call this code runs under (handlers and their worker threads)."""
    try:
        return _current.get()
    except LookupError:
        raise RuntimeError("not running inside a bridge call") from None


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


class Connection:
    """
    Bidirectional call link over a Transport.
    call()/cast() issue requests; the dispatcher serves the peer's requests.
    All bookkeeping happens on the event loop thread; call_blocking() marshals onto it.
    """

    def __init__(
        self,
        transport: Transport,
        dispatcher: Dispatcher,
        config: BridgeConfig | None = None,
        *,
        name: str | None = None,
    ) -> None:
        self._transport = transport
        self._dispatcher = dispatcher
        self._config = config or BridgeConfig()
        self.name = name or f"bridge-{next(_names)}"
        self._state = ConnectionState.IDLE
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[CallResponse]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reader: asyncio.Task[None] | None = None
        self._write_lock: asyncio.Lock | None = None
        self._closed: asyncio.Event | None = None
        self._shutdown_task: asyncio.Task[None] | None = None
        self._shutting_down = False
        self.close_reason: BridgeConnectionError | None = None

    def __repr__(self) -> str:
        return f"<Connection {self.name} {self._state.value} pending={len(self._pending)}>"

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pending_ids(self) -> frozenset[int]:
        """Correlation ids of calls still waiting for a response."""
        return frozenset(self._pending)

    @property
    def transport(self) -> Transport:
        return self._transport

    def start(self) -> Connection:
        """Begin reading. Must run inside the event loop that will own the connection."""
        if self._state is not ConnectionState.IDLE:
            raise RuntimeError(f"{self.name} already started")
        self._loop = asyncio.get_running_loop()
        self._write_lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._dispatcher.table.freeze()
        self._state = ConnectionState.CONNECTED
        self._reader = self._loop.create_task(self._read_loop(), name=f"{self.name}-reader")
        logger.info("%s connected", self.name)
        return self

    async def __aenter__(self) -> Connection:
        if self._state is ConnectionState.IDLE:
            self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # --- caller side ---

    async def call(
        self,
        module: str,
        function: str,
        args: Sequence[Any] = (),
        *,
        timeout: float | None = _DEFAULT,
    ) -> Any:
        """Call module:function on the peer and wait for its result."""
        if self._state is not ConnectionState.CONNECTED:
            raise BridgeConnectionError(f"{self.name} is {self._state.value}, call to {module}:{function} not sent")
        if timeout is _DEFAULT:
            timeout = self._config.call_timeout
        assert self._loop is not None
        call_id = next(self._ids)
        future: asyncio.Future[CallResponse] = self._loop.create_future()
        self._pending[call_id] = future
        try:
            await self._send(CallRequest(call_id, module, function, tuple(args)).to_term())
            try:
                if timeout is None:
                    response = await future
                else:
                    response = await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError:
                raise CallTimeoutError(call_id, module, function, timeout) from None
        finally:
            self._pending.pop(call_id, None)
        if response.ok:
            return response.value
        raise RemoteError(response.value)

    def call_blocking(
        self,
        module: str,
        function: str,
        args: Sequence[Any] = (),
        *,
        timeout: float | None = _DEFAULT,
    ) -> Any:
        """call() for plain-function handlers running on worker threads."""
        return self._run_threadsafe(self.call(module, function, args, timeout=timeout))

    async def cast(self, module: str, function: str, args: Sequence[Any] = ()) -> None:
        """Send a one-way message; the peer dispatches it and answers nothing."""
        if self._state is not ConnectionState.CONNECTED:
            raise BridgeConnectionError(f"{self.name} is {self._state.value}, cast to {module}:{function} not sent")
        await self._send(Cast(module, function, tuple(args)).to_term())

    def cast_blocking(self, module: str, function: str, args: Sequence[Any] = ()) -> None:
        self._run_threadsafe(self.cast(module, function, args))

    def _run_threadsafe(self, coro: Coroutine[Any, Any, Any]) -> Any:
        loop = self._loop
        if loop is None:
            coro.close()
            raise BridgeConnectionError(f"{self.name} is not started")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            coro.close()
            raise RuntimeError("blocking call on the event loop thread; use 'await' instead")
        return asyncio.run_coroutine_threadsafe(coro, loop).result()

    # --- shutdown ---

    async def close(self, *, drain_timeout: float | None = _DEFAULT) -> None:
        """Stop accepting calls, let pending calls drain, then fail the rest and close the transport."""
        if self._state is ConnectionState.IDLE:
            self._state = ConnectionState.CLOSED
            await self._transport.close()
            return
        if self._state is not ConnectionState.CONNECTED:
            await self.wait_closed()
            return
        self._state = ConnectionState.CLOSING
        if drain_timeout is _DEFAULT:
            drain_timeout = self._config.drain_timeout
        waiting = [f for f in self._pending.values() if not f.done()]
        logger.info("%s closing, %d pending calls", self.name, len(waiting))
        if waiting and (drain_timeout is None or drain_timeout > 0):
            await asyncio.wait(waiting, timeout=drain_timeout)
        await self._shutdown(BridgeConnectionError(f"{self.name} closed"))

    async def wait_closed(self) -> None:
        if self._closed is not None:
            await self._closed.wait()

    async def _shutdown(self, reason: BridgeConnectionError) -> None:
        assert self._closed is not None
        if self._shutting_down:
            await self._closed.wait()
            return
        self._shutting_down = True
        self._state = ConnectionState.CLOSED
        self.close_reason = reason
        self._fail_pending(reason)
        current = asyncio.current_task()
        tasks = [t for t in (self._reader, *self._tasks) if t is not None and t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        try:
            await self._transport.close()
        except (ConnectionError, OSError) as exc:
            logger.debug("%s: transport close failed: %s", self.name, exc)
        finally:
            self._closed.set()
            logger.info("%s closed: %s", self.name, reason)

    def _abort(self, reason: BridgeConnectionError) -> None:
        if self._shutting_down or self._loop is None:
            return
        self._shutdown_task = self._loop.create_task(self._shutdown(reason), name=f"{self.name}-shutdown")

    def _fail_pending(self, reason: BridgeConnectionError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(reason)

    # --- reader side ---

    async def _read_loop(self) -> None:
        try:
            while True:
                frame = await self._transport.read_frame()
                if frame is None:
                    reason = BridgeConnectionError(f"{self.name}: peer closed the connection")
                    break
                self._handle_frame(frame)
        except DecodeError as exc:
            logger.error("%s: undecodable frame, dropping connection: %s", self.name, exc)
            reason = BridgeConnectionError(f"{self.name}: stream corrupted: {exc}")
            reason.__cause__ = exc
        except BridgeConnectionError as exc:
            logger.error("%s: %s", self.name, exc)
            reason = exc
        except (ConnectionError, OSError) as exc:
            logger.error("%s: read failed: %s", self.name, exc)
            reason = BridgeConnectionError(f"{self.name}: read failed: {exc}")
            reason.__cause__ = exc
        except Exception as exc:
            logger.exception("%s: reader failed, dropping connection", self.name)
            reason = BridgeConnectionError(f"{self.name}: reader failed: {exc!r}")
            reason.__cause__ = exc
        await self._shutdown(reason)

    def _handle_frame(self, frame: bytes) -> None:
        term = decode_all(frame)
        try:
            message = parse_message(term)
        except ProtocolError as exc:
            logger.warning("%s: ignoring frame: %s", self.name, exc)
            return
        logger.debug("%s <- %r", self.name, message)
        if isinstance(message, CallResponse):
            self._resolve(message)
        elif isinstance(message, CallRequest):
            self._spawn(self._serve_request(message), f"{self.name}-call-{message.id}")
        else:
            self._spawn(self._serve_cast(message), f"{self.name}-cast")

    def _resolve(self, response: CallResponse) -> None:
        future = self._pending.pop(response.id, None)
        if future is None or future.done():
            logger.warning("%s: dropping response for unknown call id %s", self.name, response.id)
            return
        future.set_result(response)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        assert self._loop is not None
        task = self._loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s: task %s failed", self.name, task.get_name(), exc_info=task.exception())

    async def _serve_request(self, request: CallRequest) -> None:
        _current.set(self)
        outcome = await self._dispatcher.dispatch(request.module, request.function, request.args)
        try:
            try:
                await self._send(CallResponse(request.id, outcome.ok, outcome.value).to_term())
            except (EncodeError, FrameTooLargeError) as exc:
                logger.warning("%s: result of %s:%s not sendable: %s", self.name, request.module, request.function, exc)
                await self._send(CallResponse(request.id, False, HandlerError(exc).to_term()).to_term())
        except BridgeConnectionError as exc:
            logger.info("%s: response to call %s lost: %s", self.name, request.id, exc)

    async def _serve_cast(self, cast: Cast) -> None:
        _current.set(self)
        outcome = await self._dispatcher.dispatch(cast.module, cast.function, cast.args)
        if not outcome.ok:
            logger.warning("%s: cast %s:%s failed: %r", self.name, cast.module, cast.function, outcome.value)

    # --- write path ---

    async def _send(self, term: Any) -> None:
        data = encode(term, compressed=self._config.compressed)
        assert self._write_lock is not None
        async with self._write_lock:
            if self._state is ConnectionState.CLOSED:
                raise BridgeConnectionError(f"{self.name} is closed")
            try:
                await self._transport.write_frame(data)
            except (ConnectionError, OSError) as exc:
                err = BridgeConnectionError(f"{self.name}: write failed: {exc}")
                self._abort(err)
                raise err from exc
        logger.debug("%s -> %r", self.name, term)
