"""
Dispatcher: resolves (module, function, arity) in the function table, invokes the handler
and turns every failure into an error outcome instead of letting it reach the transport.
"""
from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from callbridge.core.config import BridgeConfig
from callbridge.errors import DispatchError, HandlerError, RemoteError

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


@dataclass(frozen=True)
class Registration:
    """One table entry. arity None accepts any argument count."""

    module: str
    function: str
    arity: int | None
    handler: Handler

    def accepts(self, argc: int) -> bool:
        return self.arity is None or self.arity == argc


@dataclass(frozen=True)
class Outcome:
    """Dispatch result: ok with the handler's return value, or an error term."""

    ok: bool
    value: Any

    @classmethod
    def success(cls, value: Any) -> Outcome:
        return cls(True, value)

    @classmethod
    def failure(cls, term: Any) -> Outcome:
        return cls(False, term)


class FunctionTable:
    """
    (module, function) -> handler. Filled at startup, frozen once a connection starts,
    read without locking afterwards.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], Registration] = {}
        self._lock = threading.Lock()
        self._frozen = False

    def register(self, module: str, function: str, arity: int | None, handler: Handler) -> Registration:
        if not callable(handler):
            raise TypeError(f"handler for {module}:{function} is not callable")
        if arity is not None and arity < 0:
            raise ValueError("arity must be non-negative or None")
        key = (str(module), str(function))
        with self._lock:
            if self._frozen:
                raise RuntimeError("function table is frozen; register functions before connecting")
            if key in self._entries:
                raise ValueError(f"{module}:{function} is already registered")
            entry = Registration(key[0], key[1], arity, handler)
            self._entries[key] = entry
        return entry

    def lookup(self, module: str, function: str, arity: int) -> Registration | None:
        entry = self._entries.get((module, function))
        if entry is None or not entry.accepts(arity):
            return None
        return entry

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Registration]:
        return iter(list(self._entries.values()))


class Dispatcher:
    """
    Invokes registered handlers. Coroutine handlers run on the event loop; plain functions
    run on a worker pool (threaded=True) so they may block and make nested blocking calls.
    """

    def __init__(self, table: FunctionTable, config: BridgeConfig | None = None, threaded: bool = True) -> None:
        self._table = table
        self._config = config or BridgeConfig()
        self._threaded = threaded
        self._executor: ThreadPoolExecutor | None = None

    @property
    def table(self) -> FunctionTable:
        return self._table

    @property
    def config(self) -> BridgeConfig:
        return self._config

    async def dispatch(self, module: str, function: str, args: tuple[Any, ...] | list[Any]) -> Outcome:
        entry = self._table.lookup(module, function, len(args))
        if entry is None:
            err = DispatchError(module, function, len(args))
            logger.warning("%s", err)
            return Outcome.failure(err.to_term())
        try:
            result = await self._invoke(entry.handler, tuple(args))
        except RemoteError as exc:
            # A nested call failed: the peer's error travels back unchanged.
            logger.info("%s:%s failed on a nested call: %s", module, function, exc.description)
            return Outcome.failure(exc.payload)
        except (Exception, SystemExit) as exc:
            # sys.exit() in a handler ends that call, not the host process.
            logger.info("%s:%s raised %s: %s", module, function, type(exc).__name__, exc)
            return Outcome.failure(HandlerError(exc).to_term())
        return Outcome.success(result)

    async def _invoke(self, handler: Handler, args: tuple[Any, ...]) -> Any:
        if inspect.iscoroutinefunction(handler):
            return await handler(*args)
        if self._threaded:
            loop = asyncio.get_running_loop()
            ctx = contextvars.copy_context()
            result = await loop.run_in_executor(self._get_executor(), functools.partial(ctx.run, handler, *args))
        else:
            result = handler(*args)
        if hasattr(result, "__await__"):
            result = await result
        return result

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._config.handler_threads,
                thread_name_prefix="callbridge-handler",
            )
        return self._executor

    def shutdown(self, wait: bool = False) -> None:
        """Release worker threads; blocked handlers keep running until they return."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)
            self._executor = None
