"""Bridge: composed from modules via bridge.register(module); opens and serves connections."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from callbridge.core.config import BridgeConfig
from callbridge.core.container import Container
from callbridge.core.module import Module, module_label
from callbridge.rpc.connection import Connection
from callbridge.rpc.dispatcher import Dispatcher, FunctionTable
from callbridge.transport.framing import Framing
from callbridge.transport.protocol import Transport
from callbridge.transport.streams import StreamTransport, open_stdio, open_subprocess, open_tcp, start_tcp_server

logger = logging.getLogger(__name__)


class Bridge:
    """
    One side of a call bridge. Register functions the peer may call, then connect.
    Every connection opened here shares the function table and the dispatcher.
    """

    def __init__(self, config: BridgeConfig | None = None) -> None:
        self._config = config or BridgeConfig()
        self._container = Container()
        self._table = FunctionTable()
        self._modules: list[Module] = []
        self._connections: set[Connection] = set()
        self._container.register_instance(BridgeConfig, self._config)
        self._container.register_instance(FunctionTable, self._table)
        self._container.register_class(Dispatcher)

    def register(self, module: Module) -> Bridge:
        """Register a module (FunctionModule, etc.). Returns self for chaining."""
        if not isinstance(module, Module):
            raise TypeError(f"{type(module).__name__} has no register_into(bridge)")
        before = len(self._table)
        module.register_into(self)
        self._modules.append(module)
        logger.debug("registered %s (%d functions)", module_label(module), len(self._table) - before)
        return self

    @property
    def modules(self) -> tuple[Module, ...]:
        return tuple(self._modules)

    def register_function(
        self,
        module: str,
        function: str,
        handler: Callable[..., Any],
        arity: int | None = None,
    ) -> Bridge:
        """Register one handler directly. arity None accepts any argument count."""
        self._table.register(module, function, arity, handler)
        return self

    @property
    def container(self) -> Container:
        """DI container: BridgeConfig, FunctionTable, Dispatcher."""
        return self._container

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def table(self) -> FunctionTable:
        return self._table

    @property
    def dispatcher(self) -> Dispatcher:
        return self._container.resolve(Dispatcher)

    @property
    def connections(self) -> frozenset[Connection]:
        return frozenset(self._connections)

    def framing(self) -> Framing:
        return Framing(self._config.packet, self._config.max_frame_size)

    def connect(self, transport: Transport, *, name: str | None = None) -> Connection:
        """Start a connection over an open transport. Call from inside the event loop."""
        conn = Connection(transport, self.dispatcher, self._config, name=name)
        self._connections.add(conn)
        conn.start()
        return conn

    async def open_tcp(self, host: str, port: int) -> Connection:
        transport = await open_tcp(host, port, self.framing(), read_size=self._config.read_size)
        return self.connect(transport, name=f"tcp:{host}:{port}")

    async def serve_tcp(
        self,
        host: str,
        port: int,
        on_connection: Callable[[Connection], Awaitable[None] | None] | None = None,
    ) -> asyncio.AbstractServer:
        """Listen for peers; each accepted socket becomes a connection."""

        async def accept(transport: StreamTransport) -> None:
            conn = self.connect(transport, name=f"tcp:{_peer_name(transport.peer)}")
            if on_connection is not None:
                result = on_connection(conn)
                if hasattr(result, "__await__"):
                    await result

        server = await start_tcp_server(host, port, accept, self.framing(), read_size=self._config.read_size)
        logger.info("listening on %s", ", ".join(_peer_name(s.getsockname()) for s in server.sockets))
        return server

    async def open_stdio(self) -> Connection:
        """Connect over stdin/stdout. sys.stdout is redirected to stderr until the connection closes."""
        transport = await open_stdio(self.framing(), read_size=self._config.read_size)
        return self.connect(transport, name="stdio")

    async def spawn(self, *cmd: str, env: dict[str, str] | None = None, cwd: str | None = None) -> Connection:
        """Start a peer program and connect to it over its stdin/stdout."""
        transport = await open_subprocess(
            *cmd, framing=self.framing(), env=env, cwd=cwd, read_size=self._config.read_size
        )
        return self.connect(transport, name=f"process:{transport.process.pid}")

    async def aclose(self) -> None:
        """Close every connection and release handler threads."""
        connections = list(self._connections)
        if connections:
            await asyncio.gather(*(conn.close() for conn in connections), return_exceptions=True)
        self._connections.clear()
        self.dispatcher.shutdown()

    def run_stdio(self) -> None:
        """Serve over stdin/stdout until the peer closes the link (blocks)."""

        async def main() -> None:
            conn = await self.open_stdio()
            try:
                await conn.wait_closed()
            finally:
                await self.aclose()

        asyncio.run(main())


def _peer_name(address: Any) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address)
