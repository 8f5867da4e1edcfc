"""Transports over asyncio streams: TCP sockets, pipes/stdio and spawned peer processes."""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Awaitable, BinaryIO, Callable

from callbridge.errors import BridgeConnectionError
from callbridge.transport.framing import Framing

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 64 * 1024


class StreamTransport:
    """Frames over an asyncio StreamReader/StreamWriter pair."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        framing: Framing | None = None,
        *,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._framing = framing or Framing()
        self._decoder = self._framing.decoder()
        self._read_size = read_size
        self._closed = False

    @property
    def peer(self) -> Any:
        return self._writer.get_extra_info("peername")

    async def read_frame(self) -> bytes | None:
        while True:
            frame = self._decoder.next_frame()
            if frame is not None:
                return frame
            chunk = await self._reader.read(self._read_size)
            if not chunk:
                if self._decoder.buffered:
                    raise BridgeConnectionError(
                        f"peer closed the stream inside a frame ({self._decoder.buffered} bytes buffered)"
                    )
                return None
            self._decoder.feed(chunk)

    async def write_frame(self, payload: bytes) -> None:
        if self._closed:
            raise BridgeConnectionError("transport is closed")
        self._writer.write(self._framing.pack(payload))
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as exc:
            logger.debug("error while closing stream: %s", exc)


class ProcessTransport(StreamTransport):
    """Frames over a child process's stdin/stdout. Closing ends stdin and waits for the child."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        framing: Framing | None = None,
        *,
        read_size: int = DEFAULT_READ_SIZE,
        exit_timeout: float = 5.0,
    ) -> None:
        assert process.stdout is not None and process.stdin is not None
        super().__init__(process.stdout, process.stdin, framing, read_size=read_size)
        self.process = process
        self._exit_timeout = exit_timeout

    async def close(self) -> None:
        await super().close()
        try:
            await asyncio.wait_for(self.process.wait(), self._exit_timeout)
        except asyncio.TimeoutError:
            logger.warning("peer process %s did not exit, killing it", self.process.pid)
            self.process.kill()
            await self.process.wait()


async def open_tcp(host: str, port: int, framing: Framing | None = None, **kwargs: Any) -> StreamTransport:
    """Connect to a listening peer."""
    try:
        reader, writer = await asyncio.open_connection(host, port)
    except OSError as exc:
        raise BridgeConnectionError(f"cannot connect to {host}:{port}: {exc}") from exc
    return StreamTransport(reader, writer, framing, **kwargs)


async def start_tcp_server(
    host: str,
    port: int,
    on_transport: Callable[[StreamTransport], Awaitable[None]],
    framing: Framing | None = None,
    **kwargs: Any,
) -> asyncio.AbstractServer:
    """Listen; every accepted socket is wrapped and handed to on_transport."""

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await on_transport(StreamTransport(reader, writer, framing, **kwargs))

    return await asyncio.start_server(handle, host, port)


async def open_pipes(
    read_pipe: BinaryIO,
    write_pipe: BinaryIO,
    framing: Framing | None = None,
    **kwargs: Any,
) -> StreamTransport:
    """Wrap two already-open binary pipes (stdio, inherited descriptors)."""
    reader, writer = await _connect_pipes(read_pipe, write_pipe)
    return StreamTransport(reader, writer, framing, **kwargs)


async def _connect_pipes(
    read_pipe: BinaryIO, write_pipe: BinaryIO
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), read_pipe)
    # StreamReaderProtocol on the write side too: it tracks connection loss, so
    # StreamWriter.wait_closed() works for the pipe.
    write_transport, write_protocol = await loop.connect_write_pipe(
        lambda: asyncio.StreamReaderProtocol(asyncio.StreamReader()), write_pipe
    )
    writer = asyncio.StreamWriter(write_transport, write_protocol, None, loop)
    return reader, writer


class StdioTransport(StreamTransport):
    """
    Frames on this process's stdin/stdout. While open, sys.stdout points at stderr so
    print() output cannot corrupt frames; close() puts it back.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        saved_stdout: Any,
        framing: Framing | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(reader, writer, framing, **kwargs)
        self._saved_stdout = saved_stdout

    async def close(self) -> None:
        try:
            await super().close()
        finally:
            if self._saved_stdout is not None:
                sys.stdout = self._saved_stdout
                self._saved_stdout = None


async def open_stdio(framing: Framing | None = None, **kwargs: Any) -> StdioTransport:
    """Frames on stdin/stdout; print() goes to stderr until the transport closes."""
    saved = sys.stdout
    reader, writer = await _connect_pipes(sys.stdin.buffer, saved.buffer)
    sys.stdout = sys.stderr
    return StdioTransport(reader, writer, saved, framing, **kwargs)


async def open_subprocess(
    *cmd: str,
    framing: Framing | None = None,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
    **kwargs: Any,
) -> ProcessTransport:
    """Spawn a peer program that speaks the bridge protocol on its stdin/stdout."""
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
        )
    except OSError as exc:
        raise BridgeConnectionError(f"cannot start {cmd[0]!r}: {exc}") from exc
    logger.info("spawned peer %s (pid %s)", cmd[0], process.pid)
    return ProcessTransport(process, framing, **kwargs)
