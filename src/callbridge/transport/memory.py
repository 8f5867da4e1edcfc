"""In-process transport pair for embedding and tests. Bytes still go through framing."""
from __future__ import annotations

import asyncio

from callbridge.errors import BridgeConnectionError
from callbridge.transport.framing import Framing


class MemoryTransport:
    """
    One end of an in-memory link. Writes are framed and, when chunk_size is set,
    split into chunks so the reading side sees fragmented frames.
    """

    def __init__(self, framing: Framing, chunk_size: int | None = None) -> None:
        self._framing = framing
        self._decoder = framing.decoder()
        self._inbox: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._peer: MemoryTransport | None = None
        self._chunk_size = chunk_size
        self._closed = False
        self._eof = False

    @classmethod
    def pair(
        cls,
        framing: Framing | None = None,
        *,
        chunk_size: int | None = None,
    ) -> tuple[MemoryTransport, MemoryTransport]:
        framing = framing or Framing()
        left = cls(framing, chunk_size)
        right = cls(framing, chunk_size)
        left._peer, right._peer = right, left
        return left, right

    async def read_frame(self) -> bytes | None:
        while True:
            frame = self._decoder.next_frame()
            if frame is not None:
                return frame
            if self._eof:
                return None
            chunk = await self._inbox.get()
            if chunk is None:
                self._eof = True
                if self._decoder.buffered:
                    raise BridgeConnectionError("peer closed the stream inside a frame")
                continue
            self._decoder.feed(chunk)

    async def write_frame(self, payload: bytes) -> None:
        self.write_raw(self._framing.pack(payload))

    def write_raw(self, data: bytes) -> None:
        """Push bytes to the peer as-is (no framing)."""
        if self._closed or self._peer is None:
            raise BridgeConnectionError("transport is closed")
        if self._peer._closed:
            raise BridgeConnectionError("peer transport is closed")
        step = self._chunk_size or len(data) or 1
        for start in range(0, len(data), step):
            self._peer._inbox.put_nowait(data[start:start + step])

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inbox.put_nowait(None)
        if self._peer is not None and not self._peer._closed:
            self._peer._inbox.put_nowait(None)
