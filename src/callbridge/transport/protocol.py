"""Transport protocol: whole frames in, whole frames out. Pipes, sockets and memory implement it."""
from typing import Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """
    Byte-stream link carrying length-prefixed frames.
    read_frame() blocks until one full payload is available; None means the peer closed cleanly.
    """

    async def read_frame(self) -> bytes | None:
        ...

    async def write_frame(self, payload: bytes) -> None:
        ...

    async def close(self) -> None:
        ...
