from callbridge.transport.framing import FrameDecoder, Framing
from callbridge.transport.memory import MemoryTransport
from callbridge.transport.protocol import Transport
from callbridge.transport.streams import (
    ProcessTransport,
    StdioTransport,
    StreamTransport,
    open_pipes,
    open_stdio,
    open_subprocess,
    open_tcp,
    start_tcp_server,
)

__all__ = [
    "FrameDecoder",
    "Framing",
    "MemoryTransport",
    "ProcessTransport",
    "StdioTransport",
    "StreamTransport",
    "Transport",
    "open_pipes",
    "open_stdio",
    "open_subprocess",
    "open_tcp",
    "start_tcp_server",
]
