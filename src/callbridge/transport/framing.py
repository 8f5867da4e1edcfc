"""Length-prefixed framing: big-endian size header of 1, 2 or 4 bytes, then the payload."""
from __future__ import annotations

from callbridge.errors import FrameTooLargeError

_HEADER_LIMITS = {1: 0xFF, 2: 0xFFFF, 4: 0xFFFFFFFF}


class Framing:
    """Frame layout shared by both peers. packet is the header width in bytes."""

    def __init__(self, packet: int = 4, max_frame_size: int | None = None) -> None:
        if packet not in _HEADER_LIMITS:
            raise ValueError(f"packet must be 1, 2 or 4, got {packet!r}")
        self.packet = packet
        header_limit = _HEADER_LIMITS[packet]
        self.max_frame_size = header_limit if max_frame_size is None else min(max_frame_size, header_limit)

    def pack(self, payload: bytes) -> bytes:
        if len(payload) > self.max_frame_size:
            raise FrameTooLargeError(len(payload), self.max_frame_size)
        return len(payload).to_bytes(self.packet, "big") + payload

    def decoder(self) -> FrameDecoder:
        return FrameDecoder(self)


class FrameDecoder:
    """
    Incremental reader: feed() arbitrary chunks, next_frame() yields whole payloads only.
    Bytes of an incomplete frame stay buffered until the rest arrives.
    """

    def __init__(self, framing: Framing) -> None:
        self._framing = framing
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Bytes held for a frame that is not complete yet."""
        return len(self._buffer)

    def feed(self, data: bytes) -> None:
        self._buffer += data

    def next_frame(self) -> bytes | None:
        packet = self._framing.packet
        if len(self._buffer) < packet:
            return None
        size = int.from_bytes(self._buffer[:packet], "big")
        if size > self._framing.max_frame_size:
            raise FrameTooLargeError(size, self._framing.max_frame_size)
        end = packet + size
        if len(self._buffer) < end:
            return None
        payload = bytes(self._buffer[packet:end])
        del self._buffer[:end]
        return payload

    def frames(self) -> list[bytes]:
        """Drain every complete frame currently buffered."""
        out = []
        while (frame := self.next_frame()) is not None:
            out.append(frame)
        return out
