"""
Term codec: Erlang external term format (version 131) with a private unicode-string tag.
encode(term) -> bytes; decode(bytes) -> (term, remaining). Pure functions, no shared state.
"""
from __future__ import annotations

import struct
import zlib
from typing import Any

from callbridge.errors import DecodeError, EncodeError
from callbridge.terms.types import FALSE, TRUE, UNDEFINED, Atom

VERSION = 131

COMPRESSED = 80
NEW_FLOAT_EXT = 70
UNICODE_STRING_EXT = 75  # private: uint32 byte length + UTF-8
SMALL_INTEGER_EXT = 97
INTEGER_EXT = 98
FLOAT_EXT = 99
ATOM_EXT = 100
SMALL_TUPLE_EXT = 104
LARGE_TUPLE_EXT = 105
NIL_EXT = 106
STRING_EXT = 107
LIST_EXT = 108
BINARY_EXT = 109
SMALL_BIG_EXT = 110
LARGE_BIG_EXT = 111
SMALL_ATOM_EXT = 115
MAP_EXT = 116
ATOM_UTF8_EXT = 118
SMALL_ATOM_UTF8_EXT = 119

# Containers nested deeper than this are rejected instead of exhausting the stack.
MAX_DEPTH = 512

_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1
_UINT32_MAX = 2 ** 32 - 1

_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_I32 = struct.Struct(">i")
_F64 = struct.Struct(">d")


# --- encoding ---


def encode(term: Any, *, compressed: int = 0) -> bytes:
    """Encode a term with the version header. compressed: zlib level 0 (off) to 9."""
    if not 0 <= compressed <= 9:
        raise ValueError("compressed must be between 0 and 9")
    out = bytearray()
    _encode_term(term, out, 0)
    if compressed:
        packed = zlib.compress(bytes(out), compressed)
        # Envelope costs 5 bytes; keep the plain form unless compression wins.
        if len(packed) + 5 < len(out):
            return bytes([VERSION, COMPRESSED]) + _U32.pack(len(out)) + packed
    return bytes([VERSION]) + bytes(out)


def _encode_term(term: Any, out: bytearray, depth: int) -> None:
    if depth > MAX_DEPTH:
        raise EncodeError(f"term nested deeper than {MAX_DEPTH} levels (or self-referencing)")
    # bool before int: bool is an int subclass.
    if term is True:
        _encode_atom(TRUE, out)
    elif term is False:
        _encode_atom(FALSE, out)
    elif term is None:
        _encode_atom(UNDEFINED, out)
    elif isinstance(term, Atom):
        _encode_atom(term, out)
    elif isinstance(term, int):
        _encode_int(term, out)
    elif isinstance(term, float):
        out.append(NEW_FLOAT_EXT)
        out += _F64.pack(term)
    elif isinstance(term, str):
        data = term.encode("utf-8", "surrogatepass")
        out.append(UNICODE_STRING_EXT)
        out += _U32.pack(len(data))
        out += data
    elif isinstance(term, (bytes, bytearray, memoryview)):
        data = bytes(term)
        out.append(BINARY_EXT)
        out += _U32.pack(len(data))
        out += data
    elif isinstance(term, tuple):
        if len(term) < 256:
            out.append(SMALL_TUPLE_EXT)
            out.append(len(term))
        else:
            out.append(LARGE_TUPLE_EXT)
            out += _U32.pack(len(term))
        for item in term:
            _encode_term(item, out, depth + 1)
    elif isinstance(term, list):
        if term:
            out.append(LIST_EXT)
            out += _U32.pack(len(term))
            for item in term:
                _encode_term(item, out, depth + 1)
        out.append(NIL_EXT)
    elif isinstance(term, dict):
        out.append(MAP_EXT)
        out += _U32.pack(len(term))
        for key, value in term.items():
            _encode_term(key, out, depth + 1)
            _encode_term(value, out, depth + 1)
    else:
        raise EncodeError(f"cannot encode {type(term).__name__} as a term: {term!r}")


def _encode_atom(atom: str, out: bytearray) -> None:
    data = atom.encode("utf-8")
    if len(data) < 256:
        out.append(SMALL_ATOM_UTF8_EXT)
        out.append(len(data))
    else:
        out.append(ATOM_UTF8_EXT)
        out += _U16.pack(len(data))
    out += data


def _encode_int(value: int, out: bytearray) -> None:
    if 0 <= value <= 255:
        out.append(SMALL_INTEGER_EXT)
        out.append(value)
    elif _INT32_MIN <= value <= _INT32_MAX:
        out.append(INTEGER_EXT)
        out += _I32.pack(value)
    else:
        magnitude = abs(value)
        size = (magnitude.bit_length() + 7) // 8
        if size < 256:
            out.append(SMALL_BIG_EXT)
            out.append(size)
        elif size <= _UINT32_MAX:
            out.append(LARGE_BIG_EXT)
            out += _U32.pack(size)
        else:
            raise EncodeError("integer too large to encode")
        out.append(1 if value < 0 else 0)
        out += magnitude.to_bytes(size, "little")


# --- decoding ---


def decode(data: bytes | bytearray | memoryview) -> tuple[Any, bytes]:
    """Decode one versioned term from the front of data. Returns (term, remaining bytes)."""
    buf = bytes(data)
    if not buf:
        raise DecodeError(0, f"version byte {VERSION}", "empty input")
    if buf[0] != VERSION:
        raise DecodeError(0, f"version byte {VERSION}", f"at offset 0: unknown version {buf[0]}")
    if len(buf) > 1 and buf[1] == COMPRESSED:
        return _decode_compressed(buf)
    term, pos = _Decoder(buf).term(1)
    return term, buf[pos:]


def decode_all(data: bytes | bytearray | memoryview) -> Any:
    """Decode exactly one term; trailing bytes are an error."""
    term, rest = decode(data)
    if rest:
        raise DecodeError(len(data) - len(rest), "end of data", f"{len(rest)} trailing bytes after term")
    return term


def _decode_compressed(buf: bytes) -> tuple[Any, bytes]:
    if len(buf) < 6:
        raise DecodeError(len(buf), "4-byte uncompressed size")
    (size,) = _U32.unpack_from(buf, 2)
    inflater = zlib.decompressobj()
    try:
        plain = inflater.decompress(buf[6:], size + 1)
    except zlib.error as exc:
        raise DecodeError(6, "zlib stream", f"at offset 6: bad compressed data ({exc})") from exc
    if len(plain) != size or not inflater.eof:
        raise DecodeError(6, f"zlib stream inflating to {size} bytes")
    term, pos = _Decoder(plain).term(0)
    if pos != len(plain):
        raise DecodeError(6, "end of compressed term", f"{len(plain) - pos} trailing bytes inside compressed term")
    return term, inflater.unused_data


class _Decoder:
    """Cursor over an immutable buffer; every read checks bounds and reports the offset."""

    def __init__(self, buf: bytes) -> None:
        self.buf = buf

    def _need(self, pos: int, count: int, expected: str) -> None:
        if pos + count > len(self.buf):
            raise DecodeError(pos, expected, f"at offset {pos}: truncated, expected {expected}")

    def _u8(self, pos: int, expected: str) -> int:
        self._need(pos, 1, expected)
        return self.buf[pos]

    def _u16(self, pos: int, expected: str) -> int:
        self._need(pos, 2, expected)
        return _U16.unpack_from(self.buf, pos)[0]

    def _u32(self, pos: int, expected: str) -> int:
        self._need(pos, 4, expected)
        return _U32.unpack_from(self.buf, pos)[0]

    def _bytes(self, pos: int, count: int, expected: str) -> bytes:
        self._need(pos, count, expected)
        return self.buf[pos:pos + count]

    def term(self, pos: int, depth: int = 0) -> tuple[Any, int]:
        if depth > MAX_DEPTH:
            raise DecodeError(pos, f"at most {MAX_DEPTH} levels of nesting", f"at offset {pos}: term nested too deeply")
        tag = self._u8(pos, "term tag")
        start = pos
        pos += 1
        if tag == SMALL_INTEGER_EXT:
            return self._u8(pos, "small integer"), pos + 1
        if tag == INTEGER_EXT:
            self._need(pos, 4, "32-bit integer")
            return _I32.unpack_from(self.buf, pos)[0], pos + 4
        if tag in (SMALL_BIG_EXT, LARGE_BIG_EXT):
            if tag == SMALL_BIG_EXT:
                size, pos = self._u8(pos, "bignum size"), pos + 1
            else:
                size, pos = self._u32(pos, "bignum size"), pos + 4
            sign = self._u8(pos, "bignum sign")
            digits = self._bytes(pos + 1, size, f"{size} bignum bytes")
            value = int.from_bytes(digits, "little")
            return (-value if sign else value), pos + 1 + size
        if tag == NEW_FLOAT_EXT:
            self._need(pos, 8, "8-byte float")
            return _F64.unpack_from(self.buf, pos)[0], pos + 8
        if tag == FLOAT_EXT:
            raw = self._bytes(pos, 31, "31-byte float string")
            try:
                value = float(raw.rstrip(b"\x00").decode("ascii"))
            except (UnicodeDecodeError, ValueError) as exc:
                raise DecodeError(pos, "float string") from exc
            return value, pos + 31
        if tag in (SMALL_ATOM_UTF8_EXT, ATOM_UTF8_EXT, SMALL_ATOM_EXT, ATOM_EXT):
            return self._atom(tag, pos)
        if tag == UNICODE_STRING_EXT:
            size = self._u32(pos, "string length")
            raw = self._bytes(pos + 4, size, f"{size} string bytes")
            try:
                return raw.decode("utf-8", "surrogatepass"), pos + 4 + size
            except UnicodeDecodeError as exc:
                raise DecodeError(pos + 4 + exc.start, "UTF-8 string data") from exc
        if tag == BINARY_EXT:
            size = self._u32(pos, "binary length")
            return self._bytes(pos + 4, size, f"{size} binary bytes"), pos + 4 + size
        if tag == STRING_EXT:
            size = self._u16(pos, "byte-list length")
            return list(self._bytes(pos + 2, size, f"{size} byte-list bytes")), pos + 2 + size
        if tag in (SMALL_TUPLE_EXT, LARGE_TUPLE_EXT):
            if tag == SMALL_TUPLE_EXT:
                arity, pos = self._u8(pos, "tuple arity"), pos + 1
            else:
                arity, pos = self._u32(pos, "tuple arity"), pos + 4
            items = []
            for _ in range(arity):
                item, pos = self.term(pos, depth + 1)
                items.append(item)
            return tuple(items), pos
        if tag == NIL_EXT:
            return [], pos
        if tag == LIST_EXT:
            length, pos = self._u32(pos, "list length"), pos + 4
            items = []
            for _ in range(length):
                item, pos = self.term(pos, depth + 1)
                items.append(item)
            if self._u8(pos, "list tail") != NIL_EXT:
                raise DecodeError(pos, "proper list tail (NIL_EXT)", f"at offset {pos}: improper list")
            return items, pos + 1
        if tag == MAP_EXT:
            arity, pos = self._u32(pos, "map arity"), pos + 4
            result: dict[Any, Any] = {}
            for _ in range(arity):
                key_pos = pos
                key, pos = self.term(pos, depth + 1)
                value, pos = self.term(pos, depth + 1)
                try:
                    result[key] = value
                except TypeError as exc:
                    raise DecodeError(key_pos, "hashable map key", f"at offset {key_pos}: unhashable map key {key!r}") from exc
            return result, pos
        raise DecodeError(start, "known term tag", f"at offset {start}: unknown term tag {tag}")

    def _atom(self, tag: int, pos: int) -> tuple[Atom, int]:
        if tag in (SMALL_ATOM_UTF8_EXT, SMALL_ATOM_EXT):
            size, pos = self._u8(pos, "atom length"), pos + 1
        else:
            size, pos = self._u16(pos, "atom length"), pos + 2
        raw = self._bytes(pos, size, f"{size} atom bytes")
        encoding = "utf-8" if tag in (SMALL_ATOM_UTF8_EXT, ATOM_UTF8_EXT) else "latin-1"
        try:
            return Atom(raw.decode(encoding)), pos + size
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecodeError(pos, "atom text") from exc
