import struct
import zlib

import pytest

from callbridge import Atom, DecodeError, EncodeError
from callbridge.terms.codec import MAX_DEPTH, decode, decode_all, encode

TERMS = [
    0,
    255,
    256,
    -1,
    2 ** 31 - 1,
    -(2 ** 31),
    2 ** 31,
    -(2 ** 31) - 1,
    2 ** 64,
    -(2 ** 2100),
    0.0,
    -1.5,
    1e300,
    Atom("ok"),
    Atom("ünïcode"),
    Atom("a" * 200),
    b"",
    b"\x00payload\x00",
    "",
    "héllo ✓",
    "lone \ud800 surrogate",
    (),
    (1, (2, (3,))),
    tuple(range(300)),
    [],
    [1, [2, []], "x"],
    {},
    {Atom("k"): [1], 2: b"x", (1, 2): "t"},
    [104, 101, 108, 108, 111],
]


@pytest.mark.parametrize("term", TERMS, ids=repr)
def test_round_trip(term):
    decoded, rest = decode(encode(term))
    assert rest == b""
    assert decoded == term
    assert type(decoded) is type(term)


def test_atom_and_string_stay_distinct():
    assert Atom("ok") != "ok"
    assert decode_all(encode("ok")) == "ok"
    assert not isinstance(decode_all(encode("ok")), Atom)
    assert decode_all(encode([Atom("a"), "a", b"a"])) == [Atom("a"), "a", b"a"]


def test_known_byte_layouts():
    assert encode(1) == b"\x83a\x01"
    assert encode(-1) == b"\x83b\xff\xff\xff\xff"
    assert encode([]) == b"\x83j"
    assert encode(Atom("ok")) == b"\x83w\x02ok"
    assert encode((1, 2)) == bytes([131, 104, 2, 97, 1, 97, 2])
    assert encode(b"\x00\x01") == b"\x83m\x00\x00\x00\x02\x00\x01"
    assert encode([1]) == bytes([131, 108, 0, 0, 0, 1, 97, 1, 106])
    assert encode(2 ** 64) == bytes([131, 110, 9, 0]) + (2 ** 64).to_bytes(9, "little")


def test_bool_and_none_encode_as_atoms():
    assert decode_all(encode(True)) == Atom("true")
    assert decode_all(encode(False)) == Atom("false")
    assert decode_all(encode(None)) == Atom("undefined")
    assert decode_all(encode([True, 1])) == [Atom("true"), 1]


def test_decode_returns_remaining_bytes():
    term, rest = decode(encode((1, "two")) + b"tail")
    assert term == (1, "two")
    assert rest == b"tail"


def test_decode_all_rejects_trailing_bytes():
    with pytest.raises(DecodeError) as info:
        decode_all(encode(1) + b"\x00")
    assert info.value.offset == 3


def test_every_truncation_fails_cleanly():
    data = encode({Atom("k"): [1, 2.5, "s", b"b", (Atom("t"), 2 ** 70)]})
    for cut in range(len(data)):
        with pytest.raises(DecodeError):
            decode(data[:cut])


def test_decode_error_reports_offset_and_expectation():
    with pytest.raises(DecodeError) as info:
        decode(b"\x83m\x00\x00\x00\x05ab")
    assert info.value.offset == 6
    assert "binary" in info.value.expected


def test_unknown_tag():
    with pytest.raises(DecodeError) as info:
        decode(b"\x83\xff")
    assert info.value.offset == 1
    assert "255" in str(info.value)


def test_bad_version_and_empty_input():
    with pytest.raises(DecodeError) as info:
        decode(b"\x00a\x01")
    assert info.value.offset == 0
    with pytest.raises(DecodeError):
        decode(b"")


def test_improper_list_rejected():
    with pytest.raises(DecodeError) as info:
        decode(bytes([131, 108, 0, 0, 0, 1, 97, 1, 97, 2]))
    assert info.value.offset == 8


def test_unhashable_map_key_rejected():
    with pytest.raises(DecodeError) as info:
        decode(bytes([131, 116, 0, 0, 0, 1, 106, 97, 2]))
    assert info.value.offset == 6


def test_legacy_tags_from_erlang_peers():
    assert decode_all(b"\x83d\x00\x02ok") == Atom("ok")
    assert decode_all(b"\x83s\x02ok") == Atom("ok")
    assert decode_all(b"\x83k\x00\x03abc") == [97, 98, 99]
    float_text = b"1.50000000000000000000e+00".ljust(31, b"\x00")
    assert decode_all(b"\x83c" + float_text) == 1.5


def test_compressed_terms():
    big = [Atom("repeat")] * 1000
    packed = encode(big, compressed=6)
    assert packed[:2] == b"\x83P"
    assert len(packed) < len(encode(big))
    assert decode_all(packed) == big
    # Too small to benefit: stays uncompressed.
    assert encode(1, compressed=9) == encode(1)


def test_compressed_keeps_trailing_bytes():
    big = "x" * 500
    term, rest = decode(encode(big, compressed=1) + b"more")
    assert term == big
    assert rest == b"more"


def test_corrupt_compressed_data():
    body = zlib.compress(b"\x61\x01")
    with pytest.raises(DecodeError):
        decode(b"\x83P" + struct.pack(">I", 2) + body[:-3])
    with pytest.raises(DecodeError):
        decode(b"\x83P" + struct.pack(">I", 7) + body)


def test_invalid_compression_level():
    with pytest.raises(ValueError):
        encode(1, compressed=10)


def test_unencodable_values():
    with pytest.raises(EncodeError):
        encode(object())
    with pytest.raises(TypeError):
        encode([1, {2, 3}])


def test_atom_length_limit():
    with pytest.raises(ValueError):
        Atom("a" * 256)


def _nested(depth):
    term = []
    for _ in range(depth):
        term = [term]
    return term


def test_nesting_up_to_the_limit():
    term = _nested(MAX_DEPTH)
    assert decode_all(encode(term)) == term


def test_too_deeply_nested_terms_rejected():
    with pytest.raises(EncodeError):
        encode(_nested(5000))
    with pytest.raises(DecodeError) as info:
        decode_all(b"\x83" + b"\x68\x01" * 5000 + b"\x6a")
    assert "nested too deeply" in str(info.value)


def test_self_referencing_list():
    loop = []
    loop.append(loop)
    with pytest.raises(EncodeError):
        encode(loop)
