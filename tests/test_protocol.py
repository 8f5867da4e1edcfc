import pytest

from callbridge import Atom, ProtocolError
from callbridge.rpc import CallRequest, CallResponse, Cast, parse_message
from callbridge.terms.codec import decode_all, encode


def test_request_term_shape():
    request = CallRequest(7, "Test", "add", (2, 3))
    assert request.to_term() == (Atom("C"), 7, Atom("Test"), Atom("add"), [2, 3])
    assert parse_message(decode_all(encode(request.to_term()))) == request


def test_response_term_shapes():
    ok = CallResponse(1, True, 5)
    err = CallResponse(2, False, (Atom("undefined"), Atom("m"), Atom("f"), 0))
    assert ok.to_term() == (Atom("r"), 1, 5)
    assert err.to_term()[0] == Atom("e")
    assert parse_message(ok.to_term()) == ok
    assert parse_message(err.to_term()) == err


def test_cast_term_shape():
    cast = Cast("events", "record", (1,))
    assert cast.to_term() == (Atom("M"), Atom("events"), Atom("record"), [1])
    assert parse_message(cast.to_term()) == cast


def test_binary_and_string_names_accepted():
    message = parse_message((Atom("C"), 1, b"mod", "fun", []))
    assert (message.module, message.function) == ("mod", "fun")


@pytest.mark.parametrize(
    "term",
    [
        "not a tuple",
        (),
        ("C", 1, Atom("m"), Atom("f"), []),
        (Atom("C"), "1", Atom("m"), Atom("f"), []),
        (Atom("C"), True, Atom("m"), Atom("f"), []),
        (Atom("C"), 1, 42, Atom("f"), []),
        (Atom("C"), 1, Atom("m"), Atom("f"), (1,)),
        (Atom("r"), 1),
        (Atom("M"), Atom("m"), Atom("f"), 1),
        (Atom("Z"), 1, 2),
    ],
    ids=repr,
)
def test_malformed_messages(term):
    with pytest.raises(ProtocolError):
        parse_message(term)
