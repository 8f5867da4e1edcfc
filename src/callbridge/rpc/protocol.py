"""
Bridge messages and their term shapes.
Call request: ('C', Id, Module, Function, Args); responses: ('r', Id, Result) / ('e', Id, Error);
cast: ('M', Module, Function, Args) with no response.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from callbridge.errors import ProtocolError
from callbridge.terms.types import Atom

CALL = Atom("C")
RESULT = Atom("r")
ERROR = Atom("e")
MESSAGE = Atom("M")


@dataclass(frozen=True)
class CallRequest:
    id: int
    module: str
    function: str
    args: tuple[Any, ...]

    def to_term(self) -> tuple[Any, ...]:
        return (CALL, self.id, Atom(self.module), Atom(self.function), list(self.args))


@dataclass(frozen=True)
class CallResponse:
    id: int
    ok: bool
    value: Any

    def to_term(self) -> tuple[Any, ...]:
        return (RESULT if self.ok else ERROR, self.id, self.value)


@dataclass(frozen=True)
class Cast:
    module: str
    function: str
    args: tuple[Any, ...]

    def to_term(self) -> tuple[Any, ...]:
        return (MESSAGE, Atom(self.module), Atom(self.function), list(self.args))


Message = Union[CallRequest, CallResponse, Cast]


def _name(value: Any, what: str, term: Any) -> str:
    # Peers without atoms may name modules with strings or binaries.
    if isinstance(value, str):
        return str(value)
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            pass
    raise ProtocolError(f"{what} must be an atom: {term!r}")


def _call_id(value: Any, term: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise ProtocolError(f"call id must be an integer: {term!r}")


def parse_message(term: Any) -> Message:
    """Turn a decoded term into a message; anything else raises ProtocolError."""
    if not isinstance(term, tuple) or not term or not isinstance(term[0], Atom):
        raise ProtocolError(f"not a bridge message: {term!r}")
    tag = term[0]
    if tag == CALL and len(term) == 5:
        _, call_id, module, function, args = term
        if not isinstance(args, list):
            raise ProtocolError(f"call arguments must be a list: {term!r}")
        return CallRequest(
            _call_id(call_id, term),
            _name(module, "module", term),
            _name(function, "function", term),
            tuple(args),
        )
    if tag in (RESULT, ERROR) and len(term) == 3:
        return CallResponse(_call_id(term[1], term), tag == RESULT, term[2])
    if tag == MESSAGE and len(term) == 4:
        _, module, function, args = term
        if not isinstance(args, list):
            raise ProtocolError(f"cast arguments must be a list: {term!r}")
        return Cast(_name(module, "module", term), _name(function, "function", term), tuple(args))
    raise ProtocolError(f"unknown bridge message: {term!r}")
