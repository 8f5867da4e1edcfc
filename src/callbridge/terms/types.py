"""Term value types that have no native Python counterpart."""
from __future__ import annotations

MAX_ATOM_CHARS = 255


class Atom(str):
    """
    Symbolic constant (Erlang atom, Ruby symbol).
    A str subclass so it prints and formats naturally, but never equal to a plain str.
    """

    __slots__ = ()

    def __new__(cls, name: str | bytes) -> Atom:
        if isinstance(name, bytes):
            name = name.decode("utf-8")
        if len(name) > MAX_ATOM_CHARS:
            raise ValueError(f"atom longer than {MAX_ATOM_CHARS} characters")
        return super().__new__(cls, name)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Atom) and str.__eq__(self, other)

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    def __hash__(self) -> int:
        return hash((Atom, str(self)))

    def __repr__(self) -> str:
        return f"Atom({str.__repr__(self)})"

    def __reduce__(self) -> tuple[type, tuple[str]]:
        return (Atom, (str(self),))


TRUE = Atom("true")
FALSE = Atom("false")
UNDEFINED = Atom("undefined")
