"""Bridge errors: decoding, dispatch, remote failures, connection and timeouts."""
from __future__ import annotations

import traceback
from typing import Any

from callbridge.terms.types import Atom


class BridgeError(Exception):
    """Base for every error raised by callbridge."""


class ConfigError(BridgeError, ValueError):
    """Invalid bridge configuration."""


class DecodeError(BridgeError, ValueError):
    """Malformed or truncated term bytes. offset is absolute within the decoded buffer."""

    def __init__(self, offset: int, expected: str, message: str | None = None) -> None:
        self.offset = offset
        self.expected = expected
        super().__init__(message or f"at offset {offset}: expected {expected}")


class FrameTooLargeError(DecodeError):
    """Frame length prefix exceeds the configured maximum."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(0, f"frame of at most {limit} bytes", f"frame of {size} bytes exceeds limit {limit}")


class EncodeError(BridgeError, TypeError):
    """Python value has no term representation."""


class ProtocolError(BridgeError):
    """Well-formed term that is not a bridge message."""


class DispatchError(BridgeError):
    """No registered function for (module, function, arity)."""

    def __init__(self, module: str, function: str, arity: int) -> None:
        self.module = module
        self.function = function
        self.arity = arity
        super().__init__(f"undefined function {module}:{function}/{arity}")

    def to_term(self) -> tuple[Any, ...]:
        return (Atom("undefined"), Atom(self.module), Atom(self.function), self.arity)


class HandlerError(BridgeError):
    """A registered handler raised while servicing a call."""

    def __init__(self, exc: BaseException) -> None:
        self.exc = exc
        super().__init__(f"{type(exc).__name__}: {exc}")

    def to_term(self) -> tuple[Any, ...]:
        lines = traceback.format_exception(type(self.exc), self.exc, self.exc.__traceback__)
        return (
            Atom("python"),
            Atom(type(self.exc).__name__),
            str(self.exc),
            [line.rstrip("\n") for line in lines],
        )


class RemoteError(BridgeError):
    """
    The peer answered a call with an error term.
    payload is the raw term; kind is its leading atom when the payload is a tagged tuple.
    """

    def __init__(self, payload: Any) -> None:
        self.payload = payload
        super().__init__(f"remote error: {payload!r}")

    @property
    def kind(self) -> str | None:
        if isinstance(self.payload, tuple) and self.payload and isinstance(self.payload[0], Atom):
            return str(self.payload[0])
        return None

    @property
    def description(self) -> str:
        """Human-readable message: exception text for python errors, repr otherwise."""
        if self.kind == "python" and len(self.payload) >= 3 and isinstance(self.payload[2], str):
            return f"{self.payload[1]}: {self.payload[2]}"
        if self.kind == "undefined" and len(self.payload) == 4:
            _, module, function, arity = self.payload
            return f"undefined function {module}:{function}/{arity}"
        return repr(self.payload)


class BridgeConnectionError(BridgeError, ConnectionError):
    """Link closed, failed, or not connected while a call needed it."""


class CallTimeoutError(BridgeError, TimeoutError):
    """No response arrived before the call deadline."""

    def __init__(self, call_id: int, module: str, function: str, timeout: float) -> None:
        self.call_id = call_id
        self.timeout = timeout
        super().__init__(f"call {call_id} to {module}:{function} timed out after {timeout}s")
