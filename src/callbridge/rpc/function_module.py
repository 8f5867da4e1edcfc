"""
FunctionModule: building block for exposing local functions to the peer.
Configure via .function(...) and .expose(...); register with bridge.register(module).
"""
from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Callable

from callbridge.core.module import Module

if TYPE_CHECKING:
    from callbridge.core.app import Bridge

_INFER: Any = object()


def infer_arity(handler: Callable[..., Any]) -> int | None:
    """Positional parameter count, or None when *args or defaults make it variable."""
    try:
        sig = inspect.signature(handler)
    except (TypeError, ValueError):
        return None
    count = 0
    for param in sig.parameters.values():
        if param.kind is param.VAR_POSITIONAL:
            return None
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            if param.default is not param.empty:
                return None
            count += 1
    return count


class FunctionModule(Module):
    """
    Functions as object: one module name, many handlers.
    The peer calls them as (name, function, args).
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._functions: list[tuple[str, int | None, Callable[..., Any]]] = []

    def function(
        self,
        name: str,
        handler: Callable[..., Any],
        arity: int | None = _INFER,
    ) -> FunctionModule:
        """Add a handler. arity defaults to what the signature says."""
        if arity is _INFER:
            arity = infer_arity(handler)
        self._functions.append((name, arity, handler))
        return self

    def expose(self, obj: Any, names: list[str] | None = None) -> FunctionModule:
        """Add public callables of a module, class or instance (or the listed names only)."""
        if names is None:
            names = [
                n for n in dir(obj)
                if not n.startswith("_") and callable(getattr(obj, n, None)) and not isinstance(getattr(obj, n), type)
            ]
            if inspect.ismodule(obj):
                # Skip names the module merely imported.
                names = [n for n in names if getattr(getattr(obj, n), "__module__", obj.__name__) == obj.__name__]
        for n in names:
            self.function(n, getattr(obj, n))
        return self

    def __len__(self) -> int:
        return len(self._functions)

    def register_into(self, bridge: Bridge) -> None:
        for name, arity, handler in self._functions:
            bridge.table.register(self.name, name, arity, handler)
