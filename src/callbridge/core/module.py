"""
What a Bridge can be composed from. FunctionModule is the stock implementation; anything with
register_into(bridge) works, e.g. a module that registers several FunctionModules plus services
in the container.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from callbridge.core.app import Bridge


@runtime_checkable
class Module(Protocol):
    def register_into(self, bridge: Bridge) -> None:
        """Add this module's handlers (and any container services) to the bridge before it connects."""
        ...


def module_label(module: Module) -> str:
    """Name used in logs: the module's own name when it has one, else its class."""
    name = getattr(module, "name", None)
    if isinstance(name, str) and name:
        return name
    return type(module).__name__
