"""
callbridge: call functions across a process boundary and let the peer call back.
A Bridge is composed from function modules via bridge.register(module).
"""
from callbridge.core import Bridge, BridgeConfig, Container, Module, load_config_from_env
from callbridge.errors import (
    BridgeConnectionError,
    BridgeError,
    CallTimeoutError,
    ConfigError,
    DecodeError,
    DispatchError,
    EncodeError,
    HandlerError,
    ProtocolError,
    RemoteError,
)
from callbridge.rpc import Connection, ConnectionState, FunctionModule, current_connection
from callbridge.terms import Atom

__version__ = "0.1.0"

__all__ = [
    "Atom",
    "Bridge",
    "BridgeConfig",
    "BridgeConnectionError",
    "BridgeError",
    "CallTimeoutError",
    "ConfigError",
    "Connection",
    "ConnectionState",
    "Container",
    "DecodeError",
    "DispatchError",
    "EncodeError",
    "FunctionModule",
    "HandlerError",
    "Module",
    "ProtocolError",
    "RemoteError",
    "current_connection",
    "load_config_from_env",
]
