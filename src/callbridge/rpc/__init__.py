from callbridge.rpc.connection import Connection, ConnectionState, current_connection
from callbridge.rpc.dispatcher import Dispatcher, FunctionTable, Outcome, Registration
from callbridge.rpc.function_module import FunctionModule
from callbridge.rpc.protocol import CallRequest, CallResponse, Cast, parse_message

__all__ = [
    "CallRequest",
    "CallResponse",
    "Cast",
    "Connection",
    "ConnectionState",
    "Dispatcher",
    "FunctionModule",
    "FunctionTable",
    "Outcome",
    "Registration",
    "current_connection",
    "parse_message",
]
