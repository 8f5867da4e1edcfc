"""Shared fixtures: the fixture peer bridge, a callback bridge and a memory-linked pair."""
from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator

import pytest

import peer_functions
from callbridge import Bridge, BridgeConfig, Connection, FunctionModule
from callbridge.transport import MemoryTransport


def make_fixture_bridge(config: BridgeConfig | None = None) -> Bridge:
    """identity/switch under test_utils, add/len/print_string under Test."""
    utils = (
        FunctionModule("test_utils")
        .function("identity", peer_functions.identity)
        .function("switch", peer_functions.switch)
    )
    test = (
        FunctionModule("Test")
        .function("add", peer_functions.add)
        .function("len", peer_functions.length)
        .function("print_string", peer_functions.print_string)
    )
    return Bridge(config).register(utils).register(test)


class CallbackRecorder:
    """bridge_tests:test_callback(result, i) -> result + i + 1, remembering every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, Any]] = []

    def test_callback(self, result: Any, i: Any) -> Any:
        self.calls.append((result, i))
        return result + i + 1

    def bridge(self, config: BridgeConfig | None = None) -> Bridge:
        module = FunctionModule(peer_functions.CALLBACK_MODULE).function("test_callback", self.test_callback)
        return Bridge(config).register(module)


@pytest.fixture
def fixture_bridge() -> Bridge:
    return make_fixture_bridge()


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@contextlib.asynccontextmanager
async def linked_pair(
    left: Bridge,
    right: Bridge,
    *,
    chunk_size: int | None = None,
) -> AsyncIterator[tuple[Connection, Connection]]:
    """Connect two bridges over an in-memory link; both are closed on exit."""
    a, b = MemoryTransport.pair(left.framing(), chunk_size=chunk_size)
    left_conn = left.connect(a, name="left")
    right_conn = right.connect(b, name="right")
    try:
        yield left_conn, right_conn
    finally:
        await left.aclose()
        await right.aclose()


@pytest.fixture
def linked():
    return linked_pair
