"""Bridge over real byte streams: TCP sockets and a spawned peer process."""
import asyncio
import os
import sys
import types

import pytest

import peer_functions
from callbridge import Bridge, BridgeConnectionError, ConnectionState, RemoteError
from callbridge.transport import open_pipes, open_stdio

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))


def test_tcp_round_trip(fixture_bridge, recorder):
    async def scenario():
        accepted = []
        server = await fixture_bridge.serve_tcp("127.0.0.1", 0, on_connection=accepted.append)
        port = server.sockets[0].getsockname()[1]
        client = recorder.bridge()
        try:
            conn = await client.open_tcp("127.0.0.1", port)
            assert await conn.call("test_utils", "identity", [42]) == 42
            assert await conn.call("Test", "add", [2, 3]) == 5
            assert await conn.call("test_utils", "switch", [3]) == 3
            assert len(accepted) == 1
            assert accepted[0].state is ConnectionState.CONNECTED
        finally:
            await client.aclose()
            await fixture_bridge.aclose()
            server.close()
            await server.wait_closed()

    asyncio.run(scenario())
    assert recorder.calls == [(0, 0), (1, 1), (3, 2)]


def test_tcp_connect_refused():
    async def scenario():
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()
        with pytest.raises(BridgeConnectionError):
            await Bridge().open_tcp("127.0.0.1", port)

    asyncio.run(scenario())


def test_async_on_connection_callback(fixture_bridge):
    async def scenario():
        greeted = asyncio.Event()

        async def on_connection(conn):
            assert await conn.call("client", "hello", []) == "hi"
            greeted.set()

        server = await fixture_bridge.serve_tcp("127.0.0.1", 0, on_connection=on_connection)
        port = server.sockets[0].getsockname()[1]
        client = Bridge().register_function("client", "hello", lambda: "hi", arity=0)
        try:
            await client.open_tcp("127.0.0.1", port)
            await asyncio.wait_for(greeted.wait(), 5)
        finally:
            await client.aclose()
            await fixture_bridge.aclose()
            server.close()
            await server.wait_closed()

    asyncio.run(scenario())


def test_spawned_peer_process(recorder):
    cmd, env = _serve_cmd()

    async def scenario():
        bridge = recorder.bridge()
        conn = await bridge.spawn(*cmd, env=env)
        process = conn.transport.process
        try:
            assert await conn.call("test_utils", "identity", [42]) == 42
            assert await conn.call("test_utils", "length", [[104, 101, 108, 108, 111]]) == 5
            assert await conn.call("test_utils", "switch", [3]) == 3
            with pytest.raises(RemoteError):
                await conn.call("test_utils", "missing", [])
        finally:
            await bridge.aclose()
        return process.returncode

    assert asyncio.run(scenario()) == 0
    assert recorder.calls == [(0, 0), (1, 1), (3, 2)]
    assert peer_functions.CALLBACK_MODULE == "bridge_tests"


def _serve_cmd():
    env = dict(os.environ)
    src_dir = os.path.join(os.path.dirname(TESTS_DIR), "src")
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [TESTS_DIR, src_dir, env.get("PYTHONPATH")]))
    cmd = [sys.executable, "-m", "callbridge", "serve", "peer_functions", "--name", "test_utils", "--stdio"]
    return cmd, env


def test_stdio_peer_exits_when_stdin_closes():
    cmd, env = _serve_cmd()

    async def scenario():
        bridge = Bridge()
        conn = await bridge.spawn(*cmd, env=env)
        process = conn.transport.process
        assert await conn.call("test_utils", "add", [2, 3]) == 5
        await bridge.aclose()
        return process.returncode

    assert asyncio.run(scenario()) == 0


def test_pipe_transports_close_cleanly():
    async def scenario():
        left_in, right_out = os.pipe()
        right_in, left_out = os.pipe()
        left = await open_pipes(os.fdopen(left_in, "rb"), os.fdopen(left_out, "wb"))
        right = await open_pipes(os.fdopen(right_in, "rb"), os.fdopen(right_out, "wb"))
        await right.write_frame(b"ping")
        assert await left.read_frame() == b"ping"
        await right.close()
        assert await left.read_frame() is None
        await left.close()
        assert await right.read_frame() is None

    asyncio.run(scenario())


def test_stdio_transport_restores_stdout(monkeypatch):
    in_read, in_write = os.pipe()
    out_read, out_write = os.pipe()
    fake_stdout = types.SimpleNamespace(buffer=os.fdopen(out_write, "wb"))
    monkeypatch.setattr(sys, "stdin", types.SimpleNamespace(buffer=os.fdopen(in_read, "rb")))
    monkeypatch.setattr(sys, "stdout", fake_stdout)

    async def scenario():
        transport = await open_stdio()
        assert sys.stdout is sys.stderr
        await transport.write_frame(b"hi")
        await transport.close()
        assert sys.stdout is fake_stdout
        os.close(in_write)
        assert await transport.read_frame() is None

    asyncio.run(scenario())
    with os.fdopen(out_read, "rb") as out:
        assert out.read() == b"\x00\x00\x00\x02hi"
