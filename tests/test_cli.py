import asyncio
import socket
import threading

import pytest
import typer
from typer.testing import CliRunner

from callbridge import Atom
from callbridge.cli.main import app, parse_arg, split_address

from conftest import make_fixture_bridge

runner = CliRunner()


@pytest.fixture
def tcp_peer():
    """Fixture bridge listening on a free port in a background event loop."""
    bridge = make_fixture_bridge()
    loop = asyncio.new_event_loop()
    ready = threading.Event()
    state = {}

    def run():
        asyncio.set_event_loop(loop)
        server = loop.run_until_complete(bridge.serve_tcp("127.0.0.1", 0))
        state["port"] = server.sockets[0].getsockname()[1]
        ready.set()
        loop.run_forever()
        loop.run_until_complete(bridge.aclose())
        server.close()
        loop.run_until_complete(server.wait_closed())
        loop.close()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    assert ready.wait(5)
    yield state["port"]
    loop.call_soon_threadsafe(loop.stop)
    thread.join(5)


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_parse_arg():
    assert parse_arg("42") == 42
    assert parse_arg("[1, 'a']") == [1, "a"]
    assert parse_arg("b'x'") == b"x"
    assert parse_arg(":ok") == Atom("ok")
    assert parse_arg("plain words") == "plain words"
    assert parse_arg(":") == ":"


def test_split_address():
    assert split_address("10.0.0.1:9000") == ("10.0.0.1", 9000)
    assert split_address("9000") == ("127.0.0.1", 9000)
    with pytest.raises(typer.BadParameter):
        split_address("host:port")


def test_call_command(tcp_peer):
    result = runner.invoke(app, ["call", f"127.0.0.1:{tcp_peer}", "Test", "add", "2", "3"])
    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == "5"


def test_call_command_with_list_argument(tcp_peer):
    result = runner.invoke(app, ["call", f"127.0.0.1:{tcp_peer}", "Test", "len", "[104, 101, 108, 108, 111]"])
    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == "5"


def test_call_command_remote_error(tcp_peer):
    result = runner.invoke(app, ["call", f"127.0.0.1:{tcp_peer}", "Test", "missing"])
    assert result.exit_code == 1


def test_call_command_connection_refused():
    result = runner.invoke(app, ["call", f"127.0.0.1:{_free_port()}", "Test", "add", "1", "2"])
    assert result.exit_code == 2


def test_serve_unknown_module():
    result = runner.invoke(app, ["serve", "no_such_module_for_callbridge"])
    assert result.exit_code == 1


def test_bad_log_level():
    result = runner.invoke(app, ["--log-level", "chatty", "call", "127.0.0.1:1", "m", "f"])
    assert result.exit_code != 0
