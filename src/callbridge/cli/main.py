"""
CLI: serve a Python module's functions to a peer, or call a function on a listening peer.
Logs go to stderr; with --stdio, stdout carries frames.
"""
from __future__ import annotations

import ast
import asyncio
import importlib
import logging
import os
import sys
from typing import Any, List, Optional

import typer

from callbridge.core import Bridge, load_config_from_env
from callbridge.errors import BridgeConnectionError, CallTimeoutError, ConfigError, RemoteError
from callbridge.rpc import FunctionModule
from callbridge.terms import Atom

app = typer.Typer(help="callbridge CLI: serve functions to a peer or call the peer's functions.")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@app.callback()
def configure(
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level (DEBUG, INFO, ...)"),
) -> None:
    """Shared options."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"unknown log level {log_level!r}", param_hint="--log-level")
    logging.basicConfig(level=level, stream=sys.stderr, format=_LOG_FORMAT)


def parse_arg(text: str) -> Any:
    """':name' is an atom; Python literals are themselves; anything else is a string."""
    if text.startswith(":") and len(text) > 1:
        return Atom(text[1:])
    try:
        return ast.literal_eval(text)
    except (ValueError, SyntaxError):
        return text


def split_address(address: str) -> tuple[str, int]:
    host, _, port = address.rpartition(":")
    try:
        return host or "127.0.0.1", int(port)
    except ValueError:
        raise typer.BadParameter(f"expected HOST:PORT, got {address!r}", param_hint="ADDRESS") from None


def _load_config() -> Any:
    try:
        return load_config_from_env()
    except ConfigError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(2)


@app.command()
def serve(
    target: str = typer.Argument(..., help="Importable module whose public functions are exposed"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Module name the peer calls (default: last part of TARGET)"),
    host: str = typer.Option("127.0.0.1", "--host", help="Listen address"),
    port: int = typer.Option(9099, "--port", "-p", help="Listen port (0 picks a free one)"),
    stdio: bool = typer.Option(False, "--stdio", help="Talk to the parent process over stdin/stdout instead of TCP"),
) -> None:
    """Expose the functions of TARGET to a peer."""
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    try:
        module = importlib.import_module(target)
    except ImportError as exc:
        typer.echo(f"Cannot import {target!r}: {exc}", err=True)
        raise typer.Exit(1)
    functions = FunctionModule(name or target.rpartition(".")[2]).expose(module)
    if not len(functions):
        typer.echo(f"{target!r} has no public functions", err=True)
        raise typer.Exit(1)
    bridge = Bridge(_load_config()).register(functions)
    if stdio:
        bridge.run_stdio()
        return
    try:
        asyncio.run(_serve_tcp(bridge, host, port))
    except KeyboardInterrupt:
        typer.echo("stopped", err=True)


async def _serve_tcp(bridge: Bridge, host: str, port: int) -> None:
    server = await bridge.serve_tcp(host, port)
    for sock in server.sockets:
        address = sock.getsockname()
        typer.echo(f"listening on {address[0]}:{address[1]}", err=True)
    try:
        async with server:
            await server.serve_forever()
    finally:
        await bridge.aclose()


@app.command()
def call(
    address: str = typer.Argument(..., help="Peer address, HOST:PORT"),
    module: str = typer.Argument(..., help="Module name on the peer"),
    function: str = typer.Argument(..., help="Function name on the peer"),
    args: Optional[List[str]] = typer.Argument(None, help="Arguments: Python literals, :name for atoms"),
    timeout: float = typer.Option(30.0, "--timeout", "-t", help="Seconds to wait for the result"),
) -> None:
    """Call MODULE:FUNCTION on a listening peer and print the result."""
    host, port = split_address(address)
    values = [parse_arg(a) for a in args or []]
    config = _load_config()
    try:
        result = asyncio.run(_call_once(Bridge(config), host, port, module, function, values, timeout))
    except RemoteError as exc:
        typer.echo(f"Remote error: {exc.description}", err=True)
        raise typer.Exit(1)
    except (BridgeConnectionError, CallTimeoutError) as exc:
        typer.echo(f"Call failed: {exc}", err=True)
        raise typer.Exit(2)
    typer.echo(repr(result))


async def _call_once(
    bridge: Bridge,
    host: str,
    port: int,
    module: str,
    function: str,
    args: list[Any],
    timeout: float,
) -> Any:
    conn = await bridge.open_tcp(host, port)
    try:
        return await conn.call(module, function, args, timeout=timeout)
    finally:
        await bridge.aclose()


def main() -> None:
    """Entry point for the callbridge console command."""
    app()


if __name__ == "__main__":
    main()
