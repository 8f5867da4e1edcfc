"""
Driver: spawns peer.py, exercises identity/add/len/switch and serves the switch callback.
Run from this directory: python driver.py
"""
import asyncio
import logging
import os
import sys

from callbridge import Bridge, FunctionModule, RemoteError

HERE = os.path.dirname(os.path.abspath(__file__))

callbacks = []


def test_callback(result, i):
    callbacks.append((result, i))
    return result + i + 1


async def main() -> None:
    bridge = Bridge().register(FunctionModule("bridge_tests").function("test_callback", test_callback))
    conn = await bridge.spawn(sys.executable, os.path.join(HERE, "peer.py"), cwd=HERE)
    try:
        print("identity(42) =", await conn.call("test_utils", "identity", [42]))
        print("add(2, 3) =", await conn.call("Test", "add", [2, 3]))
        print("len('hello') =", await conn.call("Test", "len", [[ord(c) for c in "hello"]]))
        await conn.call("Test", "print_string", [[ord(c) for c in "hello, bridge"]])
        print("switch(3) =", await conn.call("test_utils", "switch", [3]))
        print("callbacks:", callbacks)
        try:
            await conn.call("test_utils", "missing", [])
        except RemoteError as exc:
            print("missing:", exc.description)
    finally:
        await bridge.aclose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    asyncio.run(main())
