"""
Peer process: serves the fixture functions over stdin/stdout.
Started by driver.py; can also be run by any program speaking the bridge protocol.
"""
from callbridge import Bridge, FunctionModule, load_config_from_env

import functions

utils = FunctionModule("test_utils").function("switch", functions.switch).function("identity", functions.identity)
test = (
    FunctionModule("Test")
    .function("add", functions.add)
    .function("len", functions.length)
    .function("print_string", functions.print_string)
)

bridge = Bridge(load_config_from_env())
bridge.register(utils).register(test)

if __name__ == "__main__":
    bridge.run_stdio()
