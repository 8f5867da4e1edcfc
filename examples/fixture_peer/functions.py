"""Functions the driver calls across the bridge. switch() calls back into the driver."""
from callbridge import current_connection


def switch(n):
    result = 0
    for i in range(n):
        result = current_connection().call_blocking("bridge_tests", "test_callback", [result, i])
    return n


def identity(v):
    return v


def add(a, b):
    return a + b


def length(s):
    return len(s)


def print_string(s):
    # s is a list of codepoints
    print("".join(map(chr, s)))
