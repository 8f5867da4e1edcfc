"""Fixture functions served to the test driver; switch() calls back once per iteration."""
from callbridge import current_connection

CALLBACK_MODULE = "bridge_tests"


def switch(n):
    result = 0
    for i in range(n):
        result = current_connection().call_blocking(CALLBACK_MODULE, "test_callback", [result, i])
    return n


def identity(v):
    return v


def add(a, b):
    return a + b


def length(s):
    return len(s)


def print_string(s):
    print("".join(map(chr, s)))
