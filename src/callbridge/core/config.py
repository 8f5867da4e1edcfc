"""Single config object: passed to Bridge(config=...); available via DI as BridgeConfig."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any

from callbridge.errors import ConfigError

DEFAULT_ENV_PREFIX = "CALLBRIDGE_"


@dataclass
class BridgeConfig:
    """
    Bridge settings. Both peers must agree on packet; the rest is local.
    call_timeout is the default per-call deadline in seconds (None waits forever).
    """

    packet: int = 4
    compressed: int = 0
    call_timeout: float | None = 30.0
    drain_timeout: float = 5.0
    max_frame_size: int = 64 * 1024 * 1024
    handler_threads: int = 16
    read_size: int = 64 * 1024

    def __post_init__(self) -> None:
        if self.packet not in (1, 2, 4):
            raise ConfigError(f"packet must be 1, 2 or 4, got {self.packet!r}")
        if not 0 <= self.compressed <= 9:
            raise ConfigError(f"compressed must be between 0 and 9, got {self.compressed!r}")
        if self.call_timeout is not None and self.call_timeout <= 0:
            raise ConfigError("call_timeout must be positive or None")
        if self.drain_timeout < 0:
            raise ConfigError("drain_timeout must not be negative")
        if self.max_frame_size <= 0:
            raise ConfigError("max_frame_size must be positive")
        if self.handler_threads < 1:
            raise ConfigError("handler_threads must be at least 1")
        if self.read_size < 1:
            raise ConfigError("read_size must be at least 1")

    @classmethod
    def load_from_env(cls, prefix: str = DEFAULT_ENV_PREFIX, **overrides: Any) -> BridgeConfig:
        """
        Load from os.environ with prefix (CALLBRIDGE_CALL_TIMEOUT=5 -> call_timeout=5.0).
        Keyword overrides win over the environment. Unknown variables are ignored.
        """
        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, raw in os.environ.items():
            if not key.startswith(prefix):
                continue
            name = key[len(prefix):].lower()
            if name in known:
                values[name] = _coerce(name, known[name].type, raw)
        values.update(overrides)
        return cls(**values)


def _coerce(name: str, annotation: Any, raw: str) -> Any:
    text = raw.strip()
    kind = str(annotation)
    if "None" in kind and text.lower() in ("", "none", "null"):
        return None
    try:
        if kind.startswith("float"):
            return float(text)
        if kind.startswith("int"):
            return int(text)
    except ValueError as exc:
        raise ConfigError(f"{name}: cannot parse {raw!r}") from exc
    return text


def load_config_from_env(prefix: str = DEFAULT_ENV_PREFIX, **overrides: Any) -> BridgeConfig:
    """Shortcut for BridgeConfig.load_from_env."""
    return BridgeConfig.load_from_env(prefix, **overrides)
