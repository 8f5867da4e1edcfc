from callbridge.core.app import Bridge
from callbridge.core.container import Container
from callbridge.core.module import Module
from callbridge.core.config import BridgeConfig, load_config_from_env

__all__ = [
    "Bridge",
    "Container",
    "Module",
    "BridgeConfig",
    "load_config_from_env",
]
