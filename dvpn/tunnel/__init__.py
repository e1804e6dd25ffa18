"""Host-side tunnel lifecycle: keys, config file, interface."""

from __future__ import annotations

from .config_file import ConfigSynthesizer, TunnelConfig, parse_tunnel_config
from .executor import CommandExecutor, CommandResult, SubprocessExecutor
from .interface import InterfaceHandle, InterfaceManager, InterfaceState
from .keys import KeyMaterialGenerator, KeyPair, PresharedKey

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "ConfigSynthesizer",
    "InterfaceHandle",
    "InterfaceManager",
    "InterfaceState",
    "KeyMaterialGenerator",
    "KeyPair",
    "PresharedKey",
    "SubprocessExecutor",
    "TunnelConfig",
    "parse_tunnel_config",
]
