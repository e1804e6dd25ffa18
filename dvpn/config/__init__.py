"""Centralized configuration defaults for dvpn.

This package consolidates the tunnel constants and the environment-driven
settings object so that no module hard-codes paths, names or timeouts.
"""

from .defaults import (
    DEFAULT_CLIENT_MTU,
    DEFAULT_CONFIG_PATH,
    DEFAULT_DNS_LIST,
    DEFAULT_ENDPOINT_PORT,
    DEFAULT_INTERFACE_NAME,
    DEFAULT_KEEPALIVE_SECONDS,
)
from .settings import DEFAULT_SETTINGS, DvpnSettings, load_settings

__all__ = [
    "DEFAULT_CLIENT_MTU",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_DNS_LIST",
    "DEFAULT_ENDPOINT_PORT",
    "DEFAULT_INTERFACE_NAME",
    "DEFAULT_KEEPALIVE_SECONDS",
    "DEFAULT_SETTINGS",
    "DvpnSettings",
    "load_settings",
]
