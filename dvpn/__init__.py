"""dvpn: 去中心化 VPN 隧道客户端。Decentralized VPN tunnel client.

The package provisions a WireGuard client against the gateway API and
manages exactly one local tunnel interface:

1. :mod:`dvpn.tunnel` generates keys, writes the tunnel config and brings
   the interface up (``wg-quick`` first, manual ``ip``/``wg`` fallback).
2. :mod:`dvpn.api` talks to the gateway (organisations, nodes, clients).
3. :mod:`dvpn.orchestrator` sequences both into ``connect``/``disconnect``.
"""

from __future__ import annotations

from .orchestrator import ConnectionOrchestrator

__all__ = ["ConnectionOrchestrator"]

__version__ = "0.1.0"
