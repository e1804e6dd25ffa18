"""Gateway API client and data models."""

from __future__ import annotations

from .client import GatewayClient
from .models import Node, NodeStatus, ProvisioningResult

__all__ = ["GatewayClient", "Node", "NodeStatus", "ProvisioningResult"]
