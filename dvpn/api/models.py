"""网关数据模型。Data shapes exchanged with the gateway API."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from dvpn.errors import MalformedProvisioningData, ProvisioningFailure


class NodeStatus(str, Enum):
    """节点状态枚举。Node status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "NodeStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass
class Node:
    """节点信息。Node information from the directory."""

    id: str
    status: NodeStatus = NodeStatus.UNKNOWN
    name: Optional[str] = None
    region: Optional[str] = None
    host: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == NodeStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        """从字典创建。Create from dictionary."""
        known = {"id", "status", "name", "region", "host"}
        return cls(
            id=str(data.get("id", "")),
            status=NodeStatus.parse(data.get("status")),
            name=data.get("name"),
            region=data.get("region"),
            host=data.get("host"),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass(frozen=True)
class ProvisioningResult:
    """Server-assigned tunnel data plus the locally generated private key."""

    client_address: str
    server_public_key: str
    server_preshared_key: str
    endpoint: str
    private_key: str

    def __repr__(self) -> str:
        return (
            f"ProvisioningResult(client_address={self.client_address!r}, "
            f"server_public_key={self.server_public_key!r}, endpoint={self.endpoint!r})"
        )

    @classmethod
    def from_payload(cls, data: Any, private_key: str) -> ProvisioningResult:
        """Decode the gateway client-creation response.

        Expected shape::

            {"payload": {"client": {"Address": ["10.0.0.2/32"], "PresharedKey": "..."},
                         "endpoint": "host", "serverPublicKey": "..."}}

        Missing required fields raise :class:`MalformedProvisioningData`.
        """

        if not isinstance(data, dict) or not data:
            raise ProvisioningFailure("Empty provisioning response")
        payload = data.get("payload")
        if not isinstance(payload, dict):
            raise MalformedProvisioningData("payload")

        client = payload.get("client") or {}
        if not isinstance(client, dict):
            raise MalformedProvisioningData("payload.client")

        addresses = client.get("Address") or client.get("address") or []
        if isinstance(addresses, str):
            addresses = [addresses]
        address = str(addresses[0]).strip() if addresses else ""

        return cls(
            client_address=address,
            server_public_key=str(payload.get("serverPublicKey") or "").strip(),
            server_preshared_key=str(client.get("PresharedKey") or "").strip(),
            endpoint=str(payload.get("endpoint") or "").strip(),
            private_key=private_key,
        )
