"""隧道配置的生成、落盘与解析。Tunnel configuration synthesis, persistence and parsing.

The persisted file is the single source of truth for bring-up. It holds the
client private key, so it is always written owner-only (``0600``).
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dvpn.api.models import ProvisioningResult
from dvpn.config.settings import DEFAULT_SETTINGS, DvpnSettings
from dvpn.errors import (
    ConfigWriteError,
    MalformedConfigError,
    MalformedProvisioningData,
    ProvisioningIntegrityError,
)
from dvpn.logging_utils import get_logger
from dvpn.tunnel.keys import KeyPair, PresharedKey

LOGGER = get_logger(__name__)

CONFIG_FILE_MODE = 0o600


@dataclass(frozen=True)
class TunnelConfig:
    """隧道配置。Everything needed to bring the interface up."""

    interface_address: str
    dns_servers: Tuple[str, ...]
    peer_public_key: str
    preshared_key: str
    allowed_ips: Tuple[str, ...]
    endpoint: str
    keepalive_seconds: int
    private_key: str
    post_up: Optional[str] = None
    post_down: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"TunnelConfig(interface_address={self.interface_address!r}, "
            f"endpoint={self.endpoint!r}, peer_public_key={self.peer_public_key!r})"
        )


@dataclass(frozen=True)
class ManualTunnelFields:
    """The five fields the manual bring-up path needs."""

    private_key: str
    addresses: Tuple[str, ...]
    peer_public_key: str
    preshared_key: str
    endpoint: str
    allowed_ips: Tuple[str, ...] = ()
    keepalive_seconds: Optional[int] = None

    @property
    def address(self) -> str:
        return self.addresses[0]


def format_endpoint(endpoint: str, port: int) -> str:
    """Return ``host:port``, adding ``port`` unless one is already present."""

    value = endpoint.strip()
    if value.startswith("["):
        return value if "]:" in value else f"{value}:{port}"
    colons = value.count(":")
    if colons > 1:
        # Bare IPv6 literal.
        return f"[{value}]:{port}"
    if colons == 1:
        _, _, existing = value.rpartition(":")
        if not existing.isdigit():
            raise MalformedProvisioningData("endpoint")
        return value
    return f"{value}:{port}"


def render_interface(config: TunnelConfig) -> str:
    """根据配置生成 [Interface] 段落。"""
    lines = ["[Interface]"]
    lines.append(f"PrivateKey = {config.private_key}")
    lines.append(f"Address = {config.interface_address}")
    if config.dns_servers:
        lines.append("DNS = " + ", ".join(config.dns_servers))
    if config.post_up:
        lines.append(f"PostUp = {config.post_up}")
    if config.post_down:
        lines.append(f"PostDown = {config.post_down}")
    return "\n".join(lines)


def render_peer(config: TunnelConfig) -> str:
    """根据配置生成 [Peer] 段落。"""
    lines = ["[Peer]"]
    lines.append(f"PublicKey = {config.peer_public_key}")
    lines.append(f"PresharedKey = {config.preshared_key}")
    lines.append("AllowedIPs = " + ", ".join(config.allowed_ips))
    lines.append(f"Endpoint = {config.endpoint}")
    lines.append(f"PersistentKeepalive = {config.keepalive_seconds}")
    return "\n".join(lines)


def render_config(config: TunnelConfig) -> str:
    """组装完整的 WireGuard 配置内容。"""
    return "\n\n".join([render_interface(config), render_peer(config)]) + "\n"


def render_setconf(fields: ManualTunnelFields, keepalive_seconds: Optional[int] = None) -> str:
    """Render the protocol-only artifact accepted by ``wg setconf``.

    ``Address``, ``DNS`` and hook lines are ``wg-quick`` extensions and are
    left out.
    """

    allowed = fields.allowed_ips or tuple(DEFAULT_SETTINGS.allowed_ips)
    keepalive = keepalive_seconds if keepalive_seconds is not None else fields.keepalive_seconds
    lines = [
        "[Interface]",
        f"PrivateKey = {fields.private_key}",
        "",
        "[Peer]",
        f"PublicKey = {fields.peer_public_key}",
        f"PresharedKey = {fields.preshared_key}",
        f"Endpoint = {fields.endpoint}",
        "AllowedIPs = " + ", ".join(allowed),
    ]
    if keepalive:
        lines.append(f"PersistentKeepalive = {keepalive}")
    return "\n".join(lines) + "\n"


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_sections(text: str) -> List[Tuple[str, Dict[str, List[str]]]]:
    sections: List[Tuple[str, Dict[str, List[str]]]] = []
    current: Optional[Dict[str, List[str]]] = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("[") and line.endswith("]"):
            current = {}
            sections.append((line[1:-1].strip().lower(), current))
            continue
        if current is None or "=" not in line:
            continue
        # Base64 values end in "=", so only the first one separates the key.
        key, _, value = line.partition("=")
        current.setdefault(key.strip().lower(), []).append(value.strip())
    return sections


def parse_tunnel_config(text: str) -> ManualTunnelFields:
    """Parse a tunnel config into the fields needed by the manual path.

    Raises :class:`MalformedConfigError` naming the first missing field.
    """

    sections = _parse_sections(text)
    interface = next((body for name, body in sections if name == "interface"), None)
    peer = next((body for name, body in sections if name == "peer"), None)
    if interface is None:
        raise MalformedConfigError("[Interface]")
    if peer is None:
        raise MalformedConfigError("[Peer]")

    def required(body: Dict[str, List[str]], key: str, label: str, section: str) -> str:
        values = body.get(key.lower())
        if not values or not values[0]:
            raise MalformedConfigError(label, section)
        return values[0]

    private_key = required(interface, "privatekey", "PrivateKey", "Interface")
    address_values = interface.get("address") or []
    addresses: Tuple[str, ...] = tuple(a for value in address_values for a in _split_list(value))
    if not addresses:
        raise MalformedConfigError("Address", "Interface")
    peer_public_key = required(peer, "publickey", "PublicKey", "Peer")
    preshared_key = required(peer, "presharedkey", "PresharedKey", "Peer")
    endpoint = required(peer, "endpoint", "Endpoint", "Peer")

    allowed_ips: Tuple[str, ...] = tuple(
        ip for value in peer.get("allowedips", []) for ip in _split_list(value)
    )
    keepalive: Optional[int] = None
    keepalive_values = peer.get("persistentkeepalive")
    if keepalive_values:
        try:
            keepalive = int(keepalive_values[0])
        except ValueError:
            keepalive = None

    return ManualTunnelFields(
        private_key=private_key,
        addresses=addresses,
        peer_public_key=peer_public_key,
        preshared_key=preshared_key,
        endpoint=endpoint,
        allowed_ips=allowed_ips,
        keepalive_seconds=keepalive,
    )


def write_private_file(path: str | Path, content: str) -> Path:
    """Atomically write ``content`` to ``path`` with mode ``0600``.

    The data goes to an owner-only sibling first and is then renamed over
    the target, so the target never exists with wider permissions.
    """

    target = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    try:
        os.fchmod(fd, CONFIG_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    return target


@dataclass
class ConfigSynthesizer:
    """Turn provisioning data and local key material into a tunnel config."""

    settings: DvpnSettings = field(default_factory=lambda: DEFAULT_SETTINGS)

    def synthesize(
        self,
        provisioning: ProvisioningResult,
        keys: KeyPair,
        psk: PresharedKey,
    ) -> TunnelConfig:
        for name in ("client_address", "server_public_key", "endpoint"):
            if not getattr(provisioning, name):
                raise MalformedProvisioningData(name)
        if provisioning.private_key != keys.private_key:
            raise ProvisioningIntegrityError(
                "Provisioning private key does not match the key generated for this attempt"
            )

        return TunnelConfig(
            interface_address=provisioning.client_address,
            dns_servers=tuple(self.settings.dns_servers),
            peer_public_key=provisioning.server_public_key,
            preshared_key=provisioning.server_preshared_key or psk.value,
            allowed_ips=tuple(self.settings.allowed_ips),
            endpoint=format_endpoint(provisioning.endpoint, self.settings.endpoint_port),
            keepalive_seconds=self.settings.keepalive_seconds,
            private_key=keys.private_key,
            post_up=self.settings.post_up,
            post_down=self.settings.post_down,
        )

    def render(self, config: TunnelConfig) -> str:
        return render_config(config)

    def persist(self, config: TunnelConfig, path: Optional[str | Path] = None) -> Path:
        """Write ``config`` to ``path`` (default: settings config path)."""

        target = Path(path or self.settings.config_path)
        try:
            written = write_private_file(target, render_config(config))
        except OSError as exc:
            raise ConfigWriteError(f"Cannot write tunnel config to {target}: {exc}") from exc
        LOGGER.info("WireGuard configuration written", extra={"path": str(written)})
        return written
