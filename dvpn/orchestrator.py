"""连接编排器。Connection orchestrator sequencing one tunnel lifecycle.

``connect`` runs: tool check -> active node lookup -> node validation ->
key generation and client provisioning -> config synthesis -> interface
bring-up. Any failure stops the sequence and is reported as ``False`` with
the reason kept in :attr:`ConnectionOrchestrator.last_error`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from dvpn.api.models import Node, ProvisioningResult
from dvpn.config.settings import DvpnSettings, load_settings
from dvpn.errors import (
    DvpnError,
    GatewayError,
    KeyGenFailure,
    NoActiveNodes,
    ProvisioningFailure,
    ToolInvocationError,
    ToolNotFound,
    UnknownOrInactiveNode,
)
from dvpn.logging_utils import get_logger
from dvpn.tunnel.config_file import ConfigSynthesizer
from dvpn.tunnel.executor import CommandExecutor, SubprocessExecutor
from dvpn.tunnel.interface import InterfaceHandle, InterfaceManager
from dvpn.tunnel.keys import WG_TOOL, KeyMaterialGenerator

LOGGER = get_logger(__name__)


class NodeDirectory(Protocol):
    def list_nodes(self, token: str) -> List[Node]:
        ...


class ClientProvisioner(Protocol):
    def provision_client(
        self,
        token: str,
        node_id: str,
        public_key: str,
        preshared_key: str,
    ) -> Dict[str, Any]:
        ...


class ConnectionOrchestrator:
    """Drive ``connect``/``disconnect`` for the managed interface."""

    def __init__(
        self,
        directory: NodeDirectory,
        provisioner: Optional[ClientProvisioner] = None,
        executor: Optional[CommandExecutor] = None,
        settings: Optional[DvpnSettings] = None,
        interface_manager: Optional[InterfaceManager] = None,
        public_ip_lookup: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.settings = settings or load_settings()
        self.executor = executor or SubprocessExecutor(default_timeout=self.settings.command_timeout)
        self.directory = directory
        self.provisioner = provisioner or directory  # the gateway client plays both roles
        self.handle = InterfaceHandle.from_settings(self.settings)
        self.keys = KeyMaterialGenerator(self.executor, timeout=self.settings.command_timeout)
        self.synthesizer = ConfigSynthesizer(self.settings)
        self.interface = interface_manager or InterfaceManager(
            self.executor,
            handle=self.handle,
            settings=self.settings,
        )
        if interface_manager is not None:
            self.handle = interface_manager.handle
        self.public_ip_lookup = public_ip_lookup
        self.last_error: Optional[DvpnError] = None

    def connect(self, auth_token: str, node_id: str, config_path: Optional[str | Path] = None) -> bool:
        """连接到指定节点。Connect the tunnel to ``node_id``."""

        self.last_error = None
        LOGGER.info("Starting DVPN connection process", extra={"node_id": node_id})
        try:
            self._connect(auth_token, node_id, config_path)
        except DvpnError as exc:
            self.last_error = exc
            LOGGER.error("DVPN connection failed: %s", exc, extra={"reason": type(exc).__name__})
            return False

        LOGGER.info("Successfully connected to DVPN", extra={"node_id": node_id})
        self._report_public_ip()
        return True

    def _ensure_tool(self) -> None:
        location = self.executor.which(WG_TOOL)
        if not location:
            raise ToolNotFound(WG_TOOL)
        LOGGER.info("WireGuard found", extra={"location": location})

    def _active_nodes(self, auth_token: str) -> List[Node]:
        try:
            nodes = self.directory.list_nodes(auth_token)
        except GatewayError as exc:
            raise NoActiveNodes(f"Node directory unavailable: {exc}") from exc
        active = [node for node in nodes if node.is_active]
        if not active:
            raise NoActiveNodes("No active nodes available")
        return active

    def _provision(self, auth_token: str, node_id: str):
        try:
            key_pair = self.keys.generate_key_pair()
            psk = self.keys.generate_preshared_key()
        except ToolInvocationError as exc:
            raise KeyGenFailure(f"Key generation failed: {exc}") from exc

        try:
            payload = self.provisioner.provision_client(auth_token, node_id, key_pair.public_key, psk.value)
        except GatewayError as exc:
            raise ProvisioningFailure(str(exc)) from exc
        if not payload:
            raise ProvisioningFailure("Empty provisioning response")
        provisioning = ProvisioningResult.from_payload(payload, private_key=key_pair.private_key)
        LOGGER.info("DVPN client created", extra={"provisioning": repr(provisioning)})
        return provisioning, key_pair, psk

    def _connect(self, auth_token: str, node_id: str, config_path: Optional[str | Path]) -> None:
        self._ensure_tool()

        active = self._active_nodes(auth_token)
        if not any(node.id == node_id for node in active):
            raise UnknownOrInactiveNode(node_id)
        LOGGER.info("Connecting to specified node", extra={"node_id": node_id})

        provisioning, key_pair, psk = self._provision(auth_token, node_id)

        config = self.synthesizer.synthesize(provisioning, key_pair, psk)
        path = Path(config_path or self.handle.config_path)

        if not self.interface.bring_up(path, write_config=lambda target: self.synthesizer.persist(config, target)):
            raise self.interface.last_error or DvpnError("Interface bring-up failed")

    def _report_public_ip(self) -> None:
        if self.public_ip_lookup is None:
            return
        ip = self.public_ip_lookup()
        if ip:
            LOGGER.info("Your new public IP address is: %s", ip)

    def disconnect(self, config_path: Optional[str | Path] = None) -> bool:
        """断开连接。Tear the tunnel down; always ``True``."""

        LOGGER.info("Disconnecting from WireGuard")
        self.interface.tear_down(config_path)
        LOGGER.info("WireGuard disconnected")
        return True
