"""连接编排测试。Connection orchestrator tests."""

from __future__ import annotations

import stat
import threading
from pathlib import Path

import pytest

from dvpn.api.models import Node, NodeStatus
from dvpn.errors import (
    FallbackBringupFailure,
    GatewayError,
    KeyGenFailure,
    LockTimeoutError,
    MalformedProvisioningData,
    NoActiveNodes,
    ProvisioningFailure,
    ToolNotFound,
    UnknownOrInactiveNode,
)
from dvpn.orchestrator import ConnectionOrchestrator
from dvpn.tunnel.interface import InterfaceState
from dvpn.tunnel.locking import InterfaceLock
from tests.conftest import FakeExecutor, make_key


class FakeGateway:
    """网关替身。Gateway double acting as directory and provisioner."""

    def __init__(self, nodes, response=None, error=None):
        self.nodes = nodes
        self.response = response
        self.error = error
        self.provision_calls = []

    def list_nodes(self, token):
        if isinstance(self.nodes, Exception):
            raise self.nodes
        return list(self.nodes)

    def provision_client(self, token, node_id, public_key, preshared_key):
        self.provision_calls.append((token, node_id, public_key, preshared_key))
        if self.error:
            raise self.error
        if self.response is not None:
            return self.response
        return {
            "status": 200,
            "payload": {
                "client": {"Address": ["10.0.0.2/32"], "PresharedKey": make_key("server-psk")},
                "endpoint": "vpn.example.com",
                "serverPublicKey": make_key("server-public"),
            },
        }


def _orchestrator(gateway, executor, settings, **kwargs) -> ConnectionOrchestrator:
    orchestrator = ConnectionOrchestrator(gateway, executor=executor, settings=settings, **kwargs)
    orchestrator.interface.sleep = lambda _: None
    return orchestrator


class TestConnect:
    """连接流程测试。Connect flow tests."""

    def test_active_node_proceeds_through_provisioning(self, executor, settings):
        gateway = FakeGateway([Node(id="A", status=NodeStatus.ACTIVE)])
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "A") is True
        assert orchestrator.last_error is None
        assert len(gateway.provision_calls) == 1
        assert orchestrator.handle.state == InterfaceState.UP

        config = Path(settings.config_path)
        assert stat.S_IMODE(config.stat().st_mode) == 0o600
        assert "Address = 10.0.0.2/32" in config.read_text(encoding="utf-8")
        assert ("wg-quick", "up", settings.config_path) in executor.calls

    def test_inactive_node_fails_before_provisioning(self, executor, settings):
        gateway = FakeGateway([Node(id="A", status=NodeStatus.INACTIVE), Node(id="B", status=NodeStatus.ACTIVE)])
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "A") is False
        assert isinstance(orchestrator.last_error, UnknownOrInactiveNode)
        assert gateway.provision_calls == []
        assert executor.calls == []

    @pytest.mark.parametrize("node_id", ["missing", "node-2", ""])
    def test_node_outside_active_set(self, executor, settings, sample_nodes, node_id):
        gateway = FakeGateway(sample_nodes)
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", node_id) is False
        assert isinstance(orchestrator.last_error, UnknownOrInactiveNode)
        assert gateway.provision_calls == []

    def test_all_inactive_means_no_active_nodes(self, executor, settings):
        gateway = FakeGateway([Node(id="A", status=NodeStatus.INACTIVE)])
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "A") is False
        assert isinstance(orchestrator.last_error, NoActiveNodes)

    def test_directory_error_means_no_active_nodes(self, executor, settings):
        gateway = FakeGateway(GatewayError("down"))
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "A") is False
        assert isinstance(orchestrator.last_error, NoActiveNodes)

    def test_missing_tool_fails_fast(self, settings, sample_nodes):
        executor = FakeExecutor(tools=("ip",))
        gateway = FakeGateway(sample_nodes)
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "node-1") is False
        assert isinstance(orchestrator.last_error, ToolNotFound)
        assert executor.calls == []

    def test_key_generation_failure_aborts(self, executor, settings, sample_nodes):
        executor.fail("wg", "genpsk")
        gateway = FakeGateway(sample_nodes)
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "node-1") is False
        assert isinstance(orchestrator.last_error, KeyGenFailure)
        assert gateway.provision_calls == []
        assert not Path(settings.config_path).exists()

    def test_provisioning_error(self, executor, settings, sample_nodes):
        gateway = FakeGateway(sample_nodes, error=GatewayError("Empty response received from server"))
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "node-1") is False
        assert isinstance(orchestrator.last_error, ProvisioningFailure)
        assert executor.commands("wg-quick") == []

    def test_empty_provisioning_response(self, executor, settings, sample_nodes):
        gateway = FakeGateway(sample_nodes, response={})
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "node-1") is False
        assert isinstance(orchestrator.last_error, ProvisioningFailure)

    def test_malformed_provisioning_response(self, executor, settings, sample_nodes):
        gateway = FakeGateway(sample_nodes, response={"payload": {"client": {}, "endpoint": "vpn.example.com"}})
        orchestrator = _orchestrator(gateway, executor, settings)

        assert orchestrator.connect("token", "node-1") is False
        assert isinstance(orchestrator.last_error, MalformedProvisioningData)

    def test_fresh_keys_per_attempt(self, executor, settings, sample_nodes):
        gateway = FakeGateway(sample_nodes)
        orchestrator = _orchestrator(gateway, executor, settings)

        orchestrator.connect("token", "node-1")
        orchestrator.connect("token", "node-3")

        first, second = gateway.provision_calls
        assert first[2] != second[2]
        assert first[3] != second[3]

    def test_bring_up_failure_is_reported(self, executor, settings, sample_nodes):
        executor.fail("wg-quick", "up")
        executor.fail("ip", "link", "add")
        orchestrator = _orchestrator(FakeGateway(sample_nodes), executor, settings)

        assert orchestrator.connect("token", "node-1") is False
        assert isinstance(orchestrator.last_error, FallbackBringupFailure)
        assert orchestrator.handle.state == InterfaceState.DOWN

    def test_config_not_written_while_interface_is_locked(self, executor, settings, sample_nodes):
        orchestrator = _orchestrator(FakeGateway(sample_nodes), executor, settings)

        results = []
        with InterfaceLock(settings.interface_name, lock_dir=settings.lock_dir, timeout=1):
            worker = threading.Thread(target=lambda: results.append(orchestrator.connect("token", "node-1")))
            worker.start()
            worker.join(timeout=10)

        assert results == [False]
        assert isinstance(orchestrator.last_error, LockTimeoutError)
        assert not Path(settings.config_path).exists()
        assert executor.commands("wg-quick") == []

    def test_public_ip_lookup_after_success(self, executor, settings, sample_nodes):
        lookups = []
        orchestrator = _orchestrator(
            FakeGateway(sample_nodes),
            executor,
            settings,
            public_ip_lookup=lambda: lookups.append(1) or "203.0.113.9",
        )
        assert orchestrator.connect("token", "node-1") is True
        assert lookups == [1]

    def test_config_path_override(self, executor, settings, sample_nodes, temp_dir):
        override = temp_dir / "custom" / "dvpn-test.conf"
        override.parent.mkdir()
        orchestrator = _orchestrator(FakeGateway(sample_nodes), executor, settings)

        assert orchestrator.connect("token", "node-1", config_path=override) is True
        assert override.exists()
        assert ("wg-quick", "up", str(override)) in executor.calls


class TestDisconnect:
    """断开测试。Disconnect tests."""

    def test_disconnect_when_nothing_connected(self, executor, settings, sample_nodes):
        executor.fail("wg-quick", "down")
        executor.fail("ip", "link", "delete")
        orchestrator = _orchestrator(FakeGateway(sample_nodes), executor, settings)

        assert orchestrator.disconnect() is True
        assert orchestrator.disconnect() is True

    def test_disconnect_after_connect(self, executor, settings, sample_nodes):
        orchestrator = _orchestrator(FakeGateway(sample_nodes), executor, settings)
        orchestrator.connect("token", "node-1")

        assert orchestrator.disconnect(settings.config_path) is True
        assert executor.calls[-2] == ("wg-quick", "down", settings.config_path)
        assert executor.calls[-1] == ("ip", "link", "delete", "dev", "dvpn-test")
        assert orchestrator.handle.state == InterfaceState.DOWN
