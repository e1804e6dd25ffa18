"""pytest 配置和共享 fixtures。pytest configuration and shared fixtures."""

from __future__ import annotations

import base64
import hashlib
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Generator, Optional, Sequence

import pytest

from dvpn.api.models import Node, NodeStatus, ProvisioningResult
from dvpn.config.settings import DvpnSettings
from dvpn.errors import ToolInvocationError
from dvpn.tunnel.executor import CommandResult
from dvpn.tunnel.keys import KeyPair, PresharedKey


def make_key(seed: str) -> str:
    """Deterministic 32-byte base64 key for tests."""
    return base64.b64encode(hashlib.sha256(seed.encode()).digest()).decode()


class FakeExecutor:
    """命令执行替身。Command executor double.

    Records every call and answers ``wg genkey/pubkey/genpsk`` with valid
    keys. ``fail(...)`` makes any command whose argv starts with the given
    prefix exit non-zero; ``raise_on(...)`` makes it raise instead.
    """

    def __init__(self, tools: Sequence[str] = ("wg", "wg-quick", "ip", "ping", "tee")):
        self.tools = set(tools)
        self.calls: list[tuple[str, ...]] = []
        self.inputs: list[Optional[str]] = []
        self.timeouts: list[Optional[float]] = []
        self._failures: list[tuple[tuple[str, ...], CommandResult]] = []
        self._raises: list[tuple[tuple[str, ...], Exception]] = []
        self._outputs: dict[tuple[str, ...], str] = {}
        self._counter = 0

    def fail(self, *prefix: str, exit_code: int = 1, stderr: str = "boom") -> None:
        self._failures.append((prefix, CommandResult(exit_code=exit_code, stderr=stderr, command=prefix)))

    def raise_on(self, *prefix: str, exc: Optional[Exception] = None) -> None:
        self._raises.append((prefix, exc or ToolInvocationError("cannot start", command=prefix)))

    def output(self, *argv: str, stdout: str) -> None:
        self._outputs[argv] = stdout

    def run(self, command, args=(), timeout=None, input_text=None):
        argv = (command, *args)
        self.calls.append(argv)
        self.inputs.append(input_text)
        self.timeouts.append(timeout)
        for prefix, exc in self._raises:
            if argv[: len(prefix)] == prefix:
                raise exc
        for prefix, result in self._failures:
            if argv[: len(prefix)] == prefix:
                return CommandResult(result.exit_code, result.stdout, result.stderr, argv)
        if argv in self._outputs:
            return CommandResult(0, self._outputs[argv], "", argv)
        if argv == ("wg", "genkey") or argv == ("wg", "genpsk"):
            self._counter += 1
            return CommandResult(0, make_key(f"{argv[1]}-{self._counter}") + "\n", "", argv)
        if argv == ("wg", "pubkey"):
            return CommandResult(0, make_key("pub:" + (input_text or "").strip()) + "\n", "", argv)
        return CommandResult(0, "", "", argv)

    def which(self, tool):
        return f"/usr/bin/{tool}" if tool in self.tools else None

    def commands(self, *prefix: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[: len(prefix)] == prefix]

    def index_of(self, *prefix: str) -> int:
        for index, call in enumerate(self.calls):
            if call[: len(prefix)] == prefix:
                return index
        return -1


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """临时目录 fixture。Temporary directory fixture."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir: Path) -> DvpnSettings:
    """测试配置：不使用 sudo，不等待。Test settings without sudo or delays."""
    return replace(
        DvpnSettings(),
        interface_name="dvpn-test",
        config_path=str(temp_dir / "dvpn-test.conf"),
        lock_dir=str(temp_dir),
        use_sudo=False,
        settle_seconds=0.0,
        command_timeout=5.0,
        lock_timeout=1.0,
    )


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def key_pair() -> KeyPair:
    return KeyPair(public_key=make_key("client-public"), private_key=make_key("client-private"))


@pytest.fixture
def psk() -> PresharedKey:
    return PresharedKey(value=make_key("client-psk"))


@pytest.fixture
def provisioning(key_pair: KeyPair) -> ProvisioningResult:
    return ProvisioningResult(
        client_address="10.0.0.2/32",
        server_public_key=make_key("server-public"),
        server_preshared_key=make_key("server-psk"),
        endpoint="vpn.example.com",
        private_key=key_pair.private_key,
    )


@pytest.fixture
def sample_nodes() -> list[Node]:
    """示例节点列表 fixture。Sample nodes fixture."""
    return [
        Node(id="node-1", status=NodeStatus.ACTIVE, name="tokyo", region="JP"),
        Node(id="node-2", status=NodeStatus.INACTIVE, name="paris", region="FR"),
        Node(id="node-3", status=NodeStatus.ACTIVE, name="oregon", region="US"),
    ]
