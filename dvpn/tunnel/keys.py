"""WireGuard 密钥生成。Key material generation through the ``wg`` tool."""

from __future__ import annotations

import base64
import binascii
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dvpn.errors import KeyReadError, ToolInvocationError
from dvpn.logging_utils import get_logger
from dvpn.tunnel.executor import CommandExecutor, CommandResult

LOGGER = get_logger(__name__)

WG_TOOL = "wg"
KEY_BYTES = 32


@dataclass(frozen=True)
class KeyPair:
    """客户端密钥对。Client key pair, fresh for every connection attempt."""

    public_key: str
    private_key: str

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key!r}, private_key='***')"


@dataclass(frozen=True)
class PresharedKey:
    """预共享密钥。Preshared key generated alongside the key pair."""

    value: str

    def __repr__(self) -> str:
        return "PresharedKey(value='***')"


def _validate_key(value: str, label: str) -> str:
    value = value.strip()
    if not value:
        raise KeyReadError(f"{label} output is empty")
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyReadError(f"{label} output is not valid base64") from exc
    if len(raw) != KEY_BYTES:
        raise KeyReadError(f"{label} must decode to {KEY_BYTES} bytes, got {len(raw)}")
    return value


class KeyMaterialGenerator:
    """Generate key pairs and preshared keys with ``wg genkey``/``wg genpsk``.

    Tool output is staged inside a process-unique temporary directory that
    only the owner can read. The directory is removed on every exit path,
    including failures. There are no retries.
    """

    def __init__(self, executor: CommandExecutor, timeout: Optional[float] = None):
        self.executor = executor
        self.timeout = timeout

    def _wg(self, subcommand: str, input_text: Optional[str] = None) -> CommandResult:
        result = self.executor.run(WG_TOOL, [subcommand], timeout=self.timeout, input_text=input_text)
        if not result.ok:
            raise ToolInvocationError(
                f"wg {subcommand} failed: {result.describe()}",
                command=result.command or (WG_TOOL, subcommand),
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    @staticmethod
    def _stage(path: Path, content: str) -> None:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)

    @staticmethod
    def _read_back(path: Path, label: str) -> str:
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise KeyReadError(f"{label} output file is missing") from exc
        return _validate_key(content, label)

    def generate_key_pair(self) -> KeyPair:
        """生成密钥对。Generate a fresh key pair."""

        LOGGER.info("Generating WireGuard key pair")
        with tempfile.TemporaryDirectory(prefix=f"dvpn-keys-{os.getpid()}-") as tmp:
            workdir = Path(tmp)
            private_path = workdir / "private.key"
            public_path = workdir / "public.key"

            self._stage(private_path, self._wg("genkey").stdout)
            private_key = self._read_back(private_path, "private key")

            self._stage(public_path, self._wg("pubkey", input_text=private_key + "\n").stdout)
            public_key = self._read_back(public_path, "public key")

        LOGGER.info("WireGuard key pair generated", extra={"public_key": public_key})
        return KeyPair(public_key=public_key, private_key=private_key)

    def generate_preshared_key(self) -> PresharedKey:
        """生成预共享密钥。Generate a fresh preshared key."""

        LOGGER.info("Generating WireGuard preshared key")
        with tempfile.TemporaryDirectory(prefix=f"dvpn-psk-{os.getpid()}-") as tmp:
            psk_path = Path(tmp) / "preshared.key"
            self._stage(psk_path, self._wg("genpsk").stdout)
            value = self._read_back(psk_path, "preshared key")

        LOGGER.info("WireGuard preshared key generated")
        return PresharedKey(value=value)
