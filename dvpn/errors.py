"""隧道生命周期的异常体系。Exception taxonomy for the tunnel lifecycle."""

from __future__ import annotations

from typing import Optional, Sequence


class DvpnError(RuntimeError):
    """Base class for every error raised by dvpn."""


class ToolNotFound(DvpnError):
    """Raised when a required host tool (``wg``) is not installed."""

    def __init__(self, tool: str):
        super().__init__(f"Required tool not found on PATH: {tool}")
        self.tool = tool


class ToolInvocationError(DvpnError):
    """Raised when an external command cannot start or exits non-zero."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        exit_code: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = tuple(command)
        self.exit_code = exit_code
        self.stderr = stderr


class CommandTimeout(ToolInvocationError):
    """Raised when an external command exceeds its time budget."""


class KeyGenFailure(DvpnError):
    """Key material could not be produced for the current attempt."""


class KeyReadError(KeyGenFailure):
    """Generated key output is missing, empty or malformed."""


class NoActiveNodes(DvpnError):
    """The node directory returned no active node."""


class UnknownOrInactiveNode(DvpnError):
    """The requested node is not part of the active node set."""

    def __init__(self, node_id: str):
        super().__init__(f"Node {node_id!r} is not in the list of active nodes")
        self.node_id = node_id


class ProvisioningFailure(DvpnError):
    """Client provisioning failed or returned an unusable response."""


class MalformedProvisioningData(ProvisioningFailure):
    """A required provisioning field is absent."""

    def __init__(self, field: str):
        super().__init__(f"Provisioning data is missing required field: {field}")
        self.field = field


class ProvisioningIntegrityError(ProvisioningFailure):
    """The provisioning private key does not match the generated one."""


class ConfigWriteError(DvpnError):
    """The tunnel configuration could not be written."""


ConfigWriteFailure = ConfigWriteError


class MalformedConfigError(DvpnError):
    """A tunnel configuration file lacks a required field."""

    def __init__(self, field: str, section: Optional[str] = None):
        where = f" in [{section}]" if section else ""
        super().__init__(f"Tunnel config is missing required field {field}{where}")
        self.field = field
        self.section = section


class PrimaryBringupFailure(DvpnError):
    """``wg-quick up`` failed; the manual path will be tried."""


class FallbackBringupFailure(DvpnError):
    """A manual bring-up step failed and the interface was rolled back."""

    def __init__(self, step: str, detail: str = ""):
        message = f"Manual bring-up failed at step {step!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.step = step
        self.detail = detail


FallbackStepFailure = FallbackBringupFailure


class ConnectivityWarning(DvpnError):
    """Non-fatal post bring-up problem (DNS fix or probe)."""


class DisconnectFailure(DvpnError):
    """A teardown step failed. Never surfaced to callers."""


class LockTimeoutError(DvpnError):
    """The interface lock could not be acquired in time."""


class GatewayError(DvpnError):
    """Raised when a gateway API call fails."""
