"""WireGuard 接口的启动与拆除。Bring-up and teardown of the managed tunnel interface.

Bring-up always starts from a forced teardown, then tries ``wg-quick up``.
If that fails, the interface is built by hand with ``ip``/``wg`` as a
linear list of steps; the first failing step stops the sequence, deletes
the half-built device and removes the temporary ``wg setconf`` artifact.
"""

from __future__ import annotations

import os
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from dvpn.config.settings import DEFAULT_SETTINGS, DvpnSettings
from dvpn.errors import (
    CommandTimeout,
    ConnectivityWarning,
    DisconnectFailure,
    DvpnError,
    FallbackBringupFailure,
    LockTimeoutError,
    MalformedConfigError,
    PrimaryBringupFailure,
    ToolInvocationError,
)
from dvpn.logging_utils import get_logger
from dvpn.tunnel.config_file import CONFIG_FILE_MODE, ManualTunnelFields, parse_tunnel_config, render_setconf
from dvpn.tunnel.executor import CommandExecutor, CommandResult, privileged
from dvpn.tunnel.locking import InterfaceLock

LOGGER = get_logger(__name__)

STEP_CREATE_DEVICE = "create_device"
STEP_APPLY_CONFIG = "apply_config"
STEP_ASSIGN_ADDRESS = "assign_address"
STEP_LINK_UP = "link_up"
STEP_DEFAULT_ROUTE = "default_route"

PATH_PRIMARY = "primary"
PATH_FALLBACK = "fallback"


class InterfaceState(str, Enum):
    """接口状态。Lifecycle state of the managed interface."""

    DOWN = "down"
    BRINGING_UP = "bringing_up"
    UP = "up"
    TEARING_DOWN = "tearing_down"


@dataclass
class InterfaceHandle:
    """The one named interface this process manages, and its config file."""

    name: str
    config_path: str
    state: InterfaceState = InterfaceState.DOWN

    @classmethod
    def from_settings(cls, settings: DvpnSettings) -> "InterfaceHandle":
        return cls(name=settings.interface_name, config_path=settings.config_path)


@dataclass(frozen=True)
class ManualStep:
    """One command of the manual bring-up sequence."""

    name: str
    command: str
    args: Tuple[str, ...]


@dataclass
class InterfaceManager:
    """Own bring-up and teardown of one tunnel interface.

    ``bring_up`` and ``tear_down`` never raise :class:`DvpnError`; the last
    failure is kept in :attr:`last_error` and non-fatal problems in
    :attr:`warnings`.
    """

    executor: CommandExecutor
    handle: Optional[InterfaceHandle] = None
    settings: DvpnSettings = field(default_factory=lambda: DEFAULT_SETTINGS)
    sleep: Callable[[float], None] = time.sleep
    last_error: Optional[DvpnError] = field(default=None, init=False)
    warnings: List[DvpnError] = field(default_factory=list, init=False)
    active_path: Optional[str] = field(default=None, init=False)

    def __post_init__(self) -> None:
        if self.handle is None:
            self.handle = InterfaceHandle.from_settings(self.settings)

    # ------------------------------------------------------------------
    # command helpers

    def _lock(self) -> InterfaceLock:
        return InterfaceLock(
            self.handle.name,
            lock_dir=self.settings.lock_dir,
            timeout=self.settings.lock_timeout,
        )

    def _run(self, command: str, args: Sequence[str], *, sudo: bool = True, input_text: Optional[str] = None) -> CommandResult:
        cmd, argv = privileged(command, args, self.settings.use_sudo and sudo)
        return self.executor.run(cmd, argv, timeout=self.settings.command_timeout, input_text=input_text)

    def _run_quietly(self, command: str, args: Sequence[str]) -> Optional[DisconnectFailure]:
        """Run a cleanup command, returning the failure instead of raising."""

        try:
            result = self._run(command, args)
        except ToolInvocationError as exc:
            return DisconnectFailure(str(exc))
        if not result.ok:
            return DisconnectFailure(f"{command} {' '.join(args)}: {result.describe()}")
        return None

    def _delete_interface(self) -> Optional[DisconnectFailure]:
        return self._run_quietly("ip", ["link", "delete", "dev", self.handle.name])

    # ------------------------------------------------------------------
    # teardown

    def _tear_down_locked(self, config_path: Optional[str]) -> List[DisconnectFailure]:
        self.handle.state = InterfaceState.TEARING_DOWN
        failures: List[DisconnectFailure] = []

        # wg-quick also accepts a bare interface name when the file is gone.
        target = config_path if config_path and Path(config_path).exists() else self.handle.name
        for failure in (
            self._run_quietly("wg-quick", ["down", target]),
            self._delete_interface(),
        ):
            if failure is not None:
                failures.append(failure)
                LOGGER.debug("Teardown step found nothing to do", extra={"detail": str(failure)})

        self.handle.state = InterfaceState.DOWN
        self.active_path = None
        return failures

    def tear_down(self, config_path: Optional[str | Path] = None) -> bool:
        """拆除接口。Tear the interface down; idempotent and always ``True``."""

        path = str(config_path) if config_path else self.handle.config_path
        LOGGER.info("Tearing down WireGuard interface", extra={"interface": self.handle.name, "config": path})
        try:
            with self._lock():
                self._tear_down_locked(path)
        except (LockTimeoutError, OSError) as exc:
            LOGGER.warning("Teardown skipped: %s", exc, extra={"interface": self.handle.name})
            return True
        LOGGER.info("WireGuard interface is down", extra={"interface": self.handle.name})
        return True

    # ------------------------------------------------------------------
    # bring-up

    def bring_up(
        self,
        config_path: Optional[str | Path] = None,
        write_config: Optional[Callable[[Path], Path]] = None,
    ) -> bool:
        """启动接口。Bring the interface up from ``config_path``.

        ``write_config`` is called with the target path while the interface
        lock is held, so the file ``wg-quick`` reads cannot be replaced by a
        concurrent attempt. It returns the path actually written.
        """

        path = str(config_path) if config_path else self.handle.config_path
        self.handle.config_path = path
        self.last_error = None
        self.warnings = []
        LOGGER.info("Bringing up WireGuard interface", extra={"interface": self.handle.name, "config": path})
        try:
            with self._lock():
                if write_config is not None:
                    try:
                        path = str(write_config(Path(path)))
                    except DvpnError as exc:
                        self.last_error = exc
                        LOGGER.error("Cannot write tunnel config: %s", exc)
                        return False
                    self.handle.config_path = path
                return self._bring_up_locked(path)
        except LockTimeoutError as exc:
            self.last_error = exc
            LOGGER.error("Cannot bring up interface: %s", exc)
            return False
        except OSError as exc:
            self.last_error = LockTimeoutError(f"Cannot open interface lock: {exc}")
            LOGGER.error("Cannot bring up interface: %s", exc)
            return False

    def _bring_up_locked(self, path: str) -> bool:
        self._tear_down_locked(path)
        self.handle.state = InterfaceState.BRINGING_UP
        if Path(path).stem != self.handle.name:
            LOGGER.warning(
                "Config file name does not match the interface name; wg-quick will name the interface after the file",
                extra={"config": path, "interface": self.handle.name},
            )

        try:
            try:
                self._primary_up(path)
                self.active_path = PATH_PRIMARY
            except PrimaryBringupFailure as exc:
                LOGGER.warning("wg-quick failed, trying manual setup: %s", exc)
                self._fallback_up(path)
                self.active_path = PATH_FALLBACK
        except DvpnError as exc:
            self.handle.state = InterfaceState.DOWN
            self.last_error = exc
            LOGGER.error("WireGuard bring-up failed: %s", exc, extra={"interface": self.handle.name})
            return False
        except BaseException:
            self.handle.state = InterfaceState.DOWN
            raise

        self.handle.state = InterfaceState.UP
        LOGGER.info(
            "WireGuard connection established",
            extra={"interface": self.handle.name, "path": self.active_path},
        )
        self._fix_dns()
        self._probe_connectivity()
        return True

    def _primary_up(self, path: str) -> None:
        try:
            result = self._run("wg-quick", ["up", path])
        except CommandTimeout as exc:
            # A hung wg-quick may leave a device behind.
            self._delete_interface()
            raise PrimaryBringupFailure(str(exc)) from exc
        except ToolInvocationError as exc:
            raise PrimaryBringupFailure(str(exc)) from exc
        except BaseException:
            LOGGER.warning("wg-quick up interrupted; removing interface", extra={"interface": self.handle.name})
            self._delete_interface()
            raise
        if not result.ok:
            LOGGER.debug("wg-quick stderr", extra={"stderr": result.stderr})
            raise PrimaryBringupFailure(f"wg-quick up exited with {result.exit_code}: {result.describe()}")

    def manual_steps(self, fields: ManualTunnelFields, setconf_path: str) -> List[ManualStep]:
        """Return the ordered manual bring-up sequence."""

        name = self.handle.name
        steps = [
            ManualStep(STEP_CREATE_DEVICE, "ip", ("link", "add", "dev", name, "type", "wireguard")),
            ManualStep(STEP_APPLY_CONFIG, "wg", ("setconf", name, setconf_path)),
        ]
        for address in fields.addresses:
            steps.append(ManualStep(STEP_ASSIGN_ADDRESS, "ip", ("address", "add", address, "dev", name)))
        steps.append(
            ManualStep(STEP_LINK_UP, "ip", ("link", "set", "mtu", str(self.settings.mtu), "up", "dev", name))
        )
        steps.append(ManualStep(STEP_DEFAULT_ROUTE, "ip", ("route", "add", "default", "dev", name)))
        return steps

    def _write_setconf(self, fields: ManualTunnelFields) -> str:
        fd, tmp_name = tempfile.mkstemp(prefix=f"dvpn-{self.handle.name}-{os.getpid()}-", suffix=".conf")
        try:
            os.fchmod(fd, CONFIG_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(render_setconf(fields))
        except BaseException:
            _remove_quietly(tmp_name)
            raise
        return tmp_name

    def _run_step(self, step: ManualStep) -> Optional[str]:
        try:
            result = self._run(step.command, step.args)
        except ToolInvocationError as exc:
            return str(exc)
        if not result.ok:
            return result.describe()
        return None

    def _fallback_up(self, path: str) -> None:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise FallbackBringupFailure("read_config", str(exc)) from exc
        try:
            fields = parse_tunnel_config(text)
        except MalformedConfigError as exc:
            raise FallbackBringupFailure("parse_config", str(exc)) from exc
        try:
            setconf_path = self._write_setconf(fields)
        except OSError as exc:
            raise FallbackBringupFailure("write_setconf", str(exc)) from exc

        try:
            for step in self.manual_steps(fields, setconf_path):
                error = self._run_step(step)
                if error is not None:
                    LOGGER.error(
                        "Manual step failed: %s",
                        step.name,
                        extra={"command": " ".join((step.command, *step.args)), "error": error},
                    )
                    self._delete_interface()
                    raise FallbackBringupFailure(step.name, error)
                LOGGER.debug("Manual step done", extra={"step": step.name})
        except FallbackBringupFailure:
            raise
        except BaseException:
            LOGGER.warning("Manual bring-up interrupted; removing interface", extra={"interface": self.handle.name})
            self._delete_interface()
            raise
        finally:
            _remove_quietly(setconf_path)

    # ------------------------------------------------------------------
    # post bring-up checks

    def _warn(self, message: str) -> None:
        LOGGER.warning("Warning: %s", message, extra={"interface": self.handle.name})
        self.warnings.append(ConnectivityWarning(message))

    def _fix_dns(self) -> None:
        line = f"nameserver {self.settings.dns_fix_nameserver}\n"
        try:
            result = self._run("tee", [self.settings.resolv_conf], input_text=line)
        except ToolInvocationError as exc:
            self._warn(f"Could not set DNS: {exc}")
            return
        if not result.ok:
            self._warn(f"Could not set DNS: {result.describe()}")
            return
        LOGGER.info("DNS configuration updated", extra={"nameserver": self.settings.dns_fix_nameserver})

    def _probe_connectivity(self) -> None:
        if self.settings.settle_seconds > 0:
            self.sleep(self.settings.settle_seconds)
        wait = str(max(1, int(self.settings.command_timeout)))
        try:
            result = self._run("ping", ["-c", "1", "-W", wait, self.settings.probe_address], sudo=False)
        except ToolInvocationError as exc:
            self._warn(f"Internet connectivity test failed: {exc}")
            return
        if not result.ok:
            self._warn("Internet connectivity test failed")
            return
        LOGGER.info("Internet connectivity confirmed", extra={"probe": self.settings.probe_address})

    def interface_exists(self) -> bool:
        """Return ``True`` if the interface is present on the host."""

        try:
            result = self._run("ip", ["link", "show", "dev", self.handle.name], sudo=False)
        except ToolInvocationError:
            return False
        return result.ok


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOGGER.warning("Could not remove temporary file %s: %s", path, exc)
